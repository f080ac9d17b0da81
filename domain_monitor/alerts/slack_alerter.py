"""Slack通知渠道"""

import asyncio
from typing import Dict, Any, List, Mapping

import aiohttp

from .base import BaseChannel, event_allowed
from .registry import register_channel
from ..models.notification import NotificationEvent
from ..storage.settings_store import MonitorSettings

MAX_FIELDS = 8

EVENT_ICONS = {
    'domain.expiring': ':warning:',
    'domain.expired': ':red_circle:',
    'health.failed': ':x:',
    'uptime.down': ':rotating_light:',
    'uptime.recovered': ':white_check_mark:',
    'refresh.complete': ':arrows_counterclockwise:',
    'domain.created': ':new:',
    'domain.deleted': ':wastebasket:',
}

EVENT_COLORS = {
    'domain.expiring': '#f59e0b',
    'domain.expired': '#ef4444',
    'health.failed': '#ef4444',
    'uptime.down': '#ef4444',
    'uptime.recovered': '#22c55e',
    'refresh.complete': '#6366f1',
    'domain.created': '#22c55e',
    'domain.deleted': '#6b7280',
}

DEFAULT_ICON = ':bell:'
DEFAULT_COLOR = '#6366f1'


def _build_fields(data: Mapping[str, Any]) -> List[Dict[str, str]]:
    """非空字段，最多8个"""
    fields = []
    for key, value in data.items():
        if value is None or value == '':
            continue
        fields.append({
            'type': 'mrkdwn',
            'text': f"*{key.replace('_', ' ')}:* {value}"
        })
        if len(fields) >= MAX_FIELDS:
            break
    return fields


def build_slack_payload(event: NotificationEvent) -> Dict[str, Any]:
    """构建 Block Kit 消息"""
    event_type = event.type.value
    icon = EVENT_ICONS.get(event_type, DEFAULT_ICON)
    color = EVENT_COLORS.get(event_type, DEFAULT_COLOR)

    blocks: List[Dict[str, Any]] = [{
        'type': 'section',
        'text': {
            'type': 'mrkdwn',
            'text': f"{icon} *Domain Monitor Alert*\n*Event:* `{event_type}`"
        }
    }]

    fields = _build_fields(event.data)
    if fields:
        blocks.append({'type': 'section', 'fields': fields})

    blocks.append({
        'type': 'context',
        'elements': [{
            'type': 'mrkdwn',
            'text': f"Sent by Domain Monitor at {event.iso_timestamp}"
        }]
    })

    return {
        'blocks': blocks,
        'attachments': [{
            'color': color,
            'fallback': f"Domain Monitor: {event_type}"
        }]
    }


@register_channel('slack')
class SlackChannel(BaseChannel):
    """Slack Incoming Webhook，单次发送，不重试"""

    def is_enabled(self, event_type: str, settings: MonitorSettings) -> bool:
        return (settings.slack_enabled
                and bool(settings.slack_webhook_url)
                and event_allowed(event_type, settings.slack_events))

    async def notify(self, event: NotificationEvent, settings: MonitorSettings) -> bool:
        payload = build_slack_payload(event)
        timeout = aiohttp.ClientTimeout(total=self.get_timeout())

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(settings.slack_webhook_url, json=payload) as response:
                    if 200 <= response.status < 300:
                        self.logger.info(f"Slack通知发送成功 (事件={event.type.value}, 状态码={response.status})")
                        return True
                    text = await response.text(errors='replace')
                    self.logger.warning(
                        f"Slack返回错误响应 (事件={event.type.value}, 状态码={response.status}, 响应={text[:200]})")
                    return False
        except asyncio.TimeoutError:
            self.logger.error(f"Slack通知请求超时 (事件={event.type.value})")
        except (aiohttp.ClientError, OSError) as e:
            self.logger.error(f"Slack通知发送失败 (事件={event.type.value}): {e}")
        return False
