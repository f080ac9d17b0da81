"""Signal通知渠道（signal-cli REST API）"""

import asyncio
from typing import Dict, Any

import aiohttp

from .base import BaseChannel, event_allowed
from .registry import register_channel
from ..models.notification import NotificationEvent
from ..storage.settings_store import MonitorSettings

EVENT_EMOJIS = {
    'domain.expiring': '⚠️',
    'domain.expired': '\U0001F534',
    'health.failed': '❌',
    'uptime.down': '\U0001F6A8',
    'uptime.recovered': '✅',
    'refresh.complete': '\U0001F504',
    'domain.created': '\U0001F195',
    'domain.deleted': '\U0001F5D1️',
}
DEFAULT_EMOJI = '\U0001F514'

IMPORTANT_FIELDS = ('domain', 'days', 'error', 'failures', 'threshold', 'total', 'completed')


def build_signal_message(event: NotificationEvent) -> str:
    """纯文本消息，只列出关键字段"""
    event_type = event.type.value
    lines = [f"{EVENT_EMOJIS.get(event_type, DEFAULT_EMOJI)} *Domain Monitor Alert*",
             f"Event: {event_type}"]

    for key in IMPORTANT_FIELDS:
        value = event.data.get(key)
        if value is not None:
            lines.append(f"{key.replace('_', ' ')}: {value}")

    lines.append(f"\n_{event.iso_timestamp}_")
    return '\n'.join(lines)


@register_channel('signal')
class SignalChannel(BaseChannel):
    """通过 POST {api_url}/v2/send 发送，单次发送，不重试"""

    def get_timeout(self) -> float:
        return self.config.get('timeout', 15)

    def is_enabled(self, event_type: str, settings: MonitorSettings) -> bool:
        return (settings.signal_enabled
                and bool(settings.signal_api_url)
                and bool(settings.signal_sender)
                and len(settings.signal_recipients) > 0
                and event_allowed(event_type, settings.signal_events))

    def build_request(self, event: NotificationEvent, settings: MonitorSettings) -> Dict[str, Any]:
        return {
            'message': build_signal_message(event),
            'number': settings.signal_sender,
            'recipients': list(settings.signal_recipients)
        }

    async def notify(self, event: NotificationEvent, settings: MonitorSettings) -> bool:
        url = f"{settings.signal_api_url.rstrip('/')}/v2/send"
        timeout = aiohttp.ClientTimeout(total=self.get_timeout())

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=self.build_request(event, settings)) as response:
                    if 200 <= response.status < 300:
                        self.logger.info(
                            f"Signal通知发送成功 (事件={event.type.value}, "
                            f"收件人数={len(settings.signal_recipients)})")
                        return True
                    text = await response.text(errors='replace')
                    self.logger.warning(
                        f"Signal返回错误响应 (事件={event.type.value}, 状态码={response.status}, 响应={text[:200]})")
                    return False
        except asyncio.TimeoutError:
            self.logger.error(f"Signal通知请求超时 (事件={event.type.value})")
        except (aiohttp.ClientError, OSError) as e:
            self.logger.error(f"Signal通知发送失败 (事件={event.type.value}): {e}")
        return False
