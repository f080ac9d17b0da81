"""签名Webhook通知渠道"""

import asyncio
import hashlib
import hmac
import json
import uuid
from typing import Dict, Any, Optional, Tuple

import aiohttp

from .base import BaseChannel, ChannelContext
from .registry import register_channel
from ..models.notification import DeliveryAttempt, NotificationEvent, WebhookSubscription
from ..storage.settings_store import MonitorSettings
from ..utils.exceptions import StorageError
from ..utils.network_guard import is_blocked_url, resolves_to_blocked_address
from ..utils.retry import RetryPolicy

USER_AGENT = 'Domain-Monitor-Webhooks/1.0'
SIGNATURE_HEADER = 'X-Domain-Monitor-Signature'
EVENT_HEADER = 'X-Domain-Monitor-Event'
DELIVERY_HEADER = 'X-Domain-Monitor-Delivery'


def serialize_payload(event: NotificationEvent) -> bytes:
    """紧凑JSON请求体，签名和发送使用同一份字节"""
    return json.dumps(event.to_payload(), separators=(',', ':'),
                      ensure_ascii=False).encode('utf-8')


def sign_payload(body: bytes, secret: Optional[str]) -> str:
    """HMAC-SHA256签名，格式为 sha256=<hex>"""
    digest = hmac.new((secret or '').encode('utf-8'), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(body: bytes, secret: Optional[str], signature: str) -> bool:
    """接收方校验签名"""
    return hmac.compare_digest(sign_payload(body, secret), signature or '')


@register_channel('webhook')
class WebhookChannel(BaseChannel):
    """向所有订阅了该事件的Webhook投递签名请求

    每个订阅独立按重试策略投递（默认立即、30秒后、5分钟后），
    多个订阅之间并发进行。每次尝试都写入投递日志。
    """

    def __init__(self, name: str, config: Dict[str, Any],
                 context: Optional[ChannelContext] = None):
        super().__init__(name, config, context)
        self.webhook_store = self.context.webhook_store
        if config.get('retry_delays') is not None:
            self.retry_policy = RetryPolicy.from_delays(config['retry_delays'])
        else:
            self.retry_policy = self.context.retry_policy

    def validate_config(self) -> bool:
        if self.webhook_store is None:
            self.logger.error(f"Webhook渠道 {self.name} 缺少Webhook存储")
            return False
        return True

    def is_enabled(self, event_type: str, settings: MonitorSettings) -> bool:
        # 订阅级别的过滤在 notify 中按事件查询
        return True

    def build_headers(self, event: NotificationEvent, body: bytes,
                      subscription: WebhookSubscription) -> Dict[str, str]:
        return {
            'Content-Type': 'application/json',
            SIGNATURE_HEADER: sign_payload(body, subscription.secret),
            EVENT_HEADER: event.type.value,
            DELIVERY_HEADER: str(uuid.uuid4()),
            'User-Agent': USER_AGENT
        }

    async def notify(self, event: NotificationEvent, settings: MonitorSettings) -> bool:
        subscriptions = self.webhook_store.get_webhooks_for_event(event.type.value)
        if not subscriptions:
            self.logger.debug(f"事件 {event.type.value} 没有Webhook订阅")
            return True

        self.logger.info(f"投递事件 {event.type.value} 到 {len(subscriptions)} 个Webhook")
        body = serialize_payload(event)
        results = await asyncio.gather(
            *(self.deliver(subscription, event, body) for subscription in subscriptions)
        )
        return all(results)

    async def deliver(self, subscription: WebhookSubscription, event: NotificationEvent,
                      body: bytes) -> bool:
        """
        按重试策略投递到一个订阅

        Args:
            subscription: Webhook订阅
            event: 通知事件
            body: 序列化后的请求体

        Returns:
            bool: 是否有一次尝试成功
        """
        if is_blocked_url(subscription.url):
            self._log_blocked(subscription)
            return False

        payload_text = body.decode('utf-8')
        for attempt, delay in self.retry_policy.attempts():
            if delay > 0:
                self.logger.debug(f"Webhook {subscription.id} 等待 {delay:.0f} 秒后进行第 {attempt} 次尝试")
                await asyncio.sleep(delay)

            # 每次尝试前重新检查解析结果
            if await resolves_to_blocked_address(subscription.url):
                self._log_blocked(subscription)
                return False

            headers = self.build_headers(event, body, subscription)
            status, response_body = await self._send_request(subscription.url, body, headers)
            success = status is not None and 200 <= status < 300

            self._record_attempt(DeliveryAttempt(
                webhook_id=subscription.id,
                event=event.type.value,
                payload=payload_text,
                response_status=status,
                response_body=response_body,
                success=success,
                attempt=attempt
            ))

            if success:
                self.logger.info(
                    f"Webhook投递成功 (webhook_id={subscription.id}, 事件={event.type.value}, 状态码={status})")
                return True

            if status is not None:
                self.logger.warning(
                    f"Webhook返回非2xx (webhook_id={subscription.id}, 状态码={status}, "
                    f"尝试 {attempt}/{self.retry_policy.max_attempts})")
            else:
                self.logger.error(
                    f"Webhook投递失败 (webhook_id={subscription.id}, 错误={response_body}, "
                    f"尝试 {attempt}/{self.retry_policy.max_attempts})")

        self.logger.error(f"Webhook {subscription.id} 所有重试均失败，放弃投递")
        try:
            self.webhook_store.increment_failure_count(subscription.id)
        except StorageError as e:
            self.logger.error(e.format_error())
        return False

    def _log_blocked(self, subscription: WebhookSubscription):
        self.logger.warning(
            f"拒绝向内网或回环地址投递Webhook (webhook_id={subscription.id}, url={subscription.url})")

    async def _send_request(self, url: str, body: bytes,
                            headers: Dict[str, str]) -> Tuple[Optional[int], str]:
        """发送一次请求，返回 (状态码, 响应体)；网络错误时状态码为None，响应体为错误信息"""
        timeout = aiohttp.ClientTimeout(total=self.get_timeout())
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, data=body, headers=headers) as response:
                    text = await response.text(errors='replace')
                    return response.status, text
        except asyncio.TimeoutError:
            return None, 'Request timeout'
        except (aiohttp.ClientError, OSError) as e:
            return None, str(e) or e.__class__.__name__

    def _record_attempt(self, attempt: DeliveryAttempt) -> None:
        """写入投递日志并回写订阅状态；存储失败只记录日志"""
        try:
            self.webhook_store.log_delivery(attempt)
            if attempt.response_status is not None:
                self.webhook_store.update_status(attempt.webhook_id, attempt.response_status,
                                                 reset_failures=attempt.success)
        except StorageError as e:
            self.logger.error(e.format_error())
