"""通知渠道基类"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Sequence

from ..models.notification import NotificationEvent
from ..storage.settings_store import MonitorSettings
from ..storage.webhook_store import WebhookStore
from ..utils.log_manager import get_logger
from ..utils.retry import RetryPolicy


@dataclass
class ChannelContext:
    """渠道构造时共享的依赖"""
    webhook_store: Optional[WebhookStore] = None
    smtp_config: Dict[str, Any] = field(default_factory=dict)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)


def event_allowed(event_type: str, allowed_events: Sequence[str]) -> bool:
    """事件白名单过滤，空列表表示允许所有事件"""
    return not allowed_events or event_type in allowed_events


class BaseChannel(ABC):
    """通知渠道抽象基类

    渠道在启动时根据配置构造一次；启用状态和事件过滤在每次分发时
    从传入的设置快照重新判断。
    """

    def __init__(self, name: str, config: Dict[str, Any],
                 context: Optional[ChannelContext] = None):
        """
        初始化通知渠道

        Args:
            name: 渠道名称
            config: 渠道配置参数
            context: 共享依赖
        """
        self.name = name
        self.config = config
        self.context = context or ChannelContext()
        self.channel_type = self.__class__.__name__.replace('Channel', '').lower()
        self.logger = get_logger(f'channel.{self.channel_type}.{self.name}')

    @abstractmethod
    def is_enabled(self, event_type: str, settings: MonitorSettings) -> bool:
        """
        判断渠道是否应处理该事件

        Args:
            event_type: 事件类型
            settings: 当前设置快照

        Returns:
            bool: 是否处理
        """
        pass

    @abstractmethod
    async def notify(self, event: NotificationEvent, settings: MonitorSettings) -> bool:
        """
        发送通知；渠道内部的失败记录日志并返回False

        Args:
            event: 通知事件
            settings: 当前设置快照

        Returns:
            bool: 是否发送成功
        """
        pass

    def validate_config(self) -> bool:
        """
        验证配置参数是否有效

        Returns:
            bool: 配置是否有效
        """
        return True

    def get_timeout(self) -> float:
        """
        获取请求超时时间

        Returns:
            float: 超时时间（秒）
        """
        return self.config.get('timeout', 10)
