"""通知渠道注册表"""

from typing import Dict, Type, Any, List, Optional

from .base import BaseChannel, ChannelContext
from ..utils.exceptions import NotificationConfigError


class ChannelFactory:
    """通知渠道工厂类，负责按类型名创建渠道实例"""

    def __init__(self):
        """初始化工厂"""
        self._channels: Dict[str, Type[BaseChannel]] = {}

    def register_channel(self, channel_type: str, channel_class: Type[BaseChannel]):
        """
        注册渠道类

        Args:
            channel_type: 渠道类型名称
            channel_class: 渠道类

        Raises:
            NotificationConfigError: 注册失败
        """
        if not issubclass(channel_class, BaseChannel):
            raise NotificationConfigError(
                f"渠道类 {channel_class.__name__} 必须继承自 BaseChannel")

        if channel_type in self._channels:
            raise NotificationConfigError(f"渠道类型 '{channel_type}' 已经注册")

        self._channels[channel_type] = channel_class

    def unregister_channel(self, channel_type: str):
        self._channels.pop(channel_type, None)

    def create_channel(self, channel_config: Dict[str, Any],
                       context: Optional[ChannelContext] = None) -> BaseChannel:
        """
        创建渠道实例

        Args:
            channel_config: 渠道配置，必须包含 type
            context: 共享依赖

        Returns:
            BaseChannel: 渠道实例

        Raises:
            NotificationConfigError: 类型不支持或配置无效
        """
        channel_type = channel_config.get('type')
        if not channel_type:
            raise NotificationConfigError("渠道配置缺少 'type'")

        if channel_type not in self._channels:
            raise NotificationConfigError(f"不支持的渠道类型: '{channel_type}'")

        name = channel_config.get('name', channel_type)
        channel = self._channels[channel_type](name, channel_config, context)

        if not channel.validate_config():
            raise NotificationConfigError(f"渠道 '{name}' 的配置验证失败", channel_name=name)

        return channel

    def get_supported_types(self) -> List[str]:
        return list(self._channels.keys())

    def is_type_supported(self, channel_type: str) -> bool:
        return channel_type in self._channels


# 全局工厂实例
channel_factory = ChannelFactory()


def register_channel(channel_type: str):
    """
    装饰器：注册渠道类

    Args:
        channel_type: 渠道类型名称

    Returns:
        装饰器函数
    """
    def decorator(channel_class: Type[BaseChannel]):
        channel_factory.register_channel(channel_type, channel_class)
        return channel_class

    return decorator
