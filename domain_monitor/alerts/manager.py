"""通知分发器"""

import asyncio
from typing import Dict, Any, Iterable, List, Optional, Set

from .base import BaseChannel, ChannelContext
from .registry import channel_factory, ChannelFactory
from ..models.notification import EventType, NotificationEvent
from ..storage.settings_store import MonitorSettings, SettingsStore
from ..utils.exceptions import (
    DomainMonitorError, NotificationConfigError, NotificationError, StorageError
)
from ..utils.log_manager import get_logger

DEFAULT_CHANNELS = ('webhook', 'slack', 'signal', 'email')


class NotificationDispatcher:
    """通知分发器

    每次分发重新读取设置，构建一个不可变的事件，为每个符合条件的渠道
    启动一个独立任务后立即返回，不等待渠道完成。渠道内部的失败只记录日志。
    """

    def __init__(self, settings_store: SettingsStore,
                 channels: Optional[Iterable[BaseChannel]] = None):
        """
        初始化通知分发器

        Args:
            settings_store: 设置存储
            channels: 初始渠道列表
        """
        self.settings_store = settings_store
        self.channels: List[BaseChannel] = []
        self.running_tasks: Set[asyncio.Task] = set()
        self.logger = get_logger('dispatcher')

        for channel in channels or []:
            self.add_channel(channel)

    @classmethod
    def from_config(cls, settings_store: SettingsStore, channel_configs: Optional[List[Dict[str, Any]]],
                    context: ChannelContext,
                    factory: ChannelFactory = channel_factory) -> 'NotificationDispatcher':
        """
        按 notifications.channels 配置创建分发器；配置无效的渠道跳过，不影响其他渠道

        Args:
            settings_store: 设置存储
            channel_configs: 渠道配置列表，为None时启用全部内置渠道
            context: 渠道共享依赖
            factory: 渠道工厂

        Returns:
            NotificationDispatcher: 分发器
        """
        dispatcher = cls(settings_store)
        if channel_configs is None:
            channel_configs = [{'type': channel_type} for channel_type in DEFAULT_CHANNELS]

        for channel_config in channel_configs:
            try:
                dispatcher.add_channel(factory.create_channel(channel_config, context))
            except NotificationConfigError as e:
                dispatcher.logger.warning(f"跳过通知渠道 {channel_config.get('type')}: {e.message}")
        return dispatcher

    def add_channel(self, channel: BaseChannel):
        if not isinstance(channel, BaseChannel):
            raise NotificationConfigError(f"通知渠道必须继承自BaseChannel: {type(channel)}")
        self.channels.append(channel)
        self.logger.info(f"已添加通知渠道: {channel.name} ({channel.channel_type})")

    def remove_channel(self, name: str) -> bool:
        for i, channel in enumerate(self.channels):
            if channel.name == name:
                self.channels.pop(i)
                self.logger.info(f"已移除通知渠道: {name}")
                return True
        return False

    def get_channel(self, channel_type: str) -> Optional[BaseChannel]:
        for channel in self.channels:
            if channel.channel_type == channel_type:
                return channel
        return None

    def get_channel_names(self) -> List[str]:
        return [channel.name for channel in self.channels]

    async def dispatch(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> int:
        """
        分发一个事件

        Args:
            event_type: 事件类型
            data: 事件数据

        Returns:
            int: 启动的渠道任务数量

        Raises:
            NotificationError: 分发无法准备（设置无法读取或事件类型无效）
        """
        try:
            event = NotificationEvent(type=EventType(event_type), data=data or {})
        except ValueError as e:
            raise NotificationError(f"无效的事件类型: {event_type}", cause=e)

        try:
            settings = self.settings_store.get_settings()
        except StorageError as e:
            raise NotificationError("读取通知设置失败，无法分发事件",
                                    details={'event': event.type.value}, cause=e)

        eligible = self._select_channels(event, settings)
        for channel in eligible:
            task = asyncio.create_task(self._run_channel(channel, event, settings),
                                       name=f"notify:{channel.name}:{event.type.value}")
            self.running_tasks.add(task)
            task.add_done_callback(self.running_tasks.discard)

        if eligible:
            self.logger.info(
                f"事件 {event.type.value} 已分发到 {len(eligible)} 个渠道: "
                f"{', '.join(channel.name for channel in eligible)}")
        else:
            self.logger.debug(f"事件 {event.type.value} 没有启用的通知渠道")
        return len(eligible)

    def _select_channels(self, event: NotificationEvent,
                         settings: MonitorSettings) -> List[BaseChannel]:
        eligible = []
        for channel in self.channels:
            try:
                if channel.is_enabled(event.type.value, settings):
                    eligible.append(channel)
            except (DomainMonitorError, AttributeError, TypeError, ValueError) as e:
                self.logger.error(f"判断通知渠道 {channel.name} 是否启用时出错: {e}")
        return eligible

    async def _run_channel(self, channel: BaseChannel, event: NotificationEvent,
                           settings: MonitorSettings) -> bool:
        """执行单个渠道的发送，异常不向外传播（取消除外）"""
        try:
            success = await channel.notify(event, settings)
        except asyncio.CancelledError:
            self.logger.warning(f"通知渠道 {channel.name} 的发送任务被取消 (事件={event.type.value})")
            raise
        except Exception as e:
            self.logger.error(f"通知渠道 {channel.name} 发送异常 (事件={event.type.value}): {e}",
                              exc_info=True)
            return False

        if not success:
            self.logger.warning(f"通知渠道 {channel.name} 发送失败 (事件={event.type.value})")
        return success

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        等待进行中的渠道任务完成

        Args:
            timeout: 最长等待秒数，None表示一直等待

        Returns:
            bool: 是否全部完成
        """
        pending = set(self.running_tasks)
        if not pending:
            return True
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        return not still_pending

    async def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """等待进行中的任务，超时后取消剩余任务（包括尚在重试等待中的Webhook投递）"""
        if await self.drain(timeout):
            return

        remaining = [task for task in self.running_tasks if not task.done()]
        self.logger.warning(f"取消 {len(remaining)} 个未完成的通知任务")
        for task in remaining:
            task.cancel()
        await asyncio.gather(*remaining, return_exceptions=True)
        self.running_tasks.clear()
