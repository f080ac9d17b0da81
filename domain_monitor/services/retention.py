"""日志保留清理"""

import asyncio
from typing import Dict, Any, Optional

from ..models.uptime_check import format_timestamp
from ..storage.check_store import CheckStore
from ..storage.settings_store import SettingsStore
from ..storage.webhook_store import WebhookStore
from ..utils.exceptions import DomainMonitorError
from ..utils.log_manager import get_logger

DEFAULT_DELIVERY_RETENTION_DAYS = 30
INITIAL_DELAY = 60
CLEANUP_INTERVAL = 24 * 60 * 60


class RetentionSweeper:
    """按保留天数删除旧的检查记录和投递日志，每天自动执行一次"""

    def __init__(self, check_store: CheckStore, webhook_store: WebhookStore,
                 settings_store: SettingsStore,
                 delivery_retention_days: int = DEFAULT_DELIVERY_RETENTION_DAYS,
                 initial_delay: float = INITIAL_DELAY, interval: float = CLEANUP_INTERVAL):
        self.check_store = check_store
        self.webhook_store = webhook_store
        self.settings_store = settings_store
        self.delivery_retention_days = delivery_retention_days
        self.initial_delay = initial_delay
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self.logger = get_logger('retention')

    @staticmethod
    def _validate_days(days: int):
        if not isinstance(days, int) or isinstance(days, bool) or days < 1:
            raise ValueError(f"保留天数必须是正整数: {days}")

    def cleanup_uptime_log(self, days: int) -> int:
        """
        删除早于指定天数的检查记录

        Returns:
            int: 删除的行数

        Raises:
            ValueError: 天数无效
            StorageError: 删除失败
        """
        self._validate_days(days)
        deleted = self.check_store.delete_older_than(days)
        self.logger.info(f"已清理可用性检查记录: 删除 {deleted} 条 {days} 天前的记录")
        return deleted

    def cleanup_delivery_log(self, days: int) -> int:
        """删除早于指定天数的Webhook投递日志"""
        self._validate_days(days)
        deleted = self.webhook_store.delete_deliveries_older_than(days)
        self.logger.info(f"已清理Webhook投递日志: 删除 {deleted} 条 {days} 天前的记录")
        return deleted

    def run_auto_cleanup(self) -> Dict[str, int]:
        """
        按当前设置执行一次清理；自动清理关闭时不删除任何数据，
        保留天数无效的那一类记录跳过并记录警告

        Returns:
            Dict[str, int]: 各类记录的删除数量
        """
        settings = self.settings_store.get_settings()
        stats = {'uptime_log_deleted': 0, 'delivery_log_deleted': 0}
        if not settings.auto_cleanup_enabled:
            self.logger.debug("自动清理未启用")
            return stats

        self.logger.info(
            f"执行自动清理: 检查记录保留 {settings.health_log_retention_days} 天, "
            f"投递日志保留 {self.delivery_retention_days} 天")
        try:
            stats['uptime_log_deleted'] = self.cleanup_uptime_log(
                settings.health_log_retention_days)
        except ValueError as e:
            self.logger.warning(f"跳过检查记录清理: {e}")
        try:
            stats['delivery_log_deleted'] = self.cleanup_delivery_log(
                self.delivery_retention_days)
        except ValueError as e:
            self.logger.warning(f"跳过投递日志清理: {e}")
        self.logger.info(f"自动清理完成: {stats}")
        return stats

    def get_retention_stats(self) -> Dict[str, Any]:
        settings = self.settings_store.get_settings()
        oldest_check = self.check_store.oldest_timestamp()
        oldest_delivery = self.webhook_store.oldest_delivery()
        return {
            'uptime_log': {
                'total_entries': self.check_store.count(),
                'oldest_entry': format_timestamp(oldest_check) if oldest_check else None,
                'retention_days': settings.health_log_retention_days,
            },
            'delivery_log': {
                'total_entries': self.webhook_store.count_deliveries(),
                'oldest_entry': format_timestamp(oldest_delivery) if oldest_delivery else None,
                'retention_days': self.delivery_retention_days,
            },
            'auto_cleanup_enabled': settings.auto_cleanup_enabled,
        }

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """启动每日清理；首次清理在启动后延迟执行"""
        if self.is_running:
            self._task.cancel()
        self._task = asyncio.create_task(self._cleanup_loop(), name='retention-cleanup')
        self.logger.info("自动清理调度已启动")

    async def stop(self):
        if self._task is None:
            return
        task, self._task = self._task, None
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.logger.info("自动清理调度已停止")

    async def _cleanup_loop(self):
        await asyncio.sleep(self.initial_delay)
        while True:
            try:
                self.run_auto_cleanup()
            except DomainMonitorError as e:
                self.logger.error(f"自动清理失败: {e.format_error()}")
            except Exception as e:
                self.logger.error(f"自动清理发生未预期的异常: {e}", exc_info=True)
            await asyncio.sleep(self.interval)
