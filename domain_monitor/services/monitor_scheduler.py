"""可用性监控调度器

按设置中的间隔定时执行检查轮次。每一轮顺序检查所有端点，端点之间固定间隔，
轮次之间互斥；定时触发时如果上一轮仍在运行则跳过本次触发。
"""

import asyncio
from typing import Dict, Any, Optional, Set, Callable, Awaitable

from ..checkers.base import BaseChecker
from ..models.uptime_check import Check, Endpoint, PassSummary
from ..storage.check_store import CheckStore
from ..storage.endpoint_store import EndpointStore
from ..storage.settings_store import SettingsStore
from ..utils.exceptions import DomainMonitorError, SchedulerError, StorageError
from ..utils.log_manager import get_logger

DEFAULT_PROBE_DELAY = 0.1

CheckResultCallback = Callable[[Endpoint, Check], Awaitable[Any]]


class UptimeScheduler:
    """可用性监控调度器"""

    def __init__(self, settings_store: SettingsStore, endpoint_store: EndpointStore,
                 check_store: CheckStore, checker: BaseChecker,
                 probe_delay: float = DEFAULT_PROBE_DELAY):
        """初始化调度器

        Args:
            settings_store: 设置存储，启动时读取开关和间隔
            endpoint_store: 端点存储
            check_store: 检查记录存储
            checker: 探测器
            probe_delay: 同一轮内两次探测之间的间隔（秒）
        """
        self.settings_store = settings_store
        self.endpoint_store = endpoint_store
        self.check_store = check_store
        self.checker = checker
        self.probe_delay = probe_delay

        self._timer_task: Optional[asyncio.Task] = None
        self._pass_lock = asyncio.Lock()
        self.running_tasks: Set[asyncio.Task] = set()
        self.logger = get_logger('scheduler')

        self.on_check_result: Optional[CheckResultCallback] = None

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def set_check_result_callback(self, callback: CheckResultCallback):
        """设置检查结果回调，每轮中每个端点记录完成后调用

        Args:
            callback: 参数为 (endpoint, check) 的协程函数
        """
        self.on_check_result = callback

    async def start(self):
        """读取设置并启动定时器；已运行时重新设置定时器

        Raises:
            SchedulerError: 无法读取监控设置
        """
        if self.is_running:
            await self.stop()

        try:
            settings = self.settings_store.get_settings()
        except StorageError as e:
            raise SchedulerError("读取监控设置失败，调度器无法启动", task_name='uptime-timer', cause=e)
        if not settings.uptime_monitoring_enabled:
            self.logger.info("可用性监控未启用，调度器不启动")
            return

        interval_minutes = settings.uptime_check_interval_minutes
        if interval_minutes < 1:
            self.logger.warning(f"检查间隔无效 ({interval_minutes} 分钟)，使用 1 分钟")
            interval_minutes = 1

        self._timer_task = asyncio.create_task(self._timer_loop(interval_minutes * 60),
                                               name='uptime-timer')
        self.logger.info(f"启动可用性监控，检查间隔: {interval_minutes} 分钟")

    async def stop(self):
        """只取消定时器；进行中的检查轮次继续执行完毕"""
        if self._timer_task is None:
            return

        task, self._timer_task = self._timer_task, None
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.logger.info("可用性监控定时器已停止")

    async def restart(self):
        """设置变更后重新启动"""
        await self.stop()
        await self.start()

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """等待定时器触发的检查轮次结束

        Returns:
            bool: 是否全部结束
        """
        pending = set(self.running_tasks)
        if not pending:
            return True
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        return not still_pending

    async def shutdown(self, timeout: Optional[float] = 10.0) -> None:
        """停止定时器并等待进行中的轮次，超时后取消剩余轮次"""
        await self.stop()
        if await self.drain(timeout):
            return

        remaining = [task for task in self.running_tasks if not task.done()]
        self.logger.warning(f"等待检查轮次超时，取消 {len(remaining)} 个未完成的轮次")
        for task in remaining:
            task.cancel()
        await asyncio.gather(*remaining, return_exceptions=True)
        self.running_tasks.clear()

    async def _timer_loop(self, interval_seconds: float):
        """立即触发一轮，之后每个间隔触发一轮"""
        while True:
            self._trigger_pass()
            await asyncio.sleep(interval_seconds)

    def _trigger_pass(self):
        if self._pass_lock.locked():
            self.logger.warning("上一轮检查仍在进行，跳过本次定时触发")
            return

        task = asyncio.create_task(self._scheduled_pass(), name='uptime-pass')
        self.running_tasks.add(task)
        task.add_done_callback(self.running_tasks.discard)

    async def _scheduled_pass(self):
        try:
            await self.run_pass()
        except DomainMonitorError as e:
            self.logger.error(f"定时检查轮次失败: {e.format_error()}")
        except Exception as e:
            self.logger.error(f"定时检查轮次发生未预期的异常: {e}", exc_info=True)

    async def run_pass(self, force: bool = False) -> PassSummary:
        """执行一轮检查

        Args:
            force: 为True时忽略监控开关（手动触发）

        Returns:
            PassSummary: 本轮的检查数、正常数和故障数

        Raises:
            StorageError: 无法读取设置或端点列表
        """
        async with self._pass_lock:
            summary = PassSummary()

            if not force and not self.settings_store.get_settings().uptime_monitoring_enabled:
                self.logger.debug("可用性监控未启用，跳过本轮检查")
                return summary

            endpoints = self.endpoint_store.list_endpoints()
            self.logger.debug(f"开始检查轮次，共 {len(endpoints)} 个端点")

            for index, endpoint in enumerate(endpoints):
                if index > 0 and self.probe_delay > 0:
                    await asyncio.sleep(self.probe_delay)

                try:
                    check = await self.check_endpoint(endpoint)
                except DomainMonitorError as e:
                    self.logger.error(f"检查端点 {endpoint.domain} 失败: {e.format_error()}")
                    continue
                except Exception as e:
                    self.logger.error(f"检查端点 {endpoint.domain} 时发生异常: {e}", exc_info=True)
                    continue

                summary.add(check)
                await self._notify_result(endpoint, check)

            self.logger.info(
                f"检查轮次完成: 共 {summary.checked} 个, 正常 {summary.up} 个, 故障 {summary.down} 个")
            return summary

    async def _notify_result(self, endpoint: Endpoint, check: Check):
        if not self.on_check_result:
            return
        try:
            await self.on_check_result(endpoint, check)
        except DomainMonitorError as e:
            self.logger.error(f"处理端点 {endpoint.domain} 的检查结果失败: {e.format_error()}")
        except Exception as e:
            self.logger.error(f"检查结果回调执行失败 ({endpoint.domain}): {e}", exc_info=True)

    async def check_endpoint(self, endpoint: Endpoint) -> Check:
        """探测并记录单个端点，不触发告警处理

        Args:
            endpoint: 端点

        Returns:
            Check: 已记录的检查结果

        Raises:
            StorageError: 记录失败
        """
        result = await self.checker.probe(endpoint.domain)
        check = self.check_store.record(Check.from_probe(endpoint.id, result))

        status = "正常" if check.is_up else "故障"
        self.logger.debug(
            f"端点 {endpoint.domain} 检查完成: {status}, 状态码={check.status_code}, "
            f"响应时间={check.response_time_ms}ms")
        return check

    def get_status(self) -> Dict[str, Any]:
        settings = self.settings_store.get_settings()
        return {
            'monitoring_enabled': settings.uptime_monitoring_enabled,
            'check_interval_minutes': settings.uptime_check_interval_minutes,
            'is_running': self.is_running
        }
