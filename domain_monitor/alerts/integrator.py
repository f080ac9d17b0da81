"""告警集成器

把每次检查结果送入告警状态机：
- down 且连续失败次数达到阈值、状态为 OK：分发 uptime.down，至少启动一个渠道后进入 ALERTED；
  分发无法准备或没有可用渠道时保持 OK，下一次 down 会再次尝试。
- up 且状态为 ALERTED：回到 OK 并分发 uptime.recovered；分发失败也保持 OK。
- up 且状态为 OK：无动作。
"""

from typing import Dict, Any, Optional

from .manager import NotificationDispatcher
from ..models.notification import EventType
from ..models.uptime_check import Check, Endpoint
from ..services.aggregator import UptimeAggregator
from ..services.alert_state import AlertStateTracker
from ..storage.settings_store import SettingsStore
from ..utils.exceptions import NotificationError
from ..utils.log_manager import get_logger


class AlertIntegrator:
    """告警系统集成器"""

    def __init__(self, state_tracker: AlertStateTracker, aggregator: UptimeAggregator,
                 dispatcher: NotificationDispatcher, settings_store: SettingsStore):
        """
        初始化告警集成器

        Args:
            state_tracker: 告警状态跟踪器
            aggregator: 统计聚合器，用于计算连续失败次数
            dispatcher: 通知分发器
            settings_store: 设置存储，每次检查重新读取阈值
        """
        self.state_tracker = state_tracker
        self.aggregator = aggregator
        self.dispatcher = dispatcher
        self.settings_store = settings_store
        self.logger = get_logger('alert_integrator')

    async def process_check_result(self, endpoint: Endpoint, check: Check) -> Optional[str]:
        """
        处理一次检查结果

        Args:
            endpoint: 端点
            check: 已记录的检查结果

        Returns:
            Optional[str]: 分发的事件类型，没有分发时为None

        Raises:
            StorageError: 读取连续失败次数或阈值失败
        """
        if check.is_up:
            return await self._handle_up(endpoint, check)
        return await self._handle_down(endpoint, check)

    async def _handle_down(self, endpoint: Endpoint, check: Check) -> Optional[str]:
        if self.state_tracker.is_alerted(endpoint.id):
            return None

        threshold = self.settings_store.get_settings().uptime_alert_threshold
        failures = self.aggregator.get_consecutive_failures(endpoint.id)
        if failures < threshold:
            return None

        self.logger.warning(
            f"端点 {endpoint.domain} 连续失败 {failures} 次，达到告警阈值 {threshold}")
        data = {
            'domain': endpoint.domain,
            'domain_id': endpoint.id,
            'failures': failures,
            'threshold': threshold,
            'error': check.error,
            'status_code': check.status_code,
        }
        try:
            count = await self.dispatcher.dispatch(EventType.UPTIME_DOWN.value, data)
        except NotificationError as e:
            self.logger.error(f"故障告警分发失败，保持未告警状态以便下次重试: {e.format_error()}")
            return None

        if count == 0:
            self.logger.warning(f"没有可用的通知渠道，端点 {endpoint.domain} 保持未告警状态")
            return None

        self.state_tracker.mark_alerted(endpoint.id)
        return EventType.UPTIME_DOWN.value

    async def _handle_up(self, endpoint: Endpoint, check: Check) -> Optional[str]:
        if not self.state_tracker.clear(endpoint.id):
            return None

        self.logger.info(f"端点 {endpoint.domain} 已恢复")
        data = {
            'domain': endpoint.domain,
            'domain_id': endpoint.id,
            'status_code': check.status_code,
            'response_time_ms': check.response_time_ms,
        }
        try:
            await self.dispatcher.dispatch(EventType.UPTIME_RECOVERED.value, data)
        except NotificationError as e:
            self.logger.error(f"恢复通知分发失败: {e.format_error()}")
        return EventType.UPTIME_RECOVERED.value

    async def test_alert_system(self, domain: str = 'test.example.com') -> int:
        """
        分发一条测试用的 uptime.down 事件

        Returns:
            int: 启动的渠道任务数量
        """
        data: Dict[str, Any] = {
            'domain': domain,
            'failures': 0,
            'threshold': 0,
            'error': 'Alert system test',
            'test': True,
        }
        count = await self.dispatcher.dispatch(EventType.UPTIME_DOWN.value, data)
        self.logger.info(f"测试告警已分发到 {count} 个渠道")
        return count
