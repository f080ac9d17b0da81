"""告警集成器测试"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from domain_monitor.alerts.integrator import AlertIntegrator
from domain_monitor.alerts.manager import NotificationDispatcher
from domain_monitor.models.uptime_check import Check, CheckStatus
from domain_monitor.services.aggregator import UptimeAggregator
from domain_monitor.services.alert_state import AlertStateTracker
from domain_monitor.storage import CheckStore, Database, EndpointStore
from domain_monitor.storage.settings_store import SettingsStore
from domain_monitor.utils.exceptions import NotificationError

UP = CheckStatus.UP
DOWN = CheckStatus.DOWN


class TestAlertIntegrator:
    """告警集成器测试类"""

    def setup_method(self):
        """测试前准备"""
        self.db = Database(':memory:')
        self.endpoints = EndpointStore(self.db)
        self.checks = CheckStore(self.db)
        self.settings_store = SettingsStore(self.db, {'uptime_alert_threshold': 3})
        self.aggregator = UptimeAggregator(self.db, self.endpoints)
        self.tracker = AlertStateTracker()
        self.dispatcher = Mock()
        self.dispatcher.dispatch = AsyncMock(return_value=1)
        self.integrator = AlertIntegrator(self.tracker, self.aggregator, self.dispatcher,
                                          self.settings_store)
        self.endpoint = self.endpoints.add_endpoint('example.com')
        self.at = datetime(2024, 1, 1, tzinfo=timezone.utc)

    async def feed(self, statuses):
        """依次记录检查结果并送入集成器，返回每次分发的事件"""
        events = []
        for status in statuses:
            self.at += timedelta(minutes=5)
            check = Check(endpoint_id=self.endpoint.id, status=status,
                          response_time_ms=120 if status == UP else None,
                          status_code=200 if status == UP else None,
                          error=None if status == UP else 'Connection timeout',
                          checked_at=self.at)
            self.checks.record(check)
            events.append(await self.integrator.process_check_result(self.endpoint, check))
        return events

    def dispatched_types(self):
        return [call.args[0] for call in self.dispatcher.dispatch.await_args_list]

    @pytest.mark.asyncio
    async def test_outage_then_recovery(self):
        """测试四次失败后恢复：只发一次故障告警和一次恢复通知"""
        events = await self.feed([DOWN, DOWN, DOWN, DOWN, UP])

        assert events == [None, None, 'uptime.down', None, 'uptime.recovered']
        assert self.dispatched_types() == ['uptime.down', 'uptime.recovered']

        down_data = self.dispatcher.dispatch.await_args_list[0].args[1]
        assert down_data == {
            'domain': 'example.com',
            'domain_id': self.endpoint.id,
            'failures': 3,
            'threshold': 3,
            'error': 'Connection timeout',
            'status_code': None,
        }
        recovered_data = self.dispatcher.dispatch.await_args_list[1].args[1]
        assert recovered_data['status_code'] == 200
        assert recovered_data['response_time_ms'] == 120
        assert self.tracker.is_alerted(self.endpoint.id) is False

    @pytest.mark.asyncio
    async def test_flapping_below_threshold(self):
        """测试失败次数被正常检查打断时不告警"""
        events = await self.feed([DOWN, DOWN, UP, DOWN, DOWN, UP])

        assert events == [None] * 6
        self.dispatcher.dispatch.assert_not_awaited()
        assert self.tracker.is_alerted(self.endpoint.id) is False

    @pytest.mark.asyncio
    async def test_up_while_ok_does_nothing(self):
        """测试正常状态下的正常检查没有动作"""
        assert await self.feed([UP, UP]) == [None, None]
        self.dispatcher.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_threshold_read_each_time(self):
        """测试阈值修改在下一次检查时生效"""
        await self.feed([DOWN, DOWN])
        self.settings_store.set('uptime_alert_threshold', 2)

        assert await self.feed([DOWN]) == ['uptime.down']

    @pytest.mark.asyncio
    async def test_dispatch_error_keeps_ok(self):
        """测试分发无法准备时保持未告警，下次失败再次尝试"""
        self.dispatcher.dispatch = AsyncMock(side_effect=[NotificationError('settings unreadable'), 1])

        events = await self.feed([DOWN, DOWN, DOWN, DOWN])

        assert events == [None, None, None, 'uptime.down']
        assert self.dispatcher.dispatch.await_count == 2
        assert self.tracker.is_alerted(self.endpoint.id) is True

    @pytest.mark.asyncio
    async def test_no_channels_keeps_ok(self):
        """测试没有可用渠道时不进入告警状态，渠道可用后再次尝试"""
        self.integrator.dispatcher = NotificationDispatcher(self.settings_store, [])

        events = await self.feed([DOWN, DOWN, DOWN])

        assert events == [None, None, None]
        assert self.tracker.is_alerted(self.endpoint.id) is False

        self.integrator.dispatcher = self.dispatcher
        assert await self.feed([DOWN]) == ['uptime.down']
        assert self.tracker.is_alerted(self.endpoint.id) is True

    @pytest.mark.asyncio
    async def test_new_outage_after_recovery_alerts_again(self):
        """测试恢复后重新连续失败达到阈值会再次告警"""
        events = await self.feed([DOWN] * 4 + [UP] + [DOWN] * 3)

        assert events == [None, None, 'uptime.down', None, 'uptime.recovered',
                          None, None, 'uptime.down']
        assert self.dispatched_types() == ['uptime.down', 'uptime.recovered', 'uptime.down']
        assert self.tracker.is_alerted(self.endpoint.id) is True

    @pytest.mark.asyncio
    async def test_recovery_dispatch_error_still_clears(self):
        """测试恢复通知分发失败时仍回到正常状态"""
        self.tracker.mark_alerted(self.endpoint.id)
        self.dispatcher.dispatch = AsyncMock(side_effect=NotificationError('settings unreadable'))

        assert await self.feed([UP]) == ['uptime.recovered']
        assert self.tracker.is_alerted(self.endpoint.id) is False

    @pytest.mark.asyncio
    async def test_endpoints_are_independent(self):
        """测试不同端点的状态互不影响"""
        other = self.endpoints.add_endpoint('other.com')
        self.tracker.mark_alerted(other.id)

        await self.feed([DOWN, DOWN, DOWN])

        assert self.tracker.get_alerted() == {self.endpoint.id, other.id}
        assert self.dispatched_types() == ['uptime.down']

    @pytest.mark.asyncio
    async def test_alert_system(self):
        """测试测试告警"""
        self.dispatcher.dispatch = AsyncMock(return_value=2)

        assert await self.integrator.test_alert_system() == 2

        event_type, data = self.dispatcher.dispatch.await_args.args
        assert event_type == 'uptime.down'
        assert data['domain'] == 'test.example.com'
        assert data['test'] is True
