"""端到端告警流程测试

调度器 -> 检查记录 -> 告警集成器 -> 分发器 -> 签名Webhook / Slack，
只模拟探测结果和出站HTTP。
"""

import json
from unittest.mock import AsyncMock, Mock, patch

import pytest

from domain_monitor.alerts import (
    AlertIntegrator, ChannelContext, NotificationDispatcher, SlackChannel, WebhookChannel
)
from domain_monitor.alerts.webhook_alerter import SIGNATURE_HEADER, verify_signature
from domain_monitor.checkers.base import BaseChecker
from domain_monitor.models.uptime_check import CheckStatus, ProbeResult
from domain_monitor.services.aggregator import UptimeAggregator
from domain_monitor.services.alert_state import AlertStateTracker
from domain_monitor.services.monitor_scheduler import UptimeScheduler
from domain_monitor.storage import CheckStore, Database, EndpointStore, SettingsStore, WebhookStore
from domain_monitor.utils.retry import RetryPolicy


class ScriptedChecker(BaseChecker):
    """按顺序返回预设结果"""

    def __init__(self, statuses):
        super().__init__({})
        self.statuses = list(statuses)

    async def probe(self, hostname):
        status = self.statuses.pop(0)
        if status == CheckStatus.UP:
            return ProbeResult(status=status, response_time_ms=80, status_code=200)
        return ProbeResult(status=status, error='Connection timeout')

    def validate_config(self):
        return True


def response_context(status):
    response = Mock()
    response.status = status
    response.text = AsyncMock(return_value='ok')
    ctx = Mock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=None)
    return ctx


class TestEndToEndAlertFlow:
    """端到端告警流程测试类"""

    def setup_method(self):
        """测试前准备"""
        self.db = Database(':memory:')
        self.endpoints = EndpointStore(self.db)
        self.checks = CheckStore(self.db)
        self.webhooks = WebhookStore(self.db)
        self.settings_store = SettingsStore(self.db, {
            'uptime_monitoring_enabled': True,
            'uptime_alert_threshold': 3,
            'slack_enabled': True,
            'slack_webhook_url': 'https://hooks.slack.com/services/T/B/X',
        })
        self.aggregator = UptimeAggregator(self.db, self.endpoints)
        self.tracker = AlertStateTracker()

        context = ChannelContext(webhook_store=self.webhooks, retry_policy=RetryPolicy((0.0,)))
        self.dispatcher = NotificationDispatcher(self.settings_store, [
            WebhookChannel('webhook', {}, context),
            SlackChannel('slack', {}, context),
        ])
        self.integrator = AlertIntegrator(self.tracker, self.aggregator, self.dispatcher,
                                          self.settings_store)

        self.endpoint = self.endpoints.add_endpoint('example.com')
        self.hook = self.webhooks.add_webhook('ops', 'https://hooks.example.com/uptime',
                                              ['uptime.down', 'uptime.recovered'], secret='s3cret')

    def make_scheduler(self, statuses):
        scheduler = UptimeScheduler(self.settings_store, self.endpoints, self.checks,
                                    ScriptedChecker(statuses), probe_delay=0)
        scheduler.set_check_result_callback(self.integrator.process_check_result)
        return scheduler

    @pytest.mark.asyncio
    async def test_outage_and_recovery(self):
        """测试一次故障只告警一次，恢复后发送恢复通知"""
        statuses = [CheckStatus.DOWN] * 4 + [CheckStatus.UP]
        scheduler = self.make_scheduler(statuses)

        session = Mock()
        session.post = Mock(side_effect=lambda *args, **kwargs: response_context(200))
        session_ctx = Mock()
        session_ctx.__aenter__ = AsyncMock(return_value=session)
        session_ctx.__aexit__ = AsyncMock(return_value=None)

        with patch('aiohttp.ClientSession', return_value=session_ctx), \
                patch('domain_monitor.alerts.webhook_alerter.resolves_to_blocked_address',
                      AsyncMock(return_value=False)):
            for _ in statuses:
                await scheduler.run_pass()
                await self.dispatcher.drain(1.0)

        # 每个事件: 一次Webhook投递 + 一次Slack
        posted_urls = [call.args[0] for call in session.post.call_args_list]
        assert posted_urls.count('https://hooks.example.com/uptime') == 2
        assert posted_urls.count('https://hooks.slack.com/services/T/B/X') == 2

        webhook_calls = [call for call in session.post.call_args_list
                         if call.args[0] == 'https://hooks.example.com/uptime']
        events = []
        for call in webhook_calls:
            body = call.kwargs['data']
            assert verify_signature(body, 's3cret', call.kwargs['headers'][SIGNATURE_HEADER])
            events.append(json.loads(body.decode('utf-8')))

        assert [event['event'] for event in events] == ['uptime.down', 'uptime.recovered']
        assert events[0]['data']['failures'] == 3
        assert events[0]['data']['threshold'] == 3
        assert events[1]['data']['status_code'] == 200

        deliveries = self.webhooks.get_deliveries(self.hook.id)
        assert [d.event for d in deliveries] == ['uptime.recovered', 'uptime.down']
        assert all(d.success for d in deliveries)
        assert self.tracker.get_alerted() == set()
        assert self.checks.count() == 5

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_block_checks(self):
        """测试通知发送失败不影响检查记录和状态转换"""
        statuses = [CheckStatus.DOWN] * 3
        scheduler = self.make_scheduler(statuses)

        session = Mock()
        session.post = Mock(side_effect=lambda *args, **kwargs: response_context(500))
        session_ctx = Mock()
        session_ctx.__aenter__ = AsyncMock(return_value=session)
        session_ctx.__aexit__ = AsyncMock(return_value=None)

        with patch('aiohttp.ClientSession', return_value=session_ctx), \
                patch('domain_monitor.alerts.webhook_alerter.resolves_to_blocked_address',
                      AsyncMock(return_value=False)):
            for _ in statuses:
                summary = await scheduler.run_pass()
                assert summary.checked == 1
                await self.dispatcher.drain(1.0)

        assert self.tracker.is_alerted(self.endpoint.id)
        assert self.webhooks.get_webhook(self.hook.id).failure_count == 1
        assert self.checks.count() == 3
