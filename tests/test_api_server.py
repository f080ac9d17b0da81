"""可用性监控 HTTP API 测试"""

from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest
from aiohttp import test_utils, web

from domain_monitor.api import create_app
from domain_monitor.api.server import ApiServer
from domain_monitor.checkers.base import BaseChecker
from domain_monitor.models.uptime_check import Check, CheckStatus, ProbeResult, utc_now
from domain_monitor.services.aggregator import UptimeAggregator
from domain_monitor.services.monitor_scheduler import UptimeScheduler
from domain_monitor.services.retention import RetentionSweeper
from domain_monitor.storage import CheckStore, Database, EndpointStore, WebhookStore
from domain_monitor.storage.settings_store import SettingsStore
from domain_monitor.utils.exceptions import StorageError


class StaticChecker(BaseChecker):
    """总是返回同一个结果"""

    def __init__(self, result):
        super().__init__({})
        self.result = result

    async def probe(self, hostname):
        return self.result

    def validate_config(self):
        return True


class TestUptimeAPI:
    """API测试类"""

    def setup_method(self):
        """测试前准备"""
        self.db = Database(':memory:')
        self.endpoints = EndpointStore(self.db)
        self.checks = CheckStore(self.db)
        self.webhooks = WebhookStore(self.db)
        self.settings_store = SettingsStore(self.db, {'uptime_monitoring_enabled': True,
                                                      'uptime_check_interval_minutes': 5})
        self.aggregator = UptimeAggregator(self.db, self.endpoints)
        self.checker = StaticChecker(ProbeResult(status=CheckStatus.UP, response_time_ms=42,
                                                 status_code=200))
        self.scheduler = UptimeScheduler(self.settings_store, self.endpoints, self.checks,
                                         self.checker, probe_delay=0)
        self.retention = RetentionSweeper(self.checks, self.webhooks, self.settings_store)
        self.app = create_app(self.scheduler, self.aggregator, self.checks, self.endpoints,
                              self.retention)
        self.endpoint = self.endpoints.add_endpoint('example.com')

    def add_check(self, status, age=timedelta(0)):
        self.checks.record(Check(endpoint_id=self.endpoint.id, status=status,
                                 response_time_ms=100 if status == CheckStatus.UP else None,
                                 status_code=200 if status == CheckStatus.UP else 503,
                                 error=None if status == CheckStatus.UP else 'HTTP 503',
                                 checked_at=utc_now() - age))

    @pytest.mark.asyncio
    async def test_stats(self):
        """测试可用性统计"""
        self.add_check(CheckStatus.UP, timedelta(minutes=10))
        self.add_check(CheckStatus.DOWN, timedelta(minutes=5))

        async with test_utils.TestClient(test_utils.TestServer(self.app)) as client:
            resp = await client.get('/api/uptime/stats')
            assert resp.status == 200
            body = await resp.json()

        assert len(body) == 1
        assert body[0]['domain'] == 'example.com'
        assert body[0]['uptime_percentage'] == 50.0
        assert body[0]['current_status'] == 'down'
        assert body[0]['consecutive_failures'] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize('query, expected', [
        ('', 45),
        ('?buckets=10', 10),
        ('?buckets=500', 90),
        ('?buckets=-3', 1),
        ('?buckets=abc', 45),
        ('?buckets=0', 45),
    ])
    async def test_heartbeat_buckets(self, query, expected):
        """测试分桶数量的解析和限制"""
        async with test_utils.TestClient(test_utils.TestServer(self.app)) as client:
            resp = await client.get(f'/api/uptime/heartbeat{query}')
            assert resp.status == 200
            body = await resp.json()

        assert len(body[0]['buckets']) == expected

    @pytest.mark.asyncio
    async def test_history(self):
        """测试检查历史，最新的在前"""
        for minutes in (30, 20, 10):
            self.add_check(CheckStatus.UP, timedelta(minutes=minutes))

        async with test_utils.TestClient(test_utils.TestServer(self.app)) as client:
            resp = await client.get(f'/api/uptime/domain/{self.endpoint.id}?limit=2')
            assert resp.status == 200
            body = await resp.json()

            invalid = await client.get('/api/uptime/domain/abc')
            assert invalid.status == 400
            assert (await invalid.json())['message'] == 'Invalid domain ID'

        assert len(body) == 2
        assert body[0]['checked_at'] > body[1]['checked_at']
        assert body[0]['domain_id'] == self.endpoint.id

    @pytest.mark.asyncio
    async def test_check_single_endpoint(self):
        """测试手动检查单个端点"""
        async with test_utils.TestClient(test_utils.TestServer(self.app)) as client:
            resp = await client.post(f'/api/uptime/domain/{self.endpoint.id}')
            assert resp.status == 200
            body = await resp.json()

            missing = await client.post('/api/uptime/domain/999')
            assert missing.status == 404
            assert (await missing.json())['message'] == 'Domain not found'

        assert body['status'] == 'up'
        assert body['response_time_ms'] == 42
        assert self.checks.count() == 1

    @pytest.mark.asyncio
    async def test_check_all(self):
        """测试手动触发一轮检查"""
        self.endpoints.add_endpoint('other.com')

        async with test_utils.TestClient(test_utils.TestServer(self.app)) as client:
            resp = await client.post('/api/uptime/check-all')
            assert resp.status == 200
            body = await resp.json()

        assert body == {
            'message': 'Uptime check completed: 2 checked, 2 up, 0 down',
            'checked': 2, 'up': 2, 'down': 0
        }

    @pytest.mark.asyncio
    async def test_status_and_restart(self):
        """测试状态查询和重启"""
        self.scheduler._timer_loop = AsyncMock()

        async with test_utils.TestClient(test_utils.TestServer(self.app)) as client:
            resp = await client.post('/api/uptime/restart')
            assert resp.status == 200
            assert (await resp.json())['message'] == 'Uptime monitoring restarted'

            status = await (await client.get('/api/uptime/status')).json()

        assert status['monitoring_enabled'] is True
        assert status['check_interval_minutes'] == 5
        await self.scheduler.stop()

    @pytest.mark.asyncio
    async def test_retention_endpoints(self):
        """测试保留统计和清理"""
        self.add_check(CheckStatus.UP, timedelta(days=45))
        self.add_check(CheckStatus.UP, timedelta(days=1))

        async with test_utils.TestClient(test_utils.TestServer(self.app)) as client:
            stats = await (await client.get('/api/uptime/retention/stats')).json()
            assert stats['uptime_log']['total_entries'] == 2

            resp = await client.delete('/api/uptime/retention/uptime?days=30')
            assert resp.status == 200
            assert (await resp.json())['message'] == 'Deleted 1 uptime log entries older than 30 days'

            invalid = await client.delete('/api/uptime/retention/uptime?days=-2')
            assert invalid.status == 400

            cleanup = await (await client.post('/api/uptime/retention/cleanup')).json()

        assert cleanup['message'] == 'Cleanup completed'
        assert cleanup['uptime_log_deleted'] == 0
        assert cleanup['delivery_log_deleted'] == 0

    @pytest.mark.asyncio
    async def test_storage_error_returns_500(self):
        """测试存储错误返回500"""
        self.aggregator.get_all_stats = Mock(side_effect=StorageError('database is locked'))

        async with test_utils.TestClient(test_utils.TestServer(self.app)) as client:
            resp = await client.get('/api/uptime/stats')
            assert resp.status == 500
            assert (await resp.json())['message'] == 'Failed to get uptime stats'

    @pytest.mark.asyncio
    async def test_unexpected_error_returns_500(self):
        """测试未预期的异常由中间件处理"""
        self.scheduler.get_status = Mock(side_effect=RuntimeError('boom'))

        async with test_utils.TestClient(test_utils.TestServer(self.app)) as client:
            resp = await client.get('/api/uptime/status')
            assert resp.status == 500
            assert (await resp.json())['message'] == 'Internal server error'

            # 服务仍可继续处理请求
            assert (await client.get('/api/uptime/stats')).status == 200


class TestApiServer:
    """API服务测试类"""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        """测试启动和停止"""
        server = ApiServer(web.Application(), host='127.0.0.1', port=0)
        await server.start()
        await server.stop()
        await server.stop()

        assert server._runner is None
