"""可用性统计聚合器测试"""

from datetime import datetime, timedelta, timezone

import pytest

from domain_monitor.models.uptime_check import Check, CheckStatus
from domain_monitor.services.aggregator import (
    UptimeAggregator, calculate_uptime_percentage, pad_heartbeats
)
from domain_monitor.storage import CheckStore, Database, EndpointStore

UP = CheckStatus.UP
DOWN = CheckStatus.DOWN


class TestHelpers:
    """辅助函数测试类"""

    @pytest.mark.parametrize('successful, total, expected', [
        (0, 0, 100.0),
        (8, 10, 80.0),
        (1, 3, 33.33),
        (2, 3, 66.67),
        (0, 5, 0.0),
        (1, 8, 12.5),
    ])
    def test_uptime_percentage(self, successful, total, expected):
        """测试可用率计算"""
        assert calculate_uptime_percentage(successful, total) == expected

    def test_uptime_percentage_range(self):
        """测试可用率取值范围"""
        for total in range(1, 40):
            for successful in range(total + 1):
                assert 0 <= calculate_uptime_percentage(successful, total) <= 100

    def test_pad_heartbeats(self):
        """测试心跳补齐与排序"""
        assert pad_heartbeats(['down', 'up'], 4) == ['none', 'none', 'up', 'down']
        assert pad_heartbeats(['up'] * 6, 3) == ['up', 'up', 'up']
        assert pad_heartbeats([], 2) == ['none', 'none']


class TestUptimeAggregator:
    """聚合器测试类"""

    def setup_method(self):
        self.db = Database(':memory:')
        self.endpoints = EndpointStore(self.db)
        self.checks = CheckStore(self.db)
        self.aggregator = UptimeAggregator(self.db, self.endpoints, heartbeat_count=5)
        self.base = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def record(self, endpoint, statuses, start=None, step=timedelta(minutes=5)):
        at = start or self.base
        for status in statuses:
            self.checks.record(Check(
                endpoint_id=endpoint.id, status=status,
                response_time_ms=100 if status == UP else None,
                status_code=200 if status == UP else None,
                error=None if status == UP else 'Connection timeout',
                checked_at=at))
            at += step

    def test_scenario_interleaved_uptime(self):
        """测试8次正常、2次故障交错时可用率为80"""
        endpoint = self.endpoints.add_endpoint('example.com')
        self.record(endpoint, [UP, DOWN, UP, UP, UP, DOWN, UP, UP, UP, UP])

        stats = self.aggregator.get_stats(endpoint)
        assert stats.total_checks == 10
        assert stats.successful_checks == 8
        assert stats.uptime_percentage == 80.0
        assert stats.current_status == 'up'
        assert stats.consecutive_failures == 0

    def test_stats_without_checks(self):
        """测试没有检查记录"""
        endpoint = self.endpoints.add_endpoint('example.com')
        stats = self.aggregator.get_stats(endpoint)

        assert stats.total_checks == 0
        assert stats.uptime_percentage == 100.0
        assert stats.avg_response_time_ms == 0
        assert stats.current_status == 'unknown'
        assert stats.last_check is None
        assert stats.heartbeats == ['none'] * 5

    def test_average_counts_up_checks_only(self):
        """测试平均响应时间只计算正常检查"""
        endpoint = self.endpoints.add_endpoint('example.com')
        self.checks.record(Check(endpoint_id=endpoint.id, status=UP, response_time_ms=100,
                                 checked_at=self.base))
        self.checks.record(Check(endpoint_id=endpoint.id, status=UP, response_time_ms=201,
                                 checked_at=self.base + timedelta(minutes=1)))
        self.checks.record(Check(endpoint_id=endpoint.id, status=DOWN, response_time_ms=9000,
                                 status_code=500, checked_at=self.base + timedelta(minutes=2)))

        stats = self.aggregator.get_stats(endpoint)
        assert stats.avg_response_time_ms == 151
        assert stats.last_check == self.base + timedelta(minutes=2)

    def test_consecutive_failures(self):
        """测试连续失败次数"""
        endpoint = self.endpoints.add_endpoint('example.com')
        self.record(endpoint, [DOWN, UP, DOWN, DOWN, DOWN])
        assert self.aggregator.get_consecutive_failures(endpoint.id) == 3

        other = self.endpoints.add_endpoint('other.com')
        self.record(other, [DOWN, DOWN])
        assert self.aggregator.get_consecutive_failures(other.id) == 2

        assert self.aggregator.get_consecutive_failures(999) == 0

    def test_heartbeats_fixed_length(self):
        """测试心跳序列长度固定，左侧补齐"""
        endpoint = self.endpoints.add_endpoint('example.com')
        self.record(endpoint, [UP, DOWN])
        assert self.aggregator.get_heartbeats(endpoint.id) == ['none', 'none', 'none', 'up', 'down']

        self.record(endpoint, [UP] * 10, start=self.base + timedelta(hours=1))
        assert self.aggregator.get_heartbeats(endpoint.id) == ['up'] * 5
        assert len(self.aggregator.get_heartbeats(endpoint.id, 12)) == 12

    def test_batch_matches_single(self):
        """测试批量统计与逐个统计一致"""
        a = self.endpoints.add_endpoint('a.com')
        b = self.endpoints.add_endpoint('b.com')
        c = self.endpoints.add_endpoint('c.com')
        self.record(a, [UP, DOWN, UP, DOWN, DOWN, DOWN, UP, DOWN])
        self.record(b, [UP] * 7)

        batch = self.aggregator.get_stats_batch([a, b, c])
        single = [self.aggregator.get_stats(e) for e in (a, b, c)]

        assert [s.to_dict() for s in batch] == [s.to_dict() for s in single]
        assert self.aggregator.get_consecutive_failures_batch([a.id, b.id, c.id]) == {
            a.id: 1, b.id: 0, c.id: 0
        }

    def test_all_stats_order(self):
        """测试所有端点统计顺序"""
        a = self.endpoints.add_endpoint('a.com')
        b = self.endpoints.add_endpoint('b.com')
        assert [s.endpoint_id for s in self.aggregator.get_all_stats()] == [a.id, b.id]

    def test_batch_empty(self):
        """测试空输入"""
        assert self.aggregator.get_stats_batch([]) == []

    def test_invalid_heartbeat_count(self):
        """测试无效的心跳数量"""
        with pytest.raises(ValueError):
            UptimeAggregator(self.db, self.endpoints, heartbeat_count=0)


class TestHeartbeatSeries:
    """分桶心跳序列测试类"""

    def setup_method(self):
        self.db = Database(':memory:')
        self.endpoints = EndpointStore(self.db)
        self.checks = CheckStore(self.db)
        self.aggregator = UptimeAggregator(self.db, self.endpoints)
        self.now = datetime(2024, 1, 2, tzinfo=timezone.utc)

    def test_no_checks_all_none(self):
        """测试回看窗口内没有检查时所有桶为none"""
        endpoint = self.endpoints.add_endpoint('example.com')
        self.checks.record(Check(endpoint_id=endpoint.id, status=UP, response_time_ms=10,
                                 checked_at=self.now - timedelta(days=3)))

        series = self.aggregator.get_heartbeat_series(endpoint, buckets=45, now=self.now)

        assert len(series.buckets) == 45
        assert all(bucket.status == 'none' for bucket in series.buckets)

    def test_bucket_assignment(self):
        """测试检查落入对应的桶"""
        endpoint = self.endpoints.add_endpoint('example.com')
        lookback = timedelta(hours=4)
        # 4 个 1 小时的桶
        self.checks.record(Check(endpoint_id=endpoint.id, status=UP, response_time_ms=100,
                                 checked_at=self.now - timedelta(minutes=230)))
        self.checks.record(Check(endpoint_id=endpoint.id, status=UP, response_time_ms=300,
                                 checked_at=self.now - timedelta(minutes=200)))
        self.checks.record(Check(endpoint_id=endpoint.id, status=DOWN,
                                 checked_at=self.now - timedelta(minutes=90)))
        self.checks.record(Check(endpoint_id=endpoint.id, status=UP, response_time_ms=50,
                                 checked_at=self.now - timedelta(minutes=80)))
        self.checks.record(Check(endpoint_id=endpoint.id, status=DOWN, checked_at=self.now))

        series = self.aggregator.get_heartbeat_series(endpoint, buckets=4, lookback=lookback,
                                                      now=self.now)
        statuses = [bucket.status for bucket in series.buckets]

        assert statuses == ['up', 'none', 'partial', 'down']
        assert series.buckets[0].avg_response_time_ms == 200
        assert series.buckets[2].avg_response_time_ms == 50
        assert series.buckets[3].avg_response_time_ms is None
        assert series.buckets[0].start == self.now - lookback
        assert series.buckets[-1].end == self.now

    def test_batch_matches_single(self):
        """测试批量分桶与逐个分桶一致"""
        a = self.endpoints.add_endpoint('a.com')
        b = self.endpoints.add_endpoint('b.com')
        for minutes in range(0, 600, 37):
            self.checks.record(Check(endpoint_id=a.id, status=UP if minutes % 2 else DOWN,
                                     response_time_ms=minutes,
                                     checked_at=self.now - timedelta(minutes=minutes)))

        batch = self.aggregator.get_heartbeat_series_batch([a, b], buckets=10, now=self.now)
        single = [self.aggregator.get_heartbeat_series(e, buckets=10, now=self.now) for e in (a, b)]

        assert [s.to_dict() for s in batch] == [s.to_dict() for s in single]

    def test_invalid_bucket_count(self):
        """测试无效的分桶数量"""
        endpoint = self.endpoints.add_endpoint('example.com')
        with pytest.raises(ValueError):
            self.aggregator.get_heartbeat_series(endpoint, buckets=0)
