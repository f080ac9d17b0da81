"""可用性统计聚合器

从 uptime_checks 表计算按需统计：可用率、平均响应时间、当前状态、
连续失败次数、定长心跳序列和分桶心跳序列。

单端点接口与批量接口共享同一套SQL表达式和分桶逻辑，结果完全一致；
批量接口只是把多次查询合并为少量查询，并在一个读事务内完成。
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..models.uptime_check import (
    Endpoint, HeartbeatBucket, HeartbeatSeries, UptimeStats,
    format_timestamp, parse_timestamp, utc_now
)
from ..storage.database import Database
from ..storage.endpoint_store import EndpointStore
from ..utils.log_manager import get_logger

DEFAULT_HEARTBEAT_COUNT = 30
DEFAULT_BUCKETS = 45
DEFAULT_LOOKBACK = timedelta(hours=24)

# SQLite 单条语句的参数数量有上限，批量查询按块拆分
_CHUNK_SIZE = 500

_AGGREGATE_COLUMNS = """
    COUNT(*) AS total_checks,
    COALESCE(SUM(CASE WHEN status = 'up' THEN 1 ELSE 0 END), 0) AS successful_checks,
    ROUND(AVG(CASE WHEN status = 'up' THEN response_time_ms END), 0) AS avg_response_time_ms,
    MAX(checked_at) AS last_check
"""


def _consecutive_failures_sql(marks: str) -> str:
    return f"""
    WITH ranked AS (
      SELECT domain_id, status,
             ROW_NUMBER() OVER (
               PARTITION BY domain_id ORDER BY checked_at DESC, id DESC
             ) AS rn
      FROM uptime_checks
      WHERE domain_id IN ({marks})
    ),
    first_up AS (
      SELECT domain_id, MIN(rn) AS rn FROM ranked
      WHERE status = 'up'
      GROUP BY domain_id
    )
    SELECT r.domain_id AS domain_id, COUNT(*) AS failures
    FROM ranked r
    LEFT JOIN first_up f ON f.domain_id = r.domain_id
    WHERE r.status = 'down' AND (f.rn IS NULL OR r.rn < f.rn)
    GROUP BY r.domain_id
    """


def calculate_uptime_percentage(successful: int, total: int) -> float:
    """可用率，保留两位小数；没有检查记录时为100"""
    if total <= 0:
        return 100.0
    return _round_half_up(successful / total * 10000) / 100


def _round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def pad_heartbeats(statuses_newest_first: Sequence[str], count: int) -> List[str]:
    """最近 count 个状态，按时间正序排列，不足部分在左侧补 none"""
    recent = list(statuses_newest_first[:count])
    recent.reverse()
    return ['none'] * (count - len(recent)) + recent


def _chunks(items: Sequence[int], size: int = _CHUNK_SIZE) -> Iterable[Sequence[int]]:
    for index in range(0, len(items), size):
        yield items[index:index + size]


def _placeholders(count: int) -> str:
    return ','.join('?' * count)


class UptimeAggregator:
    """可用性统计聚合器"""

    def __init__(self, database: Database, endpoint_store: EndpointStore,
                 heartbeat_count: int = DEFAULT_HEARTBEAT_COUNT):
        """
        初始化聚合器

        Args:
            database: 数据库
            endpoint_store: 端点存储
            heartbeat_count: 统计结果中定长心跳序列的长度
        """
        if heartbeat_count < 1:
            raise ValueError("heartbeat_count 必须是正整数")
        self.database = database
        self.endpoint_store = endpoint_store
        self.heartbeat_count = heartbeat_count
        self.logger = get_logger('aggregator')

    # ------------------------------------------------------------------
    # 单端点
    # ------------------------------------------------------------------

    def get_consecutive_failures(self, endpoint_id: int) -> int:
        """从最新记录往前数连续的 down，遇到第一个 up 或历史起点为止"""
        cursor = self.database.conn.execute(
            """
            SELECT status FROM uptime_checks
            WHERE domain_id = ?
            ORDER BY checked_at DESC, id DESC
            """,
            (endpoint_id,)
        )
        failures = 0
        for row in cursor:
            if row['status'] == 'up':
                break
            failures += 1
        cursor.close()
        return failures

    def get_heartbeats(self, endpoint_id: int, count: Optional[int] = None) -> List[str]:
        """最近 count 次检查的状态（时间正序，左侧补 none，长度恒为 count）"""
        count = self.heartbeat_count if count is None else count
        if count < 1:
            raise ValueError("心跳数量必须是正整数")
        rows = self.database.conn.execute(
            """
            SELECT status FROM uptime_checks
            WHERE domain_id = ?
            ORDER BY checked_at DESC, id DESC
            LIMIT ?
            """,
            (endpoint_id, count)
        ).fetchall()
        return pad_heartbeats([row['status'] for row in rows], count)

    def get_stats(self, endpoint: Endpoint) -> UptimeStats:
        """计算单个端点的统计"""
        conn = self.database.conn
        aggregate = conn.execute(
            f"SELECT {_AGGREGATE_COLUMNS} FROM uptime_checks WHERE domain_id = ?",
            (endpoint.id,)
        ).fetchone()
        latest = conn.execute(
            """
            SELECT status FROM uptime_checks
            WHERE domain_id = ?
            ORDER BY checked_at DESC, id DESC
            LIMIT 1
            """,
            (endpoint.id,)
        ).fetchone()

        return self._build_stats(
            endpoint,
            aggregate,
            latest['status'] if latest else None,
            self.get_consecutive_failures(endpoint.id),
            self.get_heartbeats(endpoint.id)
        )

    def _build_stats(self, endpoint: Endpoint, aggregate, current_status: Optional[str],
                     consecutive_failures: int, heartbeats: List[str]) -> UptimeStats:
        total = int(aggregate['total_checks']) if aggregate else 0
        successful = int(aggregate['successful_checks'] or 0) if aggregate else 0
        avg = aggregate['avg_response_time_ms'] if aggregate else None
        last_check = aggregate['last_check'] if aggregate else None

        return UptimeStats(
            endpoint_id=endpoint.id,
            domain=endpoint.domain,
            total_checks=total,
            successful_checks=successful,
            uptime_percentage=calculate_uptime_percentage(successful, total),
            avg_response_time_ms=int(avg) if avg is not None else 0,
            last_check=parse_timestamp(last_check) if last_check else None,
            current_status=current_status or 'unknown',
            consecutive_failures=consecutive_failures,
            heartbeats=heartbeats
        )

    # ------------------------------------------------------------------
    # 批量
    # ------------------------------------------------------------------

    def get_consecutive_failures_batch(self, endpoint_ids: Sequence[int]) -> Dict[int, int]:
        """批量计算连续失败次数，未出现的端点为0"""
        ids = list(dict.fromkeys(endpoint_ids))
        result = {endpoint_id: 0 for endpoint_id in ids}
        with self.database.read_transaction() as conn:
            for chunk in _chunks(ids):
                rows = conn.execute(
                    _consecutive_failures_sql(_placeholders(len(chunk))), tuple(chunk)
                ).fetchall()
                for row in rows:
                    result[row['domain_id']] = int(row['failures'])
        return result

    def get_stats_batch(self, endpoints: Sequence[Endpoint]) -> List[UptimeStats]:
        """批量计算统计，结果与逐个调用 get_stats 相同，顺序与输入一致"""
        endpoints = list(endpoints)
        if not endpoints:
            return []

        ids = list(dict.fromkeys(endpoint.id for endpoint in endpoints))
        aggregates: Dict[int, object] = {}
        latest: Dict[int, str] = {}
        failures: Dict[int, int] = {endpoint_id: 0 for endpoint_id in ids}
        recent: Dict[int, List[str]] = defaultdict(list)

        with self.database.read_transaction() as conn:
            for chunk in _chunks(ids):
                params = tuple(chunk)
                marks = _placeholders(len(chunk))

                for row in conn.execute(
                        f"""
                        SELECT domain_id, {_AGGREGATE_COLUMNS}
                        FROM uptime_checks
                        WHERE domain_id IN ({marks})
                        GROUP BY domain_id
                        """, params):
                    aggregates[row['domain_id']] = row

                # 最近 N 条记录同时给出当前状态、心跳和连续失败
                rows = conn.execute(
                    f"""
                    SELECT domain_id, status, rn FROM (
                      SELECT domain_id, status,
                             ROW_NUMBER() OVER (
                               PARTITION BY domain_id ORDER BY checked_at DESC, id DESC
                             ) AS rn
                      FROM uptime_checks
                      WHERE domain_id IN ({marks})
                    )
                    WHERE rn <= ?
                    ORDER BY domain_id, rn
                    """,
                    params + (self.heartbeat_count,)
                ).fetchall()
                for row in rows:
                    recent[row['domain_id']].append(row['status'])
                    if row['rn'] == 1:
                        latest[row['domain_id']] = row['status']

                for row in conn.execute(_consecutive_failures_sql(marks), params):
                    failures[row['domain_id']] = int(row['failures'])

        return [
            self._build_stats(
                endpoint,
                aggregates.get(endpoint.id),
                latest.get(endpoint.id),
                failures.get(endpoint.id, 0),
                pad_heartbeats(recent.get(endpoint.id, []), self.heartbeat_count)
            )
            for endpoint in endpoints
        ]

    def get_all_stats(self) -> List[UptimeStats]:
        """所有端点的统计"""
        return self.get_stats_batch(self.endpoint_store.list_endpoints())

    # ------------------------------------------------------------------
    # 分桶心跳序列
    # ------------------------------------------------------------------

    @staticmethod
    def _window(buckets: int, lookback: timedelta,
                now: Optional[datetime]) -> Tuple[datetime, datetime, timedelta]:
        if buckets < 1:
            raise ValueError("分桶数量必须是正整数")
        if lookback.total_seconds() <= 0:
            raise ValueError("回看时长必须为正")
        end = now or utc_now()
        start = end - lookback
        return start, end, lookback / buckets

    @staticmethod
    def _build_buckets(checks: Iterable[Tuple[datetime, str, Optional[int]]],
                       start: datetime, end: datetime, width: timedelta,
                       buckets: int) -> List[HeartbeatBucket]:
        result = [
            HeartbeatBucket(start=start + width * index, end=start + width * (index + 1))
            for index in range(buckets)
        ]
        result[-1].end = end
        response_times: List[List[int]] = [[] for _ in range(buckets)]

        for checked_at, status, response_time_ms in checks:
            if checked_at < start or checked_at > end:
                continue
            index = min(int((checked_at - start) / width), buckets - 1)
            if status == 'up':
                result[index].up_count += 1
                if response_time_ms is not None:
                    response_times[index].append(response_time_ms)
            else:
                result[index].down_count += 1

        for bucket, times in zip(result, response_times):
            if times:
                bucket.avg_response_time_ms = _round_half_up(sum(times) / len(times))
        return result

    def get_heartbeat_series(self, endpoint: Endpoint, buckets: int = DEFAULT_BUCKETS,
                             lookback: timedelta = DEFAULT_LOOKBACK,
                             now: Optional[datetime] = None) -> HeartbeatSeries:
        """
        单个端点的分桶心跳序列

        Args:
            endpoint: 端点
            buckets: 分桶数量
            lookback: 回看时长
            now: 窗口终点，默认当前UTC时间

        Returns:
            HeartbeatSeries: 恰好 buckets 个桶，时间正序
        """
        start, end, width = self._window(buckets, lookback, now)
        rows = self.database.conn.execute(
            """
            SELECT checked_at, status, response_time_ms FROM uptime_checks
            WHERE domain_id = ? AND checked_at >= ? AND checked_at <= ?
            """,
            (endpoint.id, format_timestamp(start), format_timestamp(end))
        ).fetchall()
        checks = [(parse_timestamp(row['checked_at']), row['status'], row['response_time_ms'])
                  for row in rows]
        return HeartbeatSeries(
            endpoint_id=endpoint.id,
            domain=endpoint.domain,
            buckets=self._build_buckets(checks, start, end, width, buckets)
        )

    def get_heartbeat_series_batch(self, endpoints: Sequence[Endpoint],
                                   buckets: int = DEFAULT_BUCKETS,
                                   lookback: timedelta = DEFAULT_LOOKBACK,
                                   now: Optional[datetime] = None) -> List[HeartbeatSeries]:
        """批量分桶心跳序列，结果与逐个调用 get_heartbeat_series 相同"""
        start, end, width = self._window(buckets, lookback, now)
        endpoints = list(endpoints)
        ids = list(dict.fromkeys(endpoint.id for endpoint in endpoints))
        grouped: Dict[int, List[Tuple[datetime, str, Optional[int]]]] = defaultdict(list)

        if ids:
            with self.database.read_transaction() as conn:
                for chunk in _chunks(ids):
                    rows = conn.execute(
                        f"""
                        SELECT domain_id, checked_at, status, response_time_ms
                        FROM uptime_checks
                        WHERE domain_id IN ({_placeholders(len(chunk))})
                          AND checked_at >= ? AND checked_at <= ?
                        """,
                        tuple(chunk) + (format_timestamp(start), format_timestamp(end))
                    ).fetchall()
                    for row in rows:
                        grouped[row['domain_id']].append(
                            (parse_timestamp(row['checked_at']), row['status'],
                             row['response_time_ms']))

        return [
            HeartbeatSeries(
                endpoint_id=endpoint.id,
                domain=endpoint.domain,
                buckets=self._build_buckets(grouped.get(endpoint.id, []), start, end,
                                            width, buckets)
            )
            for endpoint in endpoints
        ]

    def get_all_heartbeat_series(self, buckets: int = DEFAULT_BUCKETS,
                                 lookback: timedelta = DEFAULT_LOOKBACK,
                                 now: Optional[datetime] = None) -> List[HeartbeatSeries]:
        """所有端点的分桶心跳序列"""
        return self.get_heartbeat_series_batch(self.endpoint_store.list_endpoints(),
                                               buckets, lookback, now)
