"""可用性检查相关的数据模型"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional

# 固定宽度的UTC时间格式，字典序即时间序
TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%S.%fZ'


def utc_now() -> datetime:
    """当前UTC时间（带时区）"""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """将时间格式化为存储用的固定宽度ISO字符串"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """解析存储的时间字符串，返回带UTC时区的datetime"""
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


class CheckStatus(str, Enum):
    """单次探测的结果状态"""
    UP = 'up'
    DOWN = 'down'


@dataclass
class Endpoint:
    """被监控的端点（域名）"""
    id: int
    domain: str

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'domain': self.domain}


@dataclass
class ProbeResult:
    """探测器返回的原始结果，尚未持久化"""
    status: CheckStatus
    response_time_ms: Optional[int] = None
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_up(self) -> bool:
        return self.status == CheckStatus.UP


@dataclass(frozen=True)
class Check:
    """一次探测的持久化结果，写入后不再修改"""
    endpoint_id: int
    status: CheckStatus
    response_time_ms: Optional[int] = None
    status_code: Optional[int] = None
    error: Optional[str] = None
    checked_at: datetime = field(default_factory=utc_now)
    id: Optional[int] = None

    @classmethod
    def from_probe(cls, endpoint_id: int, result: ProbeResult,
                   checked_at: Optional[datetime] = None) -> 'Check':
        return cls(
            endpoint_id=endpoint_id,
            status=result.status,
            response_time_ms=result.response_time_ms,
            status_code=result.status_code,
            error=result.error,
            checked_at=checked_at or utc_now()
        )

    @property
    def is_up(self) -> bool:
        return self.status == CheckStatus.UP

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'domain_id': self.endpoint_id,
            'status': self.status.value,
            'response_time_ms': self.response_time_ms,
            'status_code': self.status_code,
            'error': self.error,
            'checked_at': format_timestamp(self.checked_at)
        }


@dataclass
class UptimeStats:
    """按需计算的端点可用性统计，不落库"""
    endpoint_id: int
    domain: str
    total_checks: int = 0
    successful_checks: int = 0
    uptime_percentage: float = 100.0
    avg_response_time_ms: int = 0
    last_check: Optional[datetime] = None
    current_status: str = 'unknown'  # up / down / unknown
    consecutive_failures: int = 0
    heartbeats: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'domain_id': self.endpoint_id,
            'domain': self.domain,
            'total_checks': self.total_checks,
            'successful_checks': self.successful_checks,
            'uptime_percentage': self.uptime_percentage,
            'avg_response_time_ms': self.avg_response_time_ms,
            'last_check': format_timestamp(self.last_check) if self.last_check else None,
            'current_status': self.current_status,
            'consecutive_failures': self.consecutive_failures,
            'heartbeats': [{'status': status} for status in self.heartbeats]
        }


@dataclass
class HeartbeatBucket:
    """心跳序列中的一个时间桶"""
    start: datetime
    end: datetime
    up_count: int = 0
    down_count: int = 0
    avg_response_time_ms: Optional[int] = None

    @property
    def status(self) -> str:
        if self.up_count == 0 and self.down_count == 0:
            return 'none'
        if self.down_count == 0:
            return 'up'
        if self.up_count == 0:
            return 'down'
        return 'partial'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start': format_timestamp(self.start),
            'end': format_timestamp(self.end),
            'up_count': self.up_count,
            'down_count': self.down_count,
            'avg_response_time_ms': self.avg_response_time_ms,
            'status': self.status
        }


@dataclass
class HeartbeatSeries:
    """单个端点的分桶心跳序列"""
    endpoint_id: int
    domain: str
    buckets: List[HeartbeatBucket] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'domain_id': self.endpoint_id,
            'domain': self.domain,
            'buckets': [bucket.to_dict() for bucket in self.buckets]
        }


@dataclass
class PassSummary:
    """一轮检查的汇总"""
    checked: int = 0
    up: int = 0
    down: int = 0

    def add(self, check: Check) -> None:
        self.checked += 1
        if check.is_up:
            self.up += 1
        else:
            self.down += 1

    def to_dict(self) -> Dict[str, Any]:
        return {'checked': self.checked, 'up': self.up, 'down': self.down}
