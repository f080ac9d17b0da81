"""通知事件和Webhook订阅相关的数据模型"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Dict, Any, Mapping, Optional, FrozenSet

from .uptime_check import utc_now


class EventType(str, Enum):
    """可分发的事件类型"""
    DOMAIN_EXPIRING = 'domain.expiring'
    DOMAIN_EXPIRED = 'domain.expired'
    HEALTH_FAILED = 'health.failed'
    UPTIME_DOWN = 'uptime.down'
    UPTIME_RECOVERED = 'uptime.recovered'
    REFRESH_COMPLETE = 'refresh.complete'
    DOMAIN_CREATED = 'domain.created'
    DOMAIN_DELETED = 'domain.deleted'

    @classmethod
    def values(cls) -> FrozenSet[str]:
        return frozenset(member.value for member in cls)


def _iso(value: datetime) -> str:
    """ISO-8601 (毫秒精度, Z后缀)"""
    return value.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


@dataclass(frozen=True)
class NotificationEvent:
    """一次分发的事件，构造后不可变，所有渠道共享同一个实例"""
    type: EventType
    data: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        object.__setattr__(self, 'type', EventType(self.type))
        object.__setattr__(self, 'data', MappingProxyType(dict(self.data)))

    @property
    def iso_timestamp(self) -> str:
        return _iso(self.timestamp)

    def to_payload(self) -> Dict[str, Any]:
        """Webhook请求体结构: {event, timestamp, data}"""
        return {
            'event': self.type.value,
            'timestamp': self.iso_timestamp,
            'data': dict(self.data)
        }


@dataclass
class WebhookSubscription:
    """Webhook订阅"""
    id: int
    name: str
    url: str
    secret: Optional[str] = None
    events: FrozenSet[str] = field(default_factory=frozenset)
    enabled: bool = True
    last_triggered: Optional[datetime] = None
    last_status: Optional[int] = None
    failure_count: int = 0

    def subscribes_to(self, event_type: str) -> bool:
        return self.enabled and event_type in self.events

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'url': self.url,
            'events': sorted(self.events),
            'enabled': self.enabled,
            'last_triggered': _iso(self.last_triggered) if self.last_triggered else None,
            'last_status': self.last_status,
            'failure_count': self.failure_count
        }


@dataclass(frozen=True)
class DeliveryAttempt:
    """一次Webhook投递尝试的记录（仅追加）"""
    webhook_id: int
    event: str
    payload: str
    response_status: Optional[int]
    response_body: Optional[str]
    success: bool
    attempt: int
    delivered_at: datetime = field(default_factory=utc_now)
    id: Optional[int] = None
