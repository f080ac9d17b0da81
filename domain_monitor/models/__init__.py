"""数据模型"""

from .uptime_check import (
    CheckStatus, Check, Endpoint, ProbeResult, UptimeStats,
    HeartbeatBucket, HeartbeatSeries, PassSummary,
    utc_now, format_timestamp, parse_timestamp
)
from .notification import EventType, NotificationEvent, WebhookSubscription, DeliveryAttempt

__all__ = [
    'CheckStatus',
    'Check',
    'Endpoint',
    'ProbeResult',
    'UptimeStats',
    'HeartbeatBucket',
    'HeartbeatSeries',
    'PassSummary',
    'EventType',
    'NotificationEvent',
    'WebhookSubscription',
    'DeliveryAttempt',
    'utc_now',
    'format_timestamp',
    'parse_timestamp'
]
