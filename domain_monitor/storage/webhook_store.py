"""Webhook订阅与投递记录的存储"""

import json
import sqlite3
from datetime import timedelta, datetime
from typing import Iterable, List, Optional

from .database import Database
from ..models.notification import WebhookSubscription, DeliveryAttempt
from ..models.uptime_check import format_timestamp, parse_timestamp, utc_now
from ..utils.exceptions import StorageError
from ..utils.log_manager import get_logger

RESPONSE_BODY_LIMIT = 500


def _parse_events(raw: Optional[str]) -> frozenset:
    try:
        events = json.loads(raw or '[]')
    except ValueError:
        return frozenset()
    if not isinstance(events, list):
        return frozenset()
    return frozenset(str(event) for event in events)


def row_to_subscription(row: sqlite3.Row) -> WebhookSubscription:
    return WebhookSubscription(
        id=row['id'],
        name=row['name'],
        url=row['url'],
        secret=row['secret'],
        events=_parse_events(row['events']),
        enabled=bool(row['enabled']),
        last_triggered=parse_timestamp(row['last_triggered']) if row['last_triggered'] else None,
        last_status=row['last_status'],
        failure_count=row['failure_count'] or 0
    )


class WebhookStore:
    """webhooks / webhook_deliveries 表的读写

    订阅的增删改属于外部CRUD，这里只提供分发所需的读取、
    投递结果回写，以及供命令行和测试使用的 add_webhook。
    """

    def __init__(self, database: Database):
        self.database = database
        self.logger = get_logger('storage.webhooks')

    def add_webhook(self, name: str, url: str, events: Iterable[str],
                    secret: Optional[str] = None, enabled: bool = True) -> WebhookSubscription:
        try:
            cursor = self.database.conn.execute(
                "INSERT INTO webhooks (name, url, secret, events, enabled) VALUES (?, ?, ?, ?, ?)",
                (name, url, secret, json.dumps(sorted(set(events))), 1 if enabled else 0)
            )
        except sqlite3.Error as e:
            raise StorageError(f"新增Webhook失败: {name}", operation='add_webhook', cause=e)
        return self.get_webhook(cursor.lastrowid)

    def get_webhook(self, webhook_id: int) -> Optional[WebhookSubscription]:
        row = self.database.conn.execute(
            "SELECT * FROM webhooks WHERE id = ?", (webhook_id,)).fetchone()
        return row_to_subscription(row) if row else None

    def get_webhooks_for_event(self, event_type: str) -> List[WebhookSubscription]:
        """获取订阅了指定事件且处于启用状态的Webhook"""
        try:
            rows = self.database.conn.execute(
                "SELECT * FROM webhooks WHERE enabled = 1 ORDER BY id").fetchall()
        except sqlite3.Error as e:
            raise StorageError("读取Webhook订阅失败", operation='get_webhooks_for_event', cause=e)

        subscriptions = [row_to_subscription(row) for row in rows]
        return [sub for sub in subscriptions if sub.subscribes_to(event_type)]

    def log_delivery(self, attempt: DeliveryAttempt) -> None:
        """记录一次投递尝试，响应体截断到500字符"""
        body = attempt.response_body
        if body is not None:
            body = body[:RESPONSE_BODY_LIMIT]
        try:
            self.database.conn.execute(
                """
                INSERT INTO webhook_deliveries
                  (webhook_id, event, payload, response_status, response_body, success, attempt, delivered_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (attempt.webhook_id, attempt.event, attempt.payload, attempt.response_status,
                 body, 1 if attempt.success else 0, attempt.attempt,
                 format_timestamp(attempt.delivered_at))
            )
        except sqlite3.Error as e:
            raise StorageError(f"记录投递日志失败 (webhook_id={attempt.webhook_id})",
                               operation='log_delivery', cause=e)

    def update_status(self, webhook_id: int, status: int, reset_failures: bool = False) -> None:
        """回写最近一次响应状态；成功时同时清零失败计数"""
        now = format_timestamp(utc_now())
        if reset_failures:
            sql = ("UPDATE webhooks SET last_status = ?, last_triggered = ?, failure_count = 0, "
                   "updated_at = ? WHERE id = ?")
        else:
            sql = "UPDATE webhooks SET last_status = ?, last_triggered = ?, updated_at = ? WHERE id = ?"
        try:
            self.database.conn.execute(sql, (status, now, now, webhook_id))
        except sqlite3.Error as e:
            raise StorageError(f"更新Webhook状态失败 (webhook_id={webhook_id})",
                               operation='update_status', cause=e)

    def increment_failure_count(self, webhook_id: int) -> None:
        now = format_timestamp(utc_now())
        try:
            self.database.conn.execute(
                "UPDATE webhooks SET failure_count = failure_count + 1, updated_at = ? WHERE id = ?",
                (now, webhook_id))
        except sqlite3.Error as e:
            raise StorageError(f"更新Webhook失败计数失败 (webhook_id={webhook_id})",
                               operation='increment_failure_count', cause=e)

    def get_deliveries(self, webhook_id: int, limit: int = 50) -> List[DeliveryAttempt]:
        rows = self.database.conn.execute(
            "SELECT * FROM webhook_deliveries WHERE webhook_id = ? ORDER BY id DESC LIMIT ?",
            (webhook_id, int(limit))).fetchall()
        return [
            DeliveryAttempt(
                id=row['id'],
                webhook_id=row['webhook_id'],
                event=row['event'],
                payload=row['payload'],
                response_status=row['response_status'],
                response_body=row['response_body'],
                success=bool(row['success']),
                attempt=row['attempt'],
                delivered_at=parse_timestamp(row['delivered_at'])
            )
            for row in rows
        ]

    def count_deliveries(self) -> int:
        row = self.database.conn.execute("SELECT COUNT(*) AS c FROM webhook_deliveries").fetchone()
        return int(row['c'])

    def oldest_delivery(self) -> Optional[datetime]:
        row = self.database.conn.execute(
            "SELECT MIN(delivered_at) AS oldest FROM webhook_deliveries").fetchone()
        return parse_timestamp(row['oldest']) if row and row['oldest'] else None

    def delete_deliveries_older_than(self, days: int, now: Optional[datetime] = None) -> int:
        cutoff = format_timestamp((now or utc_now()) - timedelta(days=days))
        try:
            cursor = self.database.conn.execute(
                "DELETE FROM webhook_deliveries WHERE delivered_at < ?", (cutoff,))
        except sqlite3.Error as e:
            raise StorageError("清理投递日志失败", operation='delete_deliveries_older_than', cause=e)
        self.logger.info(f"清理了 {cursor.rowcount} 条早于 {days} 天的投递日志")
        return cursor.rowcount
