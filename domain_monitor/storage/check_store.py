"""检查结果记录器

每次探测写入一行，行写入后不再修改；只有保留期清理会删除旧行。
"""

import sqlite3
from datetime import datetime, timedelta
from typing import List, Optional

from .database import Database
from ..models.uptime_check import (
    Check, CheckStatus, format_timestamp, parse_timestamp, utc_now
)
from ..utils.exceptions import StorageError
from ..utils.log_manager import get_logger


def row_to_check(row: sqlite3.Row) -> Check:
    """数据库行转换为Check"""
    return Check(
        id=row['id'],
        endpoint_id=row['domain_id'],
        status=CheckStatus(row['status']),
        response_time_ms=row['response_time_ms'],
        status_code=row['status_code'],
        error=row['error'],
        checked_at=parse_timestamp(row['checked_at'])
    )


class CheckStore:
    """uptime_checks 表的读写"""

    def __init__(self, database: Database):
        self.database = database
        self.logger = get_logger('storage.checks')

    def record(self, check: Check) -> Check:
        """
        写入一次检查结果

        Args:
            check: 检查结果

        Returns:
            Check: 带有数据库ID的检查结果

        Raises:
            StorageError: 写入失败
        """
        try:
            cursor = self.database.conn.execute(
                """
                INSERT INTO uptime_checks (domain_id, status, response_time_ms, status_code, error, checked_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (check.endpoint_id, check.status.value, check.response_time_ms,
                 check.status_code, check.error, format_timestamp(check.checked_at))
            )
        except sqlite3.Error as e:
            raise StorageError(f"记录检查结果失败 (domain_id={check.endpoint_id})",
                               operation='record', cause=e)

        return Check(
            id=cursor.lastrowid,
            endpoint_id=check.endpoint_id,
            status=check.status,
            response_time_ms=check.response_time_ms,
            status_code=check.status_code,
            error=check.error,
            checked_at=check.checked_at
        )

    def get_history(self, endpoint_id: int, limit: int = 100) -> List[Check]:
        """获取端点的检查历史（最新在前）"""
        try:
            rows = self.database.conn.execute(
                """
                SELECT * FROM uptime_checks
                WHERE domain_id = ?
                ORDER BY checked_at DESC, id DESC
                LIMIT ?
                """,
                (endpoint_id, int(limit))
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"读取检查历史失败 (domain_id={endpoint_id})",
                               operation='get_history', cause=e)
        return [row_to_check(row) for row in rows]

    def get_latest(self, endpoint_id: int) -> Optional[Check]:
        history = self.get_history(endpoint_id, limit=1)
        return history[0] if history else None

    def count(self) -> int:
        row = self.database.conn.execute("SELECT COUNT(*) AS c FROM uptime_checks").fetchone()
        return int(row['c'])

    def oldest_timestamp(self) -> Optional[datetime]:
        row = self.database.conn.execute(
            "SELECT MIN(checked_at) AS oldest FROM uptime_checks").fetchone()
        return parse_timestamp(row['oldest']) if row and row['oldest'] else None

    def delete_older_than(self, days: int, now: Optional[datetime] = None) -> int:
        """
        删除早于指定天数的检查记录（仅供保留期清理使用）

        Args:
            days: 保留天数
            now: 参考时间，默认当前UTC时间

        Returns:
            int: 删除的行数
        """
        cutoff = format_timestamp((now or utc_now()) - timedelta(days=days))
        try:
            cursor = self.database.conn.execute(
                "DELETE FROM uptime_checks WHERE checked_at < ?", (cutoff,))
        except sqlite3.Error as e:
            raise StorageError("清理检查记录失败", operation='delete_older_than', cause=e)

        deleted = cursor.rowcount
        self.logger.info(f"清理了 {deleted} 条早于 {days} 天的检查记录")
        return deleted
