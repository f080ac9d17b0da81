"""被监控端点的最小读写接口"""

import sqlite3
from typing import List, Optional

from .database import Database
from ..models.uptime_check import Endpoint
from ..utils.exceptions import StorageError


class EndpointStore:
    """domains 表：核心只读取，新增仅供命令行和测试使用"""

    def __init__(self, database: Database):
        self.database = database

    def list_endpoints(self) -> List[Endpoint]:
        try:
            rows = self.database.conn.execute(
                "SELECT id, domain FROM domains ORDER BY id").fetchall()
        except sqlite3.Error as e:
            raise StorageError("读取端点列表失败", operation='list_endpoints', cause=e)
        return [Endpoint(id=row['id'], domain=row['domain']) for row in rows]

    def get_endpoint(self, endpoint_id: int) -> Optional[Endpoint]:
        row = self.database.conn.execute(
            "SELECT id, domain FROM domains WHERE id = ?", (endpoint_id,)).fetchone()
        return Endpoint(id=row['id'], domain=row['domain']) if row else None

    def add_endpoint(self, domain: str) -> Endpoint:
        domain = domain.strip().lower()
        try:
            self.database.conn.execute(
                "INSERT OR IGNORE INTO domains (domain) VALUES (?)", (domain,))
            row = self.database.conn.execute(
                "SELECT id, domain FROM domains WHERE domain = ?", (domain,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"新增端点失败: {domain}", operation='add_endpoint', cause=e)
        return Endpoint(id=row['id'], domain=row['domain'])
