"""SQLite 数据库连接与表结构"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from ..utils.exceptions import StorageError, ErrorCode
from ..utils.log_manager import get_logger

SCHEMA_VERSION = 1

_SCHEMA_V1 = (
    """
    CREATE TABLE IF NOT EXISTS domains (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      domain TEXT NOT NULL UNIQUE,
      created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS uptime_checks (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      domain_id INTEGER NOT NULL REFERENCES domains(id) ON DELETE CASCADE,
      status TEXT NOT NULL CHECK(status IN ('up', 'down')),
      response_time_ms INTEGER,
      status_code INTEGER,
      error TEXT,
      checked_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_uptime_domain_checked ON uptime_checks(domain_id, checked_at);",
    "CREATE INDEX IF NOT EXISTS idx_uptime_checked ON uptime_checks(checked_at);",
    """
    CREATE TABLE IF NOT EXISTS webhooks (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      name TEXT NOT NULL,
      url TEXT NOT NULL,
      secret TEXT,
      events TEXT NOT NULL DEFAULT '[]',
      enabled INTEGER NOT NULL DEFAULT 1,
      last_triggered TEXT,
      last_status INTEGER,
      failure_count INTEGER NOT NULL DEFAULT 0,
      created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
      updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS webhook_deliveries (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      webhook_id INTEGER NOT NULL REFERENCES webhooks(id) ON DELETE CASCADE,
      event TEXT NOT NULL,
      payload TEXT NOT NULL,
      response_status INTEGER,
      response_body TEXT,
      success INTEGER NOT NULL DEFAULT 0,
      attempt INTEGER NOT NULL DEFAULT 1,
      delivered_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_deliveries_webhook ON webhook_deliveries(webhook_id);",
    "CREATE INDEX IF NOT EXISTS idx_deliveries_delivered ON webhook_deliveries(delivered_at);",
    """
    CREATE TABLE IF NOT EXISTS settings (
      key TEXT PRIMARY KEY,
      value TEXT NOT NULL
    );
    """,
)


class Database:
    """单进程共享的SQLite连接

    autocommit 模式（isolation_level=None），每条语句独立提交；
    需要读一致性的多语句读取通过 read_transaction() 包裹。
    """

    def __init__(self, db_path: str):
        """
        初始化数据库

        Args:
            db_path: 数据库文件路径，':memory:' 表示内存数据库
        """
        if not str(db_path or '').strip():
            raise StorageError("缺少数据库路径 db_path", operation='connect')
        self.db_path = str(db_path)
        self.logger = get_logger('storage.database')
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def connect(self) -> None:
        """打开连接并确保表结构存在"""
        if self._conn is not None:
            return

        try:
            if self.db_path != ':memory:':
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None,
                                   check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON;")
            conn.execute("PRAGMA busy_timeout = 5000;")
            if self.db_path != ':memory:':
                conn.execute("PRAGMA journal_mode = WAL;")
        except sqlite3.Error as e:
            raise StorageError(f"打开数据库失败: {self.db_path}", operation='connect', cause=e)

        self._conn = conn
        self._ensure_schema()
        self.logger.info(f"数据库已就绪: {self.db_path}")

    def _ensure_schema(self) -> None:
        conn = self._conn
        try:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
            row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
            current = int(row['v']) if row and row['v'] else 0
            if current >= SCHEMA_VERSION:
                return

            for statement in _SCHEMA_V1:
                conn.execute(statement)
            conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)",
                          (str(SCHEMA_VERSION),))
            self.logger.debug(f"表结构已初始化到版本 {SCHEMA_VERSION}")
        except sqlite3.Error as e:
            raise StorageError("初始化表结构失败", ErrorCode.STORAGE_SCHEMA_ERROR,
                               operation='ensure_schema', cause=e, recoverable=False)

    @contextmanager
    def read_transaction(self) -> Iterator[sqlite3.Connection]:
        """在一个读事务内执行多条查询，保证结果相互一致"""
        conn = self.conn
        conn.execute("BEGIN")
        try:
            yield conn
        finally:
            conn.execute("COMMIT")

    def close(self) -> None:
        """关闭连接"""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self.logger.info("数据库连接已关闭")
