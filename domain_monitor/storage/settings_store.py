"""运行时设置存储

设置以键值对形式存放在 settings 表中（值为JSON编码），每次读取都直接查询数据库，
不做缓存，修改后在下一次调用时生效。未设置的键使用配置文件给出的默认值。
"""

import json
import sqlite3
from dataclasses import dataclass, field, fields
from typing import Dict, Any, List, Optional

from .database import Database
from ..utils.exceptions import StorageError
from ..utils.log_manager import get_logger


@dataclass(frozen=True)
class MonitorSettings:
    """一次读取得到的设置快照"""
    uptime_monitoring_enabled: bool = False
    uptime_check_interval_minutes: int = 5
    uptime_alert_threshold: int = 3
    email_enabled: bool = False
    email_recipients: List[str] = field(default_factory=list)
    slack_enabled: bool = False
    slack_webhook_url: Optional[str] = None
    slack_events: List[str] = field(default_factory=list)
    signal_enabled: bool = False
    signal_api_url: Optional[str] = None
    signal_sender: Optional[str] = None
    signal_recipients: List[str] = field(default_factory=list)
    signal_events: List[str] = field(default_factory=list)
    health_log_retention_days: int = 30
    auto_cleanup_enabled: bool = True


SETTING_KEYS = tuple(f.name for f in fields(MonitorSettings))

_BOOL_KEYS = {f.name for f in fields(MonitorSettings) if f.type in (bool, 'bool')}
_INT_KEYS = {f.name for f in fields(MonitorSettings) if f.type in (int, 'int')}
_LIST_KEYS = {'email_recipients', 'slack_events', 'signal_recipients', 'signal_events'}


def _coerce(key: str, value: Any) -> Any:
    """把存储值转换为设置项的类型"""
    if key in _BOOL_KEYS:
        if isinstance(value, str):
            return value.strip().lower() == 'true'
        return bool(value)
    if key in _INT_KEYS:
        return int(value)
    if key in _LIST_KEYS:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(',') if item.strip()]
        return [str(item) for item in value]
    if value is None or value == '':
        return None
    return str(value)


def defaults_from_config(monitoring: Dict[str, Any], notifications: Dict[str, Any],
                         retention: Dict[str, Any]) -> Dict[str, Any]:
    """从YAML配置的 monitoring / notifications / retention 段生成设置默认值"""
    defaults: Dict[str, Any] = {}
    mapping = {
        'uptime_monitoring_enabled': monitoring.get('enabled'),
        'uptime_check_interval_minutes': monitoring.get('check_interval_minutes'),
        'uptime_alert_threshold': monitoring.get('alert_threshold'),
        'health_log_retention_days': retention.get('uptime_retention_days'),
        'auto_cleanup_enabled': retention.get('auto_cleanup_enabled'),
    }
    for key in ('email_enabled', 'email_recipients', 'slack_enabled', 'slack_webhook_url',
                'slack_events', 'signal_enabled', 'signal_api_url', 'signal_sender',
                'signal_recipients', 'signal_events'):
        mapping[key] = notifications.get(key)

    for key, value in mapping.items():
        if value is not None:
            defaults[key] = value
    return defaults


class SettingsStore:
    """settings 表的读写"""

    def __init__(self, database: Database, defaults: Optional[Dict[str, Any]] = None):
        self.database = database
        self.defaults = dict(defaults or {})
        self.logger = get_logger('storage.settings')

        unknown = set(self.defaults) - set(SETTING_KEYS)
        if unknown:
            raise StorageError(f"未知的设置项: {', '.join(sorted(unknown))}", operation='init')

    def get_settings(self) -> MonitorSettings:
        """
        读取当前设置

        Returns:
            MonitorSettings: 合并了数据库值和默认值的设置快照

        Raises:
            StorageError: 数据库读取失败
        """
        try:
            rows = self.database.conn.execute("SELECT key, value FROM settings").fetchall()
        except sqlite3.Error as e:
            raise StorageError("读取设置失败", operation='get_settings', cause=e)

        values: Dict[str, Any] = {}
        for key, default in self.defaults.items():
            values[key] = _coerce(key, default)

        for row in rows:
            key = row['key']
            if key not in SETTING_KEYS:
                continue
            try:
                values[key] = _coerce(key, json.loads(row['value']))
            except (ValueError, TypeError) as e:
                self.logger.warning(f"设置项 {key} 的值无法解析，使用默认值: {e}")

        return MonitorSettings(**values)

    def get(self, key: str) -> Any:
        return getattr(self.get_settings(), key)

    def set(self, key: str, value: Any) -> None:
        if key not in SETTING_KEYS:
            raise StorageError(f"未知的设置项: {key}", operation='set')
        try:
            self.database.conn.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, json.dumps(_coerce(key, value))))
        except sqlite3.Error as e:
            raise StorageError(f"保存设置失败: {key}", operation='set', cause=e)

    def update(self, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            self.set(key, value)
