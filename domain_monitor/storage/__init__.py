"""SQLite 持久化"""

from .database import Database
from .check_store import CheckStore
from .endpoint_store import EndpointStore
from .webhook_store import WebhookStore
from .settings_store import SettingsStore, MonitorSettings

__all__ = [
    'Database',
    'CheckStore',
    'EndpointStore',
    'WebhookStore',
    'SettingsStore',
    'MonitorSettings'
]
