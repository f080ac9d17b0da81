"""工具模块"""

from .exceptions import (
    DomainMonitorError, ConfigError, CheckerError, StorageError,
    NotificationError, NotificationConfigError, SchedulerError
)
from .log_manager import LogManager, LogLevel, get_logger, configure_logging, log_manager

__all__ = [
    'DomainMonitorError', 'ConfigError', 'CheckerError', 'StorageError',
    'NotificationError', 'NotificationConfigError', 'SchedulerError',
    'LogManager', 'LogLevel', 'get_logger', 'configure_logging', 'log_manager'
]
