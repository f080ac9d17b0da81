"""配置验证工具"""

from typing import Dict, Any, List

from .exceptions import ConfigError
from ..models.notification import EventType

VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
SUPPORTED_CHANNELS = ['webhook', 'slack', 'signal', 'email']


def _require_dict(value: Any, section: str) -> None:
    if not isinstance(value, dict):
        raise ConfigError(f"{section}配置必须是字典类型")


def _positive_int(config: Dict[str, Any], key: str, section: str) -> None:
    value = config.get(key)
    if value is None:
        return
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ConfigError(f"{section}.{key} 必须是正整数")


def _non_negative_number(config: Dict[str, Any], key: str, section: str) -> None:
    value = config.get(key)
    if value is None:
        return
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
        raise ConfigError(f"{section}.{key} 必须是非负数")


def _bool(config: Dict[str, Any], key: str, section: str) -> None:
    value = config.get(key)
    if value is not None and not isinstance(value, bool):
        raise ConfigError(f"{section}.{key} 必须是布尔值")


def _string_list(config: Dict[str, Any], key: str, section: str) -> List[str]:
    value = config.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"{section}.{key} 必须是字符串列表")
    return value


class ConfigValidator:
    """配置验证器，每个配置段一个静态方法"""

    @staticmethod
    def validate_global_config(global_config: Dict[str, Any]) -> None:
        """
        验证全局配置

        Args:
            global_config: 全局配置

        Raises:
            ConfigError: 配置验证失败
        """
        _require_dict(global_config, 'global')

        log_level = global_config.get('log_level')
        if log_level is not None and log_level not in VALID_LOG_LEVELS:
            raise ConfigError(f"log_level 必须是以下值之一: {VALID_LOG_LEVELS}")

        _positive_int(global_config, 'max_log_size', 'global')
        _positive_int(global_config, 'log_backup_count', 'global')

        for key in ('log_file', 'db_path', 'state_file'):
            value = global_config.get(key)
            if value is not None and not isinstance(value, str):
                raise ConfigError(f"global.{key} 必须是字符串")

    @staticmethod
    def validate_monitoring_config(monitoring_config: Dict[str, Any]) -> None:
        """
        验证监控配置

        Raises:
            ConfigError: 配置验证失败
        """
        _require_dict(monitoring_config, 'monitoring')
        _bool(monitoring_config, 'enabled', 'monitoring')
        _positive_int(monitoring_config, 'check_interval_minutes', 'monitoring')
        _positive_int(monitoring_config, 'alert_threshold', 'monitoring')
        _positive_int(monitoring_config, 'heartbeat_count', 'monitoring')
        _non_negative_number(monitoring_config, 'probe_delay', 'monitoring')

        probe_timeout = monitoring_config.get('probe_timeout')
        if probe_timeout is not None and (
                not isinstance(probe_timeout, (int, float)) or isinstance(probe_timeout, bool)
                or probe_timeout <= 0):
            raise ConfigError("monitoring.probe_timeout 必须是正数")

    @staticmethod
    def validate_notifications_config(notifications_config: Dict[str, Any]) -> None:
        """
        验证通知配置

        Raises:
            ConfigError: 配置验证失败
        """
        _require_dict(notifications_config, 'notifications')

        channels = notifications_config.get('channels')
        if channels is not None:
            if not isinstance(channels, list):
                raise ConfigError("notifications.channels 必须是列表类型")
            for channel_config in channels:
                ConfigValidator.validate_channel_config(channel_config)

        retry_delays = notifications_config.get('retry_delays')
        if retry_delays is not None:
            if not isinstance(retry_delays, list) or not retry_delays:
                raise ConfigError("notifications.retry_delays 必须是非空列表")
            for delay in retry_delays:
                if not isinstance(delay, (int, float)) or isinstance(delay, bool) or delay < 0:
                    raise ConfigError("notifications.retry_delays 中的每一项必须是非负数")

        _non_negative_number(notifications_config, 'webhook_timeout', 'notifications')
        for key in ('email_enabled', 'slack_enabled', 'signal_enabled'):
            _bool(notifications_config, key, 'notifications')
        _string_list(notifications_config, 'email_recipients', 'notifications')
        _string_list(notifications_config, 'signal_recipients', 'notifications')

        valid_events = EventType.values()
        for key in ('slack_events', 'signal_events'):
            for event in _string_list(notifications_config, key, 'notifications'):
                if event not in valid_events:
                    raise ConfigError(f"notifications.{key} 包含未知事件 '{event}'，支持的事件: {valid_events}")

    @staticmethod
    def validate_channel_config(channel_config: Dict[str, Any]) -> None:
        """
        验证单个通知渠道配置

        Raises:
            ConfigError: 配置验证失败
        """
        _require_dict(channel_config, '通知渠道')

        channel_type = channel_config.get('type')
        if channel_type is None:
            raise ConfigError("通知渠道配置缺少必需的配置项: type")
        if channel_type not in SUPPORTED_CHANNELS:
            raise ConfigError(
                f"通知渠道类型 '{channel_type}' 不受支持。支持的类型: {SUPPORTED_CHANNELS}")

    @staticmethod
    def validate_smtp_config(smtp_config: Dict[str, Any]) -> None:
        """
        验证SMTP配置

        Raises:
            ConfigError: 配置验证失败
        """
        _require_dict(smtp_config, 'smtp')
        _bool(smtp_config, 'use_tls', 'smtp')
        _bool(smtp_config, 'start_tls', 'smtp')

        port = smtp_config.get('smtp_port')
        if port is not None and (not isinstance(port, int) or isinstance(port, bool)
                                 or not 0 < port < 65536):
            raise ConfigError("smtp.smtp_port 必须是 1-65535 之间的整数")

        if smtp_config.get('use_tls') and smtp_config.get('start_tls'):
            raise ConfigError("smtp.use_tls 和 smtp.start_tls 不能同时启用")

    @staticmethod
    def validate_api_config(api_config: Dict[str, Any]) -> None:
        """
        验证API配置

        Raises:
            ConfigError: 配置验证失败
        """
        _require_dict(api_config, 'api')
        _bool(api_config, 'enabled', 'api')

        host = api_config.get('host')
        if host is not None and not isinstance(host, str):
            raise ConfigError("api.host 必须是字符串")

        port = api_config.get('port')
        if port is not None and (not isinstance(port, int) or isinstance(port, bool)
                                 or not 0 < port < 65536):
            raise ConfigError("api.port 必须是 1-65535 之间的整数")

    @staticmethod
    def validate_retention_config(retention_config: Dict[str, Any]) -> None:
        """
        验证保留策略配置

        Raises:
            ConfigError: 配置验证失败
        """
        _require_dict(retention_config, 'retention')
        _bool(retention_config, 'auto_cleanup_enabled', 'retention')
        _positive_int(retention_config, 'uptime_retention_days', 'retention')
        _positive_int(retention_config, 'delivery_retention_days', 'retention')
