"""配置管理器"""

import os
from typing import Dict, Any, List, Optional

import yaml

from ..utils.config_validator import ConfigValidator
from ..utils.exceptions import ConfigError, ErrorCode
from ..utils.log_manager import get_logger

SECTION_VALIDATORS = {
    'global': ConfigValidator.validate_global_config,
    'monitoring': ConfigValidator.validate_monitoring_config,
    'notifications': ConfigValidator.validate_notifications_config,
    'smtp': ConfigValidator.validate_smtp_config,
    'api': ConfigValidator.validate_api_config,
    'retention': ConfigValidator.validate_retention_config,
}


class ConfigManager:
    """配置管理器，负责YAML配置文件的加载、解析和验证"""

    def __init__(self, config_path: str):
        """
        初始化配置管理器

        Args:
            config_path: 配置文件路径
        """
        self.config_path = config_path
        self.config: Dict[str, Any] = {}
        self.logger = get_logger('config_manager')

    def load_config(self) -> Dict[str, Any]:
        """
        加载YAML配置文件

        Returns:
            Dict[str, Any]: 配置字典

        Raises:
            ConfigError: 文件不存在、为空、YAML格式错误或配置段无效
        """
        self.logger.info(f"开始加载配置文件: {self.config_path}")

        if not os.path.exists(self.config_path):
            self.logger.error(f"配置文件不存在: {self.config_path}")
            raise ConfigError(f"配置文件不存在: {self.config_path}", ErrorCode.CONFIG_FILE_NOT_FOUND,
                              config_path=self.config_path)

        try:
            with open(self.config_path, 'r', encoding='utf-8') as file:
                config = yaml.safe_load(file)
        except yaml.YAMLError as e:
            self.logger.error(f"YAML格式错误: {e}")
            raise ConfigError(f"YAML格式错误: {e}", ErrorCode.CONFIG_PARSE_ERROR,
                              config_path=self.config_path, cause=e)
        except PermissionError as e:
            self.logger.error(f"没有权限读取配置文件: {self.config_path}")
            raise ConfigError(f"没有权限读取配置文件: {self.config_path}",
                              config_path=self.config_path, cause=e)
        except OSError as e:
            self.logger.error(f"读取配置文件失败: {e}")
            raise ConfigError(f"读取配置文件失败: {e}", config_path=self.config_path, cause=e)

        if config is None:
            self.logger.error("配置文件为空")
            raise ConfigError("配置文件为空", config_path=self.config_path)

        self._validate_config(config)

        channels = config.get('notifications', {}).get('channels')
        self.logger.info(
            f"配置验证成功，配置段: {', '.join(config.keys())}，"
            f"通知渠道: {len(channels) if channels is not None else '全部内置渠道'}")

        self.config = config
        return self.config

    def _validate_config(self, config: Dict[str, Any]) -> None:
        """
        验证配置文件内容

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise ConfigError("配置文件根节点必须是字典类型", config_path=self.config_path)

        for section, validator in SECTION_VALIDATORS.items():
            if section in config:
                validator(config[section])

        unknown = set(config) - set(SECTION_VALIDATORS)
        if unknown:
            self.logger.warning(f"忽略未知的配置段: {', '.join(sorted(unknown))}")

    def get_global_config(self) -> Dict[str, Any]:
        return self.config.get('global', {})

    def get_monitoring_config(self) -> Dict[str, Any]:
        return self.config.get('monitoring', {})

    def get_notifications_config(self) -> Dict[str, Any]:
        return self.config.get('notifications', {})

    def get_channels_config(self) -> Optional[List[Dict[str, Any]]]:
        """
        获取通知渠道配置

        Returns:
            Optional[List[Dict[str, Any]]]: 渠道列表，未配置时为None（使用全部内置渠道）
        """
        return self.get_notifications_config().get('channels')

    def get_smtp_config(self) -> Dict[str, Any]:
        return self.config.get('smtp', {})

    def get_api_config(self) -> Dict[str, Any]:
        return self.config.get('api', {})

    def get_retention_config(self) -> Dict[str, Any]:
        return self.config.get('retention', {})

    def reload_config(self) -> Dict[str, Any]:
        """
        重新加载配置文件

        Raises:
            ConfigError: 配置重新加载失败
        """
        self.logger.info("重新加载配置文件")
        return self.load_config()
