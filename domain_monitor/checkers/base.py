"""可用性探测器基类"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from ..models.uptime_check import ProbeResult
from ..utils.log_manager import get_logger


class BaseChecker(ABC):
    """探测器抽象基类"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        初始化探测器

        Args:
            config: 探测配置参数
        """
        self.config = config or {}
        self.checker_type = self.__class__.__name__.replace('Checker', '').lower()
        self.logger = get_logger(f'checker.{self.checker_type}')

    @abstractmethod
    async def probe(self, hostname: str) -> ProbeResult:
        """
        对一个端点执行一次可用性探测

        Args:
            hostname: 端点主机名

        Returns:
            ProbeResult: 探测结果；网络层面的失败体现为 down 结果，不抛异常
        """
        pass

    @abstractmethod
    def validate_config(self) -> bool:
        """
        验证配置参数是否有效

        Returns:
            bool: 配置是否有效
        """
        pass

    def get_timeout(self) -> float:
        """
        获取单次尝试的超时时间

        Returns:
            float: 超时时间（秒）
        """
        return self.config.get('timeout', 10)
