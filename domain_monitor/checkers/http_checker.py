"""HTTP(S) 可用性探测器"""

import asyncio
import time
from typing import Dict, Any, Optional

import aiohttp

from .base import BaseChecker
from ..models.uptime_check import CheckStatus, ProbeResult

USER_AGENT = 'Domain-Monitor-Uptime/1.0'
TIMEOUT_MESSAGE = 'Connection timeout'


class HttpChecker(BaseChecker):
    """先尝试HTTPS，连接失败或超时后回退到HTTP

    状态码在 [200, 400) 视为 up，不跟随重定向。
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.user_agent = self.config.get('user_agent', USER_AGENT)

    def validate_config(self) -> bool:
        timeout = self.get_timeout()
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            self.logger.error(f"探测超时时间必须是正数: {timeout}")
            return False
        return True

    @staticmethod
    def _classify(status_code: int, response_time_ms: int) -> ProbeResult:
        if 200 <= status_code < 400:
            return ProbeResult(CheckStatus.UP, response_time_ms, status_code, None)
        return ProbeResult(CheckStatus.DOWN, response_time_ms, status_code, f"HTTP {status_code}")

    async def _attempt(self, url: str, started: float) -> ProbeResult:
        """发起一次请求；网络错误和超时向上抛出，由调用方决定是否回退"""
        timeout = aiohttp.ClientTimeout(total=self.get_timeout())
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, headers={'User-Agent': self.user_agent},
                                   allow_redirects=False) as response:
                response_time_ms = int(round((time.monotonic() - started) * 1000))
                return self._classify(response.status, response_time_ms)

    async def probe(self, hostname: str) -> ProbeResult:
        """
        探测一个主机

        Args:
            hostname: 主机名，不带协议

        Returns:
            ProbeResult: 探测结果，响应时间从探测开始计算
        """
        started = time.monotonic()

        try:
            return await self._attempt(f"https://{hostname}", started)
        except asyncio.TimeoutError:
            self.logger.debug(f"{hostname} HTTPS请求超时，回退到HTTP")
        except (aiohttp.ClientError, OSError) as e:
            self.logger.debug(f"{hostname} HTTPS请求失败，回退到HTTP: {e}")

        try:
            return await self._attempt(f"http://{hostname}", started)
        except asyncio.TimeoutError:
            return ProbeResult(CheckStatus.DOWN, None, None, TIMEOUT_MESSAGE)
        except (aiohttp.ClientError, OSError) as e:
            return ProbeResult(CheckStatus.DOWN, None, None, str(e) or e.__class__.__name__)
