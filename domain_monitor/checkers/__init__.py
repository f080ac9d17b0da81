"""可用性探测器"""

from .base import BaseChecker
from .http_checker import HttpChecker

__all__ = [
    'BaseChecker',
    'HttpChecker'
]
