"""域名可用性监控与告警分发"""

__version__ = "1.0.0"
