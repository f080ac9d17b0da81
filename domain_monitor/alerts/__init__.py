"""通知模块

导入各渠道模块以完成渠道注册。
"""

from .base import BaseChannel, ChannelContext
from .registry import ChannelFactory, channel_factory, register_channel
from .webhook_alerter import WebhookChannel
from .slack_alerter import SlackChannel
from .signal_alerter import SignalChannel
from .email_alerter import EmailChannel
from .manager import NotificationDispatcher
from .integrator import AlertIntegrator

__all__ = [
    'BaseChannel',
    'ChannelContext',
    'ChannelFactory',
    'channel_factory',
    'register_channel',
    'WebhookChannel',
    'SlackChannel',
    'SignalChannel',
    'EmailChannel',
    'NotificationDispatcher',
    'AlertIntegrator'
]
