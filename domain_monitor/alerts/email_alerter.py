"""邮件通知渠道"""

import html
import re
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Dict, Any, List, Mapping, Optional, Sequence

import aiosmtplib

from .base import BaseChannel, ChannelContext
from .registry import register_channel
from ..models.notification import EventType, NotificationEvent
from ..storage.settings_store import MonitorSettings

EXPIRY_EVENTS = {EventType.DOMAIN_EXPIRING.value, EventType.DOMAIN_EXPIRED.value}
UPTIME_EVENTS = {EventType.UPTIME_DOWN.value, EventType.UPTIME_RECOVERED.value}
HANDLED_EVENTS = EXPIRY_EVENTS | UPTIME_EVENTS

_EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{title}</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background-color: #1a1a2e; color: #e5e7eb; margin: 0; padding: 20px;">
  <div style="max-width: 600px; margin: 0 auto; background-color: #16213e; border-radius: 8px; overflow: hidden;">
    <div style="background: {banner}; padding: 20px; text-align: center;">
      <h1 style="margin: 0; color: white; font-size: 24px;">{title}</h1>
    </div>
    <div style="padding: 20px;">
      {content}
    </div>
    <div style="background-color: #1a1a2e; padding: 15px; text-align: center; border-top: 1px solid #374151;">
      <p style="margin: 0; color: #6b7280; font-size: 12px;">This alert was sent by Domain Monitor</p>
    </div>
  </div>
</body>
</html>
"""

_CELL = 'padding: 12px; border-bottom: 1px solid #374151;'
_HEAD = 'padding: 12px; text-align: left; color: #e5e7eb;'


def days_color(days: int) -> str:
    """剩余天数对应的颜色"""
    if days <= 7:
        return '#ef4444'
    if days <= 14:
        return '#f97316'
    return '#eab308'


def _esc(value: Any) -> str:
    return html.escape(str(value))


def _days_left(value: Any) -> int:
    """剩余天数；无法解析时按0处理"""
    try:
        return int(float(value or 0))
    except (TypeError, ValueError):
        return 0


def _expiring_domains(data: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """事件数据可以是 domains 列表，也可以是单个域名的字段"""
    domains = data.get('domains')
    if isinstance(domains, list):
        return [d for d in domains if isinstance(d, Mapping)]
    if data.get('domain'):
        return [{
            'domain': data.get('domain'),
            'expiry_date': data.get('expiry_date', ''),
            'days': data.get('days', 0),
            'registrar': data.get('registrar')
        }]
    return []


def build_expiration_html(domains: Sequence[Mapping[str, Any]]) -> str:
    """域名到期汇总表"""
    ordered = sorted(domains, key=lambda d: _days_left(d.get('days')))
    rows = []
    for d in ordered:
        days = _days_left(d.get('days'))
        rows.append(
            f'<tr>'
            f'<td style="{_CELL}">{_esc(d.get("domain", ""))}</td>'
            f'<td style="{_CELL}">{_esc(d.get("expiry_date", ""))}</td>'
            f'<td style="{_CELL} color: {days_color(days)}; font-weight: bold;">{days} days</td>'
            f'<td style="{_CELL}">{_esc(d.get("registrar") or "N/A")}</td>'
            f'</tr>'
        )

    count = len(ordered)
    noun = 'domains are' if count != 1 else 'domain is'
    content = (
        f'<p style="margin-bottom: 20px; color: #9ca3af;">The following {count} {noun} '
        f'expiring soon and may require renewal:</p>'
        f'<table style="width: 100%; border-collapse: collapse; background-color: #1a1a2e;">'
        f'<thead><tr style="background-color: #374151;">'
        f'<th style="{_HEAD}">Domain</th><th style="{_HEAD}">Expires</th>'
        f'<th style="{_HEAD}">Days Left</th><th style="{_HEAD}">Registrar</th>'
        f'</tr></thead><tbody>{"".join(rows)}</tbody></table>'
        f'<p style="margin-top: 20px; color: #6b7280; font-size: 14px;">'
        f'Please take action to renew these domains before they expire.</p>'
    )
    return _PAGE.format(title='Domain Expiration Alert',
                        banner='linear-gradient(135deg, #6366f1, #8b5cf6)', content=content)


def build_uptime_html(event: NotificationEvent) -> str:
    """故障 / 恢复摘要"""
    recovered = event.type == EventType.UPTIME_RECOVERED
    title = 'Website Recovered' if recovered else 'Website Down Alert'
    banner = '#22c55e' if recovered else '#ef4444'

    rows = []
    for key, value in event.data.items():
        if value is None or value == '':
            continue
        rows.append(f'<tr><td style="{_CELL} color: #9ca3af;">{_esc(key.replace("_", " "))}</td>'
                    f'<td style="{_CELL}">{_esc(value)}</td></tr>')

    domain = event.data.get('domain', 'unknown')
    summary = (f'{_esc(domain)} is responding again.' if recovered
               else f'{_esc(domain)} failed {_esc(event.data.get("failures", "?"))} consecutive checks.')
    content = (
        f'<p style="margin-bottom: 20px; color: #9ca3af;">{summary}</p>'
        f'<table style="width: 100%; border-collapse: collapse; background-color: #1a1a2e;">'
        f'<tbody>{"".join(rows)}</tbody></table>'
        f'<p style="margin-top: 20px; color: #6b7280; font-size: 14px;">Detected at {_esc(event.iso_timestamp)}</p>'
    )
    return _PAGE.format(title=title, banner=banner, content=content)


@register_channel('email')
class EmailChannel(BaseChannel):
    """SMTP邮件渠道；发送失败返回False，不抛异常"""

    def __init__(self, name: str, config: Dict[str, Any],
                 context: Optional[ChannelContext] = None):
        super().__init__(name, config, context)
        smtp = dict(self.context.smtp_config)
        smtp.update(config.get('smtp', {}))

        # SMTP配置
        self.smtp_server = smtp.get('smtp_server', '')
        self.smtp_port = smtp.get('smtp_port', 587)
        self.username = smtp.get('username', '')
        self.password = smtp.get('password', '')
        self.use_tls = smtp.get('use_tls', False)
        self.start_tls = smtp.get('start_tls', True)

        # 发件人
        self.from_email = smtp.get('from_email', self.username)
        self.from_name = smtp.get('from_name', 'Domain Monitor')

    def validate_config(self) -> bool:
        if not self.smtp_server:
            self.logger.warning(f"邮件渠道 {self.name} 缺少SMTP服务器配置，邮件通知不可用")
            return False

        if not self.username:
            self.logger.warning(f"邮件渠道 {self.name} 缺少SMTP用户名配置，邮件通知不可用")
            return False

        if not self.from_email or not _EMAIL_PATTERN.match(self.from_email):
            self.logger.error(f"邮件渠道 {self.name} 发件人邮箱格式无效: {self.from_email}")
            return False

        if not isinstance(self.smtp_port, int) or self.smtp_port <= 0:
            self.logger.error(f"邮件渠道 {self.name} SMTP端口无效: {self.smtp_port}")
            return False

        if self.use_tls and self.start_tls:
            self.logger.error(f"邮件渠道 {self.name} 不能同时启用 use_tls 和 start_tls")
            return False

        return True

    def is_enabled(self, event_type: str, settings: MonitorSettings) -> bool:
        return (settings.email_enabled
                and len(settings.email_recipients) > 0
                and event_type in HANDLED_EVENTS)

    def build_message(self, event: NotificationEvent, recipients: Sequence[str]) -> Optional[MIMEMultipart]:
        """按事件类型构建邮件；没有可发送内容时返回None"""
        if event.type.value in EXPIRY_EVENTS:
            domains = _expiring_domains(event.data)
            if not domains:
                return None
            count = len(domains)
            if event.type == EventType.DOMAIN_EXPIRED:
                subject = f"[Domain Monitor] {count} domain{'s' if count > 1 else ''} expired"
            else:
                subject = f"[Domain Monitor] {count} domain{'s' if count > 1 else ''} expiring soon"
            body = build_expiration_html(domains)
        else:
            domain = event.data.get('domain', 'unknown')
            if event.type == EventType.UPTIME_RECOVERED:
                subject = f"[Domain Monitor] {domain} is back up"
            else:
                subject = f"[Domain Monitor] {domain} is down"
            body = build_uptime_html(event)

        return self._create_email_message(subject, body, recipients)

    def _create_email_message(self, subject: str, body: str,
                              recipients: Sequence[str]) -> MIMEMultipart:
        email_msg = MIMEMultipart('alternative')
        email_msg['From'] = formataddr((self.from_name, self.from_email))
        email_msg['To'] = ', '.join(recipients)
        email_msg['Subject'] = subject
        email_msg.attach(MIMEText(body, 'html', 'utf-8'))
        return email_msg

    async def _send(self, email_msg: MIMEMultipart) -> bool:
        try:
            await aiosmtplib.send(
                email_msg,
                hostname=self.smtp_server,
                port=self.smtp_port,
                username=self.username or None,
                password=self.password or None,
                use_tls=self.use_tls,
                start_tls=self.start_tls,
                timeout=self.get_timeout()
            )
            return True
        except (aiosmtplib.SMTPException, OSError) as e:
            self.logger.error(f"SMTP发送失败: {e}")
            return False

    async def notify(self, event: NotificationEvent, settings: MonitorSettings) -> bool:
        email_msg = self.build_message(event, settings.email_recipients)
        if email_msg is None:
            self.logger.debug(f"事件 {event.type.value} 没有可发送的邮件内容")
            return False

        sent = await self._send(email_msg)
        if sent:
            self.logger.info(
                f"邮件通知发送成功: 事件={event.type.value}, 收件人={', '.join(settings.email_recipients)}")
        return sent

    async def send_expiration_alert(self, domains: Sequence[Mapping[str, Any]],
                                    settings: MonitorSettings) -> bool:
        """发送域名到期汇总邮件"""
        if not settings.email_enabled or not settings.email_recipients:
            self.logger.debug("邮件通知未启用或没有收件人")
            return False
        if not domains:
            return False

        count = len(domains)
        subject = f"[Domain Monitor] {count} domain{'s' if count > 1 else ''} expiring soon"
        email_msg = self._create_email_message(subject, build_expiration_html(domains),
                                               settings.email_recipients)
        return await self._send(email_msg)

    async def send_test_email(self, to: str) -> bool:
        """发送测试邮件"""
        content = ('<p style="color: #9ca3af;">This is a test email from Domain Monitor. '
                   'If you received this, your email configuration is working correctly.</p>')
        body = _PAGE.format(title='Test Email', banner='#6366f1', content=content)
        return await self._send(self._create_email_message('[Domain Monitor] Test Email', body, [to]))
