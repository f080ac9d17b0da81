"""出站请求目标校验（SSRF 防护）

拒绝指向回环、私有、链路本地等非公网地址的出站请求。
"""

import asyncio
import ipaddress
import socket
from typing import Optional
from urllib.parse import urlsplit

from .log_manager import get_logger

logger = get_logger('network_guard')

_BLOCKED_HOSTS = {'localhost', 'localhost.localdomain'}
_ALLOWED_SCHEMES = ('http', 'https')


def url_host(url: str) -> str:
    """提取URL中的主机名（小写，去掉末尾的点）"""
    try:
        host = urlsplit(str(url or '').strip()).hostname or ''
    except ValueError:
        host = ''
    return host.strip().lower().rstrip('.')


def is_blocked_address(address: str) -> bool:
    """判断IP地址是否属于禁止访问的网段

    Args:
        address: IPv4 或 IPv6 地址字符串

    Returns:
        bool: 回环/私有/链路本地/未指定/保留/组播地址返回 True
    """
    try:
        ip = ipaddress.ip_address(address.split('%', 1)[0])
    except ValueError:
        return False

    # IPv4 映射的 IPv6 地址按内部 IPv4 地址判断
    mapped = getattr(ip, 'ipv4_mapped', None)
    if mapped is not None:
        ip = mapped

    return (ip.is_loopback or ip.is_private or ip.is_link_local
            or ip.is_unspecified or ip.is_reserved or ip.is_multicast)


def is_blocked_url(url: str) -> bool:
    """静态校验URL，不做DNS解析

    无法解析的URL、非 http(s) 协议、空主机、localhost 以及
    指向禁止网段的IP字面量都会被拒绝。
    """
    try:
        parsed = urlsplit(str(url or '').strip())
    except ValueError:
        return True

    if parsed.scheme.lower() not in _ALLOWED_SCHEMES:
        return True

    host = url_host(url)
    if not host:
        return True

    if host in _BLOCKED_HOSTS or host.endswith('.localhost'):
        return True

    return is_blocked_address(host)


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return False


async def resolves_to_blocked_address(url: str,
                                      loop: Optional[asyncio.AbstractEventLoop] = None) -> bool:
    """解析URL主机名，任一解析结果落在禁止网段即拒绝

    解析失败同样视为拒绝。
    """
    if is_blocked_url(url):
        return True

    host = url_host(url)
    if _is_ip_literal(host):
        return False

    loop = loop or asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    except (socket.gaierror, OSError) as e:
        logger.warning(f"目标主机 {host} 解析失败，拒绝请求: {e}")
        return True

    for info in infos:
        address = info[4][0]
        if is_blocked_address(address):
            logger.warning(f"目标主机 {host} 解析到受限地址 {address}")
            return True

    return False
