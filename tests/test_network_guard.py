"""出站请求目标校验测试"""

import socket
from unittest.mock import AsyncMock, Mock

import pytest

from domain_monitor.utils.network_guard import (
    is_blocked_address, is_blocked_url, resolves_to_blocked_address, url_host
)


def addrinfo(*addresses):
    return [(socket.AF_INET, socket.SOCK_STREAM, 6, '', (address, 0)) for address in addresses]


class TestStaticChecks:
    """静态校验测试类"""

    @pytest.mark.parametrize('url', [
        'http://127.0.0.1/hook',
        'http://127.8.9.10:8080/hook',
        'https://10.0.0.1/hook',
        'https://10.255.255.255/hook',
        'http://192.168.1.20/hook',
        'http://172.16.0.1/hook',
        'http://172.31.255.254/hook',
        'http://169.254.169.254/latest/meta-data',
        'http://0.0.0.0/',
        'http://[::1]/hook',
        'http://[fe80::1]/hook',
        'http://[fc00::1]/hook',
        'http://[::ffff:127.0.0.1]/hook',
        'http://localhost/hook',
        'http://LOCALHOST:3000/hook',
        'http://api.localhost/hook',
        'http://localhost./hook',
    ])
    def test_blocked_targets(self, url):
        """测试禁止访问的地址"""
        assert is_blocked_url(url) is True

    @pytest.mark.parametrize('url', [
        'ftp://example.com/file',
        'file:///etc/passwd',
        'gopher://example.com',
        'not a url',
        'http://',
        '',
    ])
    def test_invalid_urls(self, url):
        """测试无效或非 http(s) 的URL"""
        assert is_blocked_url(url) is True

    @pytest.mark.parametrize('url', [
        'https://hooks.example.com/endpoint',
        'http://93.184.216.34/hook',
        'https://172.32.0.1/hook',
        'https://[2606:4700::1111]/hook',
    ])
    def test_public_targets(self, url):
        """测试公网地址"""
        assert is_blocked_url(url) is False

    def test_url_host(self):
        """测试主机名提取"""
        assert url_host('https://Hooks.Example.com.:8443/x') == 'hooks.example.com'
        assert url_host('') == ''

    def test_non_ip_is_not_blocked_address(self):
        """测试非IP字符串"""
        assert is_blocked_address('example.com') is False
        assert is_blocked_address('8.8.8.8') is False
        assert is_blocked_address('10.1.2.3') is True


class TestResolution:
    """DNS解析校验测试类"""

    @pytest.mark.asyncio
    async def test_resolves_to_private(self):
        """测试解析到内网地址"""
        loop = Mock()
        loop.getaddrinfo = AsyncMock(return_value=addrinfo('93.184.216.34', '10.0.0.5'))

        assert await resolves_to_blocked_address('https://rebind.example.com/x', loop) is True

    @pytest.mark.asyncio
    async def test_resolves_to_public(self):
        """测试解析到公网地址"""
        loop = Mock()
        loop.getaddrinfo = AsyncMock(return_value=addrinfo('93.184.216.34'))

        assert await resolves_to_blocked_address('https://hooks.example.com/x', loop) is False
        loop.getaddrinfo.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_resolution_failure_blocks(self):
        """测试解析失败时拒绝"""
        loop = Mock()
        loop.getaddrinfo = AsyncMock(side_effect=socket.gaierror('no such host'))

        assert await resolves_to_blocked_address('https://missing.example.com/x', loop) is True

    @pytest.mark.asyncio
    async def test_static_block_skips_resolution(self):
        """测试静态拒绝时不做解析"""
        loop = Mock()
        loop.getaddrinfo = AsyncMock()

        assert await resolves_to_blocked_address('http://127.0.0.1/x', loop) is True
        loop.getaddrinfo.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_public_ip_literal_skips_resolution(self):
        """测试公网IP字面量不做解析"""
        loop = Mock()
        loop.getaddrinfo = AsyncMock()

        assert await resolves_to_blocked_address('http://93.184.216.34/x', loop) is False
        loop.getaddrinfo.assert_not_awaited()
