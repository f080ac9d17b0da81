"""CLI接口功能测试"""

import os
from unittest.mock import AsyncMock, patch

import pytest
import yaml

from main import (
    __version__,
    check_once,
    create_argument_parser,
    main,
    run_alert_test,
    validate_config_file
)
from domain_monitor.models.uptime_check import CheckStatus, ProbeResult
from domain_monitor.storage import Database, EndpointStore


@pytest.fixture
def config_file(tmp_path):
    """创建临时配置文件"""
    config_data = {
        'global': {'log_level': 'WARNING', 'db_path': str(tmp_path / 'monitor.db')},
        'monitoring': {'enabled': False, 'alert_threshold': 3, 'probe_delay': 0},
        'notifications': {'channels': [{'type': 'webhook'}, {'type': 'slack', 'name': 'team'}]},
        'api': {'enabled': False},
    }
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.dump(config_data), encoding='utf-8')
    return str(path)


class TestArgumentParser:
    """命令行参数解析器测试"""

    def test_create_argument_parser(self):
        """测试创建参数解析器"""
        parser = create_argument_parser()

        assert parser.prog == 'domain-monitor'
        assert '域名可用性监控' in parser.description

    def test_parse_basic_args(self):
        """测试解析基本参数"""
        args = create_argument_parser().parse_args(['config.yaml'])

        assert args.config_file == 'config.yaml'
        assert not args.validate
        assert not args.test_alerts
        assert not args.check_once
        assert args.log_level is None

    def test_parse_flags(self):
        """测试各个标志"""
        parser = create_argument_parser()

        args = parser.parse_args(['--check-once', '--log-level', 'DEBUG',
                                  '--log-file', 'out.log', 'config.yaml'])
        assert args.check_once
        assert args.log_level == 'DEBUG'
        assert args.log_file == 'out.log'

        with pytest.raises(SystemExit):
            parser.parse_args(['--log-level', 'LOUD', 'config.yaml'])

    def test_version(self, capsys):
        """测试版本信息"""
        with pytest.raises(SystemExit) as exc_info:
            create_argument_parser().parse_args(['--version'])

        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out


class TestValidateConfig:
    """配置验证命令测试"""

    def test_valid(self, config_file, capsys):
        """测试有效配置"""
        assert validate_config_file(config_file) is True

        output = capsys.readouterr().out
        assert '配置文件验证成功' in output
        assert 'team (slack)' in output

    def test_invalid(self, tmp_path, capsys):
        """测试无效配置"""
        path = tmp_path / 'bad.yaml'
        path.write_text("notifications:\n  channels:\n    - type: pager\n", encoding='utf-8')

        assert validate_config_file(str(path)) is False
        assert '配置文件验证失败' in capsys.readouterr().out


class TestCommands:
    """一次性命令测试"""

    @pytest.mark.asyncio
    async def test_run_alert_test(self, config_file, capsys):
        """测试发送测试告警；Webhook渠道总是参与分发"""
        assert await run_alert_test(config_file) is True
        assert '测试告警已发送到 1 个通知渠道' in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_check_once(self, config_file, tmp_path, capsys):
        """测试执行一轮检查，监控开关关闭时也执行"""
        database = Database(str(tmp_path / 'monitor.db'))
        EndpointStore(database).add_endpoint('example.com')
        EndpointStore(database).add_endpoint('down.example.com')
        database.close()

        async def probe(hostname):
            if hostname.startswith('down.'):
                return ProbeResult(status=CheckStatus.DOWN, error='Connection timeout')
            return ProbeResult(status=CheckStatus.UP, response_time_ms=30, status_code=200)

        with patch('domain_monitor.checkers.http_checker.HttpChecker.probe',
                   new=AsyncMock(side_effect=probe)):
            assert await check_once(config_file) is False

        output = capsys.readouterr().out
        assert '共 2 个, 正常 1 个, 故障 1 个' in output
        assert 'down.example.com: down' in output

    @pytest.mark.asyncio
    async def test_check_once_all_up(self, config_file, tmp_path):
        """测试所有端点正常时返回True"""
        database = Database(str(tmp_path / 'monitor.db'))
        EndpointStore(database).add_endpoint('example.com')
        database.close()

        with patch('domain_monitor.checkers.http_checker.HttpChecker.probe',
                   new=AsyncMock(return_value=ProbeResult(status=CheckStatus.UP,
                                                          response_time_ms=30, status_code=200))):
            assert await check_once(config_file) is True


class TestMain:
    """main 函数测试"""

    @pytest.mark.asyncio
    async def test_no_config(self):
        """测试未指定配置文件"""
        with patch('sys.argv', ['domain-monitor']):
            with pytest.raises(SystemExit) as exc_info:
                await main()
        assert exc_info.value.code == 1

    @pytest.mark.asyncio
    async def test_missing_config(self, tmp_path):
        """测试配置文件不存在"""
        with patch('sys.argv', ['domain-monitor', str(tmp_path / 'missing.yaml')]):
            with pytest.raises(SystemExit) as exc_info:
                await main()
        assert exc_info.value.code == 1

    @pytest.mark.asyncio
    async def test_validate_flag(self, config_file):
        """测试 --validate"""
        with patch('sys.argv', ['domain-monitor', '--validate', config_file]):
            with pytest.raises(SystemExit) as exc_info:
                await main()
        assert exc_info.value.code == 0

    @pytest.mark.asyncio
    async def test_check_once_flag(self, config_file):
        """测试 --check-once 在没有端点时成功退出"""
        with patch('sys.argv', ['domain-monitor', '--check-once', config_file]):
            with pytest.raises(SystemExit) as exc_info:
                await main()
        assert exc_info.value.code == 0
        assert os.path.exists(os.path.join(os.path.dirname(config_file), 'monitor.db'))
