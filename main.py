#!/usr/bin/env python3
"""
域名可用性监控主程序入口

组装存储、调度器、告警和API组件，处理启动、优雅关闭和信号。
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional, Dict, Any, List

from domain_monitor import __version__
from domain_monitor.alerts import AlertIntegrator, ChannelContext, NotificationDispatcher
from domain_monitor.alerts.manager import DEFAULT_CHANNELS
from domain_monitor.api import ApiServer, create_app
from domain_monitor.checkers import HttpChecker
from domain_monitor.services.aggregator import DEFAULT_HEARTBEAT_COUNT, UptimeAggregator
from domain_monitor.services.alert_state import AlertStateTracker
from domain_monitor.services.config_manager import ConfigManager
from domain_monitor.services.monitor_scheduler import DEFAULT_PROBE_DELAY, UptimeScheduler
from domain_monitor.services.retention import DEFAULT_DELIVERY_RETENTION_DAYS, RetentionSweeper
from domain_monitor.storage import CheckStore, Database, EndpointStore, SettingsStore, WebhookStore
from domain_monitor.storage.settings_store import defaults_from_config
from domain_monitor.utils.exceptions import CheckerError, ConfigError, DomainMonitorError, ErrorCode
from domain_monitor.utils.log_manager import log_manager, get_logger
from domain_monitor.utils.retry import RetryPolicy

DEFAULT_DB_PATH = 'data/domain_monitor.db'
SHUTDOWN_TIMEOUT = 10.0


class DomainMonitorApp:
    """域名可用性监控主应用程序类"""

    def __init__(self, config_path: str, log_level: Optional[str] = None,
                 log_file: Optional[str] = None):
        """初始化应用程序

        Args:
            config_path: 配置文件路径
            log_level: 覆盖配置文件中的日志级别
            log_file: 覆盖配置文件中的日志文件
        """
        self.config_path = config_path
        self.log_overrides = {'log_level': log_level, 'log_file': log_file}
        self.logger: Optional[logging.Logger] = None
        self.is_running = False
        self.shutdown_event = asyncio.Event()

        # 核心组件
        self.config_manager: Optional[ConfigManager] = None
        self.database: Optional[Database] = None
        self.settings_store: Optional[SettingsStore] = None
        self.endpoint_store: Optional[EndpointStore] = None
        self.check_store: Optional[CheckStore] = None
        self.webhook_store: Optional[WebhookStore] = None
        self.aggregator: Optional[UptimeAggregator] = None
        self.state_tracker: Optional[AlertStateTracker] = None
        self.dispatcher: Optional[NotificationDispatcher] = None
        self.alert_integrator: Optional[AlertIntegrator] = None
        self.scheduler: Optional[UptimeScheduler] = None
        self.retention: Optional[RetentionSweeper] = None
        self.api_server: Optional[ApiServer] = None

    async def initialize(self):
        """初始化应用程序组件"""
        try:
            self.config_manager = ConfigManager(self.config_path)
            self.config_manager.load_config()

            self._configure_logging(self.config_manager.get_global_config())
            self.logger = get_logger('main')
            self.logger.info("开始初始化域名可用性监控")

            global_config = self.config_manager.get_global_config()
            monitoring_config = self.config_manager.get_monitoring_config()
            notifications_config = self.config_manager.get_notifications_config()
            retention_config = self.config_manager.get_retention_config()

            # 存储
            self.database = Database(global_config.get('db_path', DEFAULT_DB_PATH))
            self.database.connect()
            self.settings_store = SettingsStore(
                self.database,
                defaults_from_config(monitoring_config, notifications_config, retention_config))
            self.endpoint_store = EndpointStore(self.database)
            self.check_store = CheckStore(self.database)
            self.webhook_store = WebhookStore(self.database)

            # 统计与告警状态
            self.aggregator = UptimeAggregator(
                self.database, self.endpoint_store,
                monitoring_config.get('heartbeat_count', DEFAULT_HEARTBEAT_COUNT))
            self.state_tracker = AlertStateTracker(
                self._get_state_file_path(global_config))

            # 通知
            self.dispatcher = NotificationDispatcher.from_config(
                self.settings_store,
                self._build_channel_configs(notifications_config),
                self._build_channel_context(notifications_config))
            self.alert_integrator = AlertIntegrator(
                self.state_tracker, self.aggregator, self.dispatcher, self.settings_store)

            # 调度
            checker = HttpChecker({'timeout': monitoring_config.get('probe_timeout', 10)})
            if not checker.validate_config():
                raise CheckerError("探测器配置无效", ErrorCode.CHECKER_INITIALIZATION_ERROR,
                                   details={'timeout': checker.get_timeout()})
            self.scheduler = UptimeScheduler(
                self.settings_store, self.endpoint_store, self.check_store, checker,
                probe_delay=monitoring_config.get('probe_delay', DEFAULT_PROBE_DELAY))
            self.scheduler.set_check_result_callback(self.alert_integrator.process_check_result)

            self.retention = RetentionSweeper(
                self.check_store, self.webhook_store, self.settings_store,
                retention_config.get('delivery_retention_days', DEFAULT_DELIVERY_RETENTION_DAYS))

            api_config = self.config_manager.get_api_config()
            if api_config.get('enabled', True):
                app = create_app(self.scheduler, self.aggregator, self.check_store,
                                 self.endpoint_store, self.retention)
                self.api_server = ApiServer(app, api_config.get('host', '127.0.0.1'),
                                            api_config.get('port', 8080))

            self.logger.info(
                f"应用程序组件初始化完成，通知渠道: {', '.join(self.dispatcher.get_channel_names()) or '无'}")

        except Exception as e:
            if self.logger:
                self.logger.error(f"应用程序初始化失败: {e}", exc_info=True)
            else:
                print(f"应用程序初始化失败: {e}", file=sys.stderr)
            self._release()
            raise

    def _configure_logging(self, global_config: Dict[str, Any]):
        """配置日志系统，命令行参数优先于配置文件"""
        log_level = self.log_overrides['log_level'] or global_config.get('log_level', 'INFO')
        log_file = self.log_overrides['log_file'] or global_config.get('log_file')

        log_config: Dict[str, Any] = {
            'log_level': log_level,
            'enable_console': True,
            'log_file': log_file
        }
        if log_file:
            log_config['max_file_size'] = global_config.get('max_log_size', 10 * 1024 * 1024)
            log_config['backup_count'] = global_config.get('log_backup_count', 5)

        log_manager.configure(log_config)

    def _get_state_file_path(self, global_config: Dict[str, Any]) -> Optional[str]:
        """告警状态文件路径，未配置时告警状态只保存在内存中"""
        state_file = global_config.get('state_file')
        if state_file:
            Path(state_file).parent.mkdir(parents=True, exist_ok=True)
        return state_file

    def _build_channel_configs(self, notifications_config: Dict[str, Any]) -> List[Dict[str, Any]]:
        """未显式配置渠道时启用全部内置渠道；邮件渠道需要SMTP服务器"""
        channels = self.config_manager.get_channels_config()
        if channels is not None:
            return channels

        smtp_configured = bool(self.config_manager.get_smtp_config().get('smtp_server'))
        configs = []
        for channel_type in DEFAULT_CHANNELS:
            if channel_type == 'email' and not smtp_configured:
                self.logger.info("未配置SMTP服务器，邮件通知渠道不启用")
                continue
            channel_config: Dict[str, Any] = {'type': channel_type}
            if channel_type == 'webhook' and 'webhook_timeout' in notifications_config:
                channel_config['timeout'] = notifications_config['webhook_timeout']
            configs.append(channel_config)
        return configs

    def _build_channel_context(self, notifications_config: Dict[str, Any]) -> ChannelContext:
        retry_delays = notifications_config.get('retry_delays')
        return ChannelContext(
            webhook_store=self.webhook_store,
            smtp_config=self.config_manager.get_smtp_config(),
            retry_policy=RetryPolicy.from_delays(retry_delays) if retry_delays else RetryPolicy()
        )

    async def start(self):
        """启动应用程序并等待关闭信号"""
        if self.is_running:
            self.logger.warning("应用程序已经在运行")
            return

        try:
            self.is_running = True
            self.logger.info("启动域名可用性监控")

            await self.scheduler.start()
            self.retention.start()
            if self.api_server:
                await self.api_server.start()

            self.logger.info("域名可用性监控启动完成")

            await self.shutdown_event.wait()

        except Exception as e:
            self.logger.error(f"应用程序运行异常: {e}", exc_info=True)
            raise
        finally:
            await self.stop()

    async def stop(self):
        """停止应用程序：先停止产生新工作的组件，再等待进行中的工作"""
        if not self.is_running:
            return

        self.logger.info("正在停止域名可用性监控...")
        self.is_running = False

        try:
            if self.scheduler:
                await self.scheduler.shutdown(SHUTDOWN_TIMEOUT)

            if self.retention:
                await self.retention.stop()

            if self.dispatcher:
                await self.dispatcher.shutdown(SHUTDOWN_TIMEOUT)

            if self.api_server:
                await self.api_server.stop()

            self.logger.info("域名可用性监控已停止")

        except Exception as e:
            self.logger.error(f"停止应用程序时发生异常: {e}", exc_info=True)
        finally:
            self._release()

    def _release(self):
        """释放数据库连接和日志处理器"""
        if self.database:
            self.database.close()
        log_manager.cleanup()

    def shutdown(self):
        """触发应用程序关闭"""
        if self.logger:
            self.logger.info("收到关闭信号")
        self.shutdown_event.set()

    def get_status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            'is_running': self.is_running,
            'config_path': self.config_path,
        }
        if self.scheduler:
            status['scheduler'] = self.scheduler.get_status()
        if self.dispatcher:
            status['channels'] = self.dispatcher.get_channel_names()
            status['pending_notifications'] = len(self.dispatcher.running_tasks)
        if self.state_tracker:
            status['alerted_endpoints'] = sorted(self.state_tracker.get_alerted())
        return status


# 全局应用程序实例
app: Optional[DomainMonitorApp] = None


def signal_handler(signum, frame):
    """信号处理器"""
    signal_name = signal.Signals(signum).name
    print(f"\n收到信号 {signal_name} ({signum})")

    if app:
        app.shutdown()
    else:
        print("应用程序未初始化，直接退出")
        sys.exit(0)


def create_argument_parser() -> argparse.ArgumentParser:
    """创建命令行参数解析器"""
    parser = argparse.ArgumentParser(
        prog='domain-monitor',
        description='域名可用性监控 - 定时检查域名可用性并分发故障和恢复通知',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例用法:
  %(prog)s config.yaml                    # 使用指定配置文件启动监控
  %(prog)s --validate config.yaml        # 验证配置文件格式
  %(prog)s --check-once config.yaml      # 执行一轮检查后退出
  %(prog)s --test-alerts config.yaml     # 发送测试告警
  %(prog)s --version                      # 显示版本信息

支持的通知渠道:
  - 签名Webhook
  - Slack
  - Signal
  - 邮件 (SMTP)

配置文件格式请参考 config.example.yaml
        """
    )

    parser.add_argument(
        'config_file',
        nargs='?',
        help='YAML配置文件路径'
    )

    parser.add_argument(
        '--version', '-v',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '--validate',
        action='store_true',
        help='验证配置文件格式并退出'
    )

    parser.add_argument(
        '--test-alerts',
        action='store_true',
        help='发送一条测试告警并退出'
    )

    parser.add_argument(
        '--check-once',
        action='store_true',
        help='执行一轮可用性检查后退出'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='设置日志级别（覆盖配置文件设置）'
    )

    parser.add_argument(
        '--log-file',
        help='日志文件路径（覆盖配置文件设置）'
    )

    return parser


def validate_config_file(config_path: str) -> bool:
    """验证配置文件

    Returns:
        验证是否成功
    """
    print(f"正在验证配置文件: {config_path}")

    try:
        config = ConfigManager(config_path).load_config()
    except ConfigError as e:
        print(f"❌ 配置文件验证失败: {e.message}")
        return False

    monitoring = config.get('monitoring', {})
    channels = config.get('notifications', {}).get('channels')

    print("✅ 配置文件验证成功!")
    print(f"   - 可用性监控: {'启用' if monitoring.get('enabled') else '未启用'}")
    print(f"   - 检查间隔: {monitoring.get('check_interval_minutes', 5)} 分钟")
    print(f"   - 告警阈值: 连续 {monitoring.get('alert_threshold', 3)} 次失败")
    if channels is None:
        print("   - 通知渠道: 全部内置渠道")
    else:
        print("   - 通知渠道:")
        for channel_config in channels:
            print(f"     * {channel_config.get('name', channel_config['type'])} ({channel_config['type']})")

    return True


async def run_alert_test(config_path: str, **log_overrides) -> bool:
    """发送一条测试告警并等待渠道发送完成

    Returns:
        是否有渠道接收了测试告警
    """
    print(f"正在测试告警系统: {config_path}")
    test_app = DomainMonitorApp(config_path, **log_overrides)

    try:
        await test_app.initialize()
        count = await test_app.alert_integrator.test_alert_system()
        await test_app.dispatcher.drain(SHUTDOWN_TIMEOUT)
    except DomainMonitorError as e:
        print(f"❌ 告警系统测试失败: {e.message}")
        return False
    finally:
        test_app._release()

    if count > 0:
        print(f"✅ 测试告警已发送到 {count} 个通知渠道")
    else:
        print("❌ 没有启用的通知渠道")
    return count > 0


async def check_once(config_path: str, **log_overrides) -> bool:
    """执行一轮检查（忽略监控开关）

    Returns:
        是否所有端点都正常
    """
    print(f"正在执行可用性检查: {config_path}")
    once_app = DomainMonitorApp(config_path, **log_overrides)

    try:
        await once_app.initialize()
        summary = await once_app.scheduler.run_pass(force=True)
        stats = once_app.aggregator.get_all_stats()
        await once_app.dispatcher.drain(SHUTDOWN_TIMEOUT)
    except DomainMonitorError as e:
        print(f"❌ 可用性检查失败: {e.message}")
        return False
    finally:
        once_app._release()

    print(f"✅ 检查完成: 共 {summary.checked} 个, 正常 {summary.up} 个, 故障 {summary.down} 个")
    for item in stats:
        marker = '✅' if item.current_status == 'up' else '❌'
        print(f"   {marker} {item.domain}: {item.current_status} "
              f"(可用率 {item.uptime_percentage}%, 平均响应 {item.avg_response_time_ms}ms)")

    return summary.down == 0


async def main():
    """主函数"""
    global app

    parser = create_argument_parser()
    args = parser.parse_args()

    if not args.config_file:
        parser.print_help()
        sys.exit(1)

    config_path = args.config_file

    if not os.path.exists(config_path):
        print(f"配置文件不存在: {config_path}", file=sys.stderr)
        sys.exit(1)

    log_overrides = {'log_level': args.log_level, 'log_file': args.log_file}

    if args.validate:
        success = validate_config_file(config_path)
        sys.exit(0 if success else 1)

    if args.test_alerts:
        success = await run_alert_test(config_path, **log_overrides)
        sys.exit(0 if success else 1)

    if args.check_once:
        success = await check_once(config_path, **log_overrides)
        sys.exit(0 if success else 1)

    try:
        app = DomainMonitorApp(config_path, **log_overrides)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        await app.initialize()

        print(f"域名可用性监控 v{__version__} 已启动")
        print(f"配置文件: {config_path}")
        print("按 Ctrl+C 停止程序")

        await app.start()

    except KeyboardInterrupt:
        print("\n用户中断程序")
    except ConfigError as e:
        print(f"配置错误: {e}", file=sys.stderr)
        sys.exit(1)
    except DomainMonitorError as e:
        print(f"域名监控系统错误: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        if app:
            await app.stop()


def cli():
    """命令行入口"""
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

    asyncio.run(main())


if __name__ == "__main__":
    cli()
