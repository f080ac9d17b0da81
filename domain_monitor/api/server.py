"""可用性监控 HTTP API

只读查询和手动触发接口，所有响应均为JSON。处理函数内部的异常记录日志后
返回 500，不影响服务运行。
"""

from typing import Any, Optional

from aiohttp import web

from ..services.aggregator import DEFAULT_BUCKETS, UptimeAggregator
from ..services.monitor_scheduler import UptimeScheduler
from ..services.retention import RetentionSweeper
from ..storage.check_store import CheckStore
from ..storage.endpoint_store import EndpointStore
from ..utils.exceptions import DomainMonitorError
from ..utils.log_manager import get_logger

MAX_BUCKETS = 90
DEFAULT_HISTORY_LIMIT = 100
MAX_HISTORY_LIMIT = 1000
DEFAULT_CLEANUP_DAYS = 30

logger = get_logger('api')


def _query_int(request: web.Request, key: str, default: int) -> int:
    """解析整数查询参数；缺失、无法解析或为0时使用默认值"""
    try:
        value = int(request.query.get(key, ''))
    except ValueError:
        return default
    return value or default


def _clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(value, upper))


def _endpoint_id(request: web.Request) -> Optional[int]:
    try:
        return int(request.match_info['id'])
    except ValueError:
        return None


def _error(message: str, status: int) -> web.Response:
    return web.json_response({'message': message}, status=status)


class UptimeAPI:
    """/api/uptime 下的处理函数"""

    def __init__(self, scheduler: UptimeScheduler, aggregator: UptimeAggregator,
                 check_store: CheckStore, endpoint_store: EndpointStore,
                 retention: RetentionSweeper):
        self.scheduler = scheduler
        self.aggregator = aggregator
        self.check_store = check_store
        self.endpoint_store = endpoint_store
        self.retention = retention

    async def get_stats(self, request: web.Request) -> web.Response:
        try:
            stats = self.aggregator.get_all_stats()
        except DomainMonitorError as e:
            logger.error(f"获取可用性统计失败: {e.format_error()}")
            return _error('Failed to get uptime stats', 500)
        return web.json_response([item.to_dict() for item in stats])

    async def get_heartbeat(self, request: web.Request) -> web.Response:
        buckets = _clamp(_query_int(request, 'buckets', DEFAULT_BUCKETS), 1, MAX_BUCKETS)
        try:
            series = self.aggregator.get_all_heartbeat_series(buckets)
        except DomainMonitorError as e:
            logger.error(f"获取心跳数据失败: {e.format_error()}")
            return _error('Failed to get heartbeat data', 500)
        return web.json_response([item.to_dict() for item in series])

    async def get_history(self, request: web.Request) -> web.Response:
        endpoint_id = _endpoint_id(request)
        if endpoint_id is None:
            return _error('Invalid domain ID', 400)

        limit = _clamp(_query_int(request, 'limit', DEFAULT_HISTORY_LIMIT), 1, MAX_HISTORY_LIMIT)
        try:
            history = self.check_store.get_history(endpoint_id, limit)
        except DomainMonitorError as e:
            logger.error(f"获取端点 {endpoint_id} 的检查历史失败: {e.format_error()}")
            return _error('Failed to get uptime history', 500)
        return web.json_response([check.to_dict() for check in history])

    async def check_endpoint(self, request: web.Request) -> web.Response:
        endpoint_id = _endpoint_id(request)
        if endpoint_id is None:
            return _error('Invalid domain ID', 400)

        try:
            endpoint = self.endpoint_store.get_endpoint(endpoint_id)
            if endpoint is None:
                return _error('Domain not found', 404)
            check = await self.scheduler.check_endpoint(endpoint)
        except DomainMonitorError as e:
            logger.error(f"手动检查端点 {endpoint_id} 失败: {e.format_error()}")
            return _error('Failed to check uptime', 500)
        return web.json_response(check.to_dict())

    async def check_all(self, request: web.Request) -> web.Response:
        try:
            summary = await self.scheduler.run_pass(force=True)
        except DomainMonitorError as e:
            logger.error(f"手动触发检查轮次失败: {e.format_error()}")
            return _error('Failed to start uptime check', 500)
        body: dict = {
            'message': (f"Uptime check completed: {summary.checked} checked, "
                        f"{summary.up} up, {summary.down} down")
        }
        body.update(summary.to_dict())
        return web.json_response(body)

    async def restart(self, request: web.Request) -> web.Response:
        try:
            await self.scheduler.restart()
        except DomainMonitorError as e:
            logger.error(f"重启可用性监控失败: {e.format_error()}")
            return _error('Failed to restart uptime monitoring', 500)
        return web.json_response({'message': 'Uptime monitoring restarted'})

    async def get_status(self, request: web.Request) -> web.Response:
        try:
            status = self.scheduler.get_status()
        except DomainMonitorError as e:
            logger.error(f"获取监控状态失败: {e.format_error()}")
            return _error('Failed to get uptime status', 500)
        return web.json_response(status)

    async def get_retention_stats(self, request: web.Request) -> web.Response:
        try:
            stats = self.retention.get_retention_stats()
        except DomainMonitorError as e:
            logger.error(f"获取保留统计失败: {e.format_error()}")
            return _error('Failed to get retention stats', 500)
        return web.json_response(stats)

    async def run_cleanup(self, request: web.Request) -> web.Response:
        try:
            stats = self.retention.run_auto_cleanup()
        except DomainMonitorError as e:
            logger.error(f"执行清理失败: {e.format_error()}")
            return _error('Failed to run cleanup', 500)
        body: dict = {'message': 'Cleanup completed'}
        body.update(stats)
        return web.json_response(body)

    async def cleanup_uptime(self, request: web.Request) -> web.Response:
        days = _query_int(request, 'days', DEFAULT_CLEANUP_DAYS)
        if days < 1:
            return _error('Invalid number of days', 400)
        try:
            deleted = self.retention.cleanup_uptime_log(days)
        except DomainMonitorError as e:
            logger.error(f"清理检查记录失败: {e.format_error()}")
            return _error('Failed to clean uptime log', 500)
        return web.json_response(
            {'message': f"Deleted {deleted} uptime log entries older than {days} days"})


@web.middleware
async def error_middleware(request: web.Request, handler) -> Any:
    """兜底：未预期的异常记录后返回 500"""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.error(f"处理请求 {request.method} {request.path} 时发生未预期的异常: {e}",
                     exc_info=True)
        return _error('Internal server error', 500)


def create_app(scheduler: UptimeScheduler, aggregator: UptimeAggregator,
               check_store: CheckStore, endpoint_store: EndpointStore,
               retention: RetentionSweeper) -> web.Application:
    """
    创建API应用

    Returns:
        web.Application: 挂载了 /api/uptime 路由的应用
    """
    api = UptimeAPI(scheduler, aggregator, check_store, endpoint_store, retention)
    app = web.Application(middlewares=[error_middleware])

    app.router.add_get('/api/uptime/stats', api.get_stats)
    app.router.add_get('/api/uptime/heartbeat', api.get_heartbeat)
    app.router.add_get('/api/uptime/domain/{id}', api.get_history)
    app.router.add_post('/api/uptime/domain/{id}', api.check_endpoint)
    app.router.add_post('/api/uptime/check-all', api.check_all)
    app.router.add_post('/api/uptime/restart', api.restart)
    app.router.add_get('/api/uptime/status', api.get_status)
    app.router.add_get('/api/uptime/retention/stats', api.get_retention_stats)
    app.router.add_post('/api/uptime/retention/cleanup', api.run_cleanup)
    app.router.add_delete('/api/uptime/retention/uptime', api.cleanup_uptime)

    return app


class ApiServer:
    """在当前事件循环上运行API应用"""

    def __init__(self, app: web.Application, host: str = '127.0.0.1', port: int = 8080):
        self.app = app
        self.host = host
        self.port = port
        self._runner: Optional[web.AppRunner] = None

    async def start(self):
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API服务已启动: http://{self.host}:{self.port}")

    async def stop(self):
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        logger.info("API服务已停止")
