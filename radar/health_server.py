from aiohttp import web
import json
import logging
from dataclasses import asdict


def _dumps(data) -> str:
    return json.dumps(data, default=str, ensure_ascii=False)


class HealthServer:
    def __init__(self, tracker, scheduler=None, port=8080):
        self.port = port
        self.tracker = tracker
        self.scheduler = scheduler
        self.logger = logging.getLogger("HealthMonitor")
        self.app = web.Application()
        self.app.add_routes([
            web.get('/', self.handle_root),
            web.get('/health', self.handle_health),
            web.get('/snapshot', self.handle_snapshot),
            web.post('/scan', self.handle_scan),
        ])
        self.runner = None
        self.site = None
        self.status = 'booting'

    async def start(self):
        try:
            self.runner = web.AppRunner(self.app)
            await self.runner.setup()
            self.site = web.TCPSite(self.runner, '0.0.0.0', self.port)
            await self.site.start()
            self.status = 'active'
            self.logger.info(f"🚑 Health Server listening on port {self.port}")
        except Exception as e:
            self.logger.error(f"Failed to start Health Server: {e}")

    async def handle_root(self, request):
        return web.Response(text="Rebound Radar is Running.")

    async def handle_health(self, request):
        stats = {'status': self.status, 'tracker': self.tracker.get_stats()}
        if self.scheduler:
            stats['scheduler'] = self.scheduler.get_stats()
        return web.json_response(stats, dumps=_dumps)

    async def handle_snapshot(self, request):
        # Last-known-good views plus the last error indicator
        views = await self.tracker.get_views()
        body = {
            'instance_id': self.tracker.instance_id,
            'config': self.tracker.current_config.to_dict(),
            'last_scan_time': self.tracker.last_scan_time,
            'last_error': self.tracker.last_error,
            'counts': views.counts(),
            'views': asdict(views),
        }
        return web.json_response(body, dumps=_dumps)

    async def handle_scan(self, request):
        """Starts the next scan now instead of waiting for the interval."""
        if not self.scheduler:
            return web.json_response({'requested': False, 'error': 'no scheduler'}, status=503)
        self.scheduler.request_scan()
        self.logger.info("🔎 Manual scan requested")
        return web.json_response({'requested': True, 'state': self.scheduler.state.value}, status=202)

    async def stop(self):
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
            self.site = None
