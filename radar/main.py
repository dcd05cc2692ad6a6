"""
REBOUND RADAR ENGINE
Wires config, exchange, snapshot store, tracker, scheduler, health server and
zone alerts into one long-running service.
"""

import asyncio
import logging
import signal
import time
import traceback

from .config_loader import ConfigManager
from .database import SnapshotStore
from .api import ExchangeInterface
from .tracker import LoserTracker
from .scheduler import ScanScheduler
from .health_server import HealthServer
from .telegram_bot import ZoneAlerter


class RadarEngine:
    def __init__(self, config_path: str = "config/settings.yaml"):
        # Setup logging first
        self.logger = self._setup_logging()
        self.logger.info("🚀 REBOUND RADAR - LOSER TRACKING ENGINE")

        # Load configuration
        self.config_manager = ConfigManager(config_path)
        self.config = self.config_manager.load_config()
        logging.getLogger().setLevel(self.config['system']['log_level'])

        self._init_components()

        # State
        self.is_running = False
        self.start_time = time.time()
        self._stopped = asyncio.Event()

    def _setup_logging(self):
        """Setup colored console logging."""
        import colorlog
        handler = colorlog.StreamHandler()
        handler.setFormatter(colorlog.ColoredFormatter(
            '%(log_color)s%(asctime)s | %(levelname)-8s | %(name)s: %(message)s',
            datefmt='%H:%M:%S',
            log_colors={
                'DEBUG': 'cyan',
                'INFO': 'green',
                'WARNING': 'yellow',
                'ERROR': 'red',
                'CRITICAL': 'red,bg_white'
            }
        ))
        root = logging.getLogger()
        root.handlers = [handler]
        root.setLevel(logging.INFO)

        # Silence noisy libraries
        for noisy in ("ccxt", "aiohttp", "httpx", "httpcore", "telegram"):
            logging.getLogger(noisy).setLevel(logging.WARNING)

        return logging.getLogger("RadarEngine")

    def _init_components(self):
        """Initialize all engine components."""
        self.instance_id = self.config['system']['instance_id']

        self.store = SnapshotStore(self.config.get('database', {}))
        self.api = ExchangeInterface(self.config.get('exchange', {}))
        self.alerter = ZoneAlerter(self.config.get('telegram', {}))

        self.tracker = LoserTracker(
            source=self.api,
            store=self.store,
            instance_id=self.instance_id,
            config=self.config_manager.tracker_config(),
            alerter=self.alerter,
        )
        self.scheduler = ScanScheduler(self.tracker)

        health = self.config.get('health', {})
        self.health_server = None
        if health.get('enabled', True):
            self.health_server = HealthServer(self.tracker, self.scheduler, port=health.get('port', 8080))

    async def start(self):
        """Connect everything, restore state and run until shutdown."""
        self.is_running = True

        try:
            self.logger.info("🔌 Connecting to all services...")

            await self.store.connect()
            await self.api.connect()

            # Persisted window config wins over the yaml defaults
            if await self.tracker.restore():
                cfg = self.tracker.current_config
                self.logger.info(
                    f"📂 Resumed '{self.instance_id}' "
                    f"(top {cfg.top_count} over {cfg.lookback_days}d, every {cfg.scan_interval_seconds}s)"
                )

            if self.health_server:
                await self.health_server.start()
            await self.alerter.start()

            self.logger.info("✅ All systems operational")
            self.scheduler.start()
            await self._stopped.wait()

        except Exception as e:
            self.logger.critical(f"Engine failed to start: {e}")
            traceback.print_exc()
            await self.shutdown()
            raise

    async def shutdown(self):
        """Graceful shutdown."""
        if not self.is_running:
            return
        self.logger.info("🛑 Shutting down...")
        self.is_running = False

        await self.scheduler.stop()
        await self.tracker.shutdown()

        tasks = [self.api.close(), self.store.close(), self.alerter.stop()]
        if self.health_server:
            tasks.append(self.health_server.stop())
        await asyncio.gather(*tasks, return_exceptions=True)

        runtime = time.time() - self.start_time
        hours = int(runtime // 3600)
        minutes = int((runtime % 3600) // 60)

        stats = self.tracker.get_stats()
        self.logger.info(
            f"📊 Session: {stats['cycles_ok']} scans ok, {stats['cycles_failed']} failed "
            f"in {hours}h {minutes}m"
        )
        self.logger.info("👋 Shutdown complete")
        self._stopped.set()


async def main():
    """Main entry point."""
    engine = RadarEngine()

    # Setup signal handlers
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(engine.shutdown()))

    try:
        await engine.start()
    except KeyboardInterrupt:
        await engine.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
