"""
Water Service

Process-level wiring for AlertAigua:
- Builds the gateway, retry controller, alarm engine, dispatcher and
  availability monitor from the resolved configuration
- Runs the fetch cycle every five minutes (plus once at start)
- Serves diagnostics over HTTP:
    GET  /health   liveness plus scheduler and poller stats
    GET  /status   aggregated service status
    POST /refresh  trigger a fetch cycle now (skipped if one is running)

Runs until SIGTERM/SIGINT, then closes every HTTP client.
"""

import asyncio
import signal
from datetime import datetime, timezone

from aiohttp import web

from common.config import ServiceConfig
from common.logging_setup import get_service_logger
from common.scheduler import ScheduledLoop
from common.state import StateStore
from common.timestamp import Clock, get_sensor_timezone
from services.notify.dispatcher import AlertDispatcher
from services.notify.pushsafer import Notifier, PushsaferClient
from services.status.aggregator import StatusAggregator
from services.status.statuspage import StatusPageClient
from storage.subscribers import SupabaseSubscriberStore

from .alarm_engine import AlarmEngine
from .availability import AvailabilityMonitor
from .gateway import SensorGateway
from .poller import CycleOutcome, WaterDataPoller
from .retry import RetryController

logger = get_service_logger("water")


class WaterService:
    """
    AlertAigua water monitoring service.

    Collaborators can be injected for tests; anything not passed is built
    from the configuration.
    """

    def __init__(
        self,
        config: ServiceConfig,
        clock: Clock | None = None,
        store=None,
        transport=None,
        gateway: SensorGateway | None = None,
        status_page: StatusPageClient | None = None,
    ):
        self.config = config
        self.clock = clock or Clock()

        self.state = StateStore()

        self.store = store or SupabaseSubscriberStore(
            supabase_url=config.cloud.url,
            supabase_key=config.cloud.key,
        )
        self.transport = transport or PushsaferClient(
            private_key=config.pushsafer.private_key,
            api_url=config.pushsafer.api_url,
            timeout_s=config.pushsafer.timeout_s,
        )
        self.gateway = gateway or SensorGateway(
            base_url=config.sensor_api.base_url,
            api_key=config.sensor_api.api_key,
            timeout_s=config.fetch.timeout_s,
            verify_tls=config.fetch.verify_tls,
        )
        self.status_page = status_page or StatusPageClient(
            url=config.status.status_page_url,
            timeout_s=config.status.timeout_s,
        )

        self.retry = RetryController(
            self.gateway,
            sleep=self.clock.sleep,
            max_attempts=config.fetch.max_retries,
            initial_backoff_ms=config.fetch.initial_backoff_ms,
        )
        self.alarm_engine = AlarmEngine(self.store, config.alarm)
        self.dispatcher = AlertDispatcher(
            self.store,
            Notifier(self.transport, self.store),
            now=self.clock.now,
            sensor_url=config.pushsafer.sensor_url,
        )
        self.availability = AvailabilityMonitor(
            self.state, self.dispatcher, config.availability, self.clock
        )
        self.poller = WaterDataPoller(
            sensors=config.sensors,
            retry=self.retry,
            state=self.state,
            alarm_engine=self.alarm_engine,
            dispatcher=self.dispatcher,
            availability=self.availability,
            clock=self.clock,
            sensor_timezone=get_sensor_timezone(config.timezone),
        )
        self.aggregator = StatusAggregator(
            self.state,
            self.status_page,
            config.availability,
            self.clock,
            cache_ttl_s=config.status.cache_ttl_s,
        )

        self._loop = ScheduledLoop(
            interval_seconds=config.fetch.interval_s,
            callback=self.poller.run_once,
            name="water_fetch",
            run_immediately=config.fetch.run_on_start,
        )

        # Health server
        self._health_app: web.Application | None = None
        self._health_runner: web.AppRunner | None = None

        # Shutdown event
        self._shutdown_event = asyncio.Event()
        self._is_running = False
        self._started_at: datetime | None = None

    async def start(self) -> None:
        """Start the service and block until shutdown is requested"""
        logger.info("Starting Water Service")

        self._is_running = True
        self._started_at = datetime.now(timezone.utc)

        await self._start_health_server()
        await self._loop.start()

        logger.info(
            f"Water Service started (interval: {self.config.fetch.interval_s}s)",
            extra={
                "sensors": [s.id for s in self.config.sensors],
                "interval_s": self.config.fetch.interval_s,
            },
        )

        # Setup signal handlers
        self._setup_signal_handlers()

        # Wait for shutdown
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the loop, the health server and every HTTP client"""
        logger.info("Stopping Water Service")

        self._is_running = False
        self._loop.stop()

        await self._stop_health_server()

        for component in (self.gateway, self.transport, self.store, self.status_page):
            close = getattr(component, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning(f"Error closing {type(component).__name__}: {e}")

        logger.info("Water Service stopped")

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown signal handlers"""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: self._handle_shutdown())

    def _handle_shutdown(self) -> None:
        """Handle shutdown signal"""
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/status", self._status_handler)
        app.router.add_post("/refresh", self._refresh_handler)
        return app

    async def _start_health_server(self) -> None:
        """Start the diagnostics HTTP server"""
        self._health_app = self.build_app()

        self._health_runner = web.AppRunner(self._health_app)
        await self._health_runner.setup()

        site = web.TCPSite(self._health_runner, self.config.health_host, self.config.health_port)
        await site.start()

        logger.info(f"Health server started on port {self.config.health_port}")

    async def _stop_health_server(self) -> None:
        if self._health_runner:
            await self._health_runner.cleanup()
            self._health_runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        snapshot = self.state.snapshot()
        uptime = 0
        if self._started_at:
            uptime = int((datetime.now(timezone.utc) - self._started_at).total_seconds())

        return web.json_response({
            "status": "healthy" if self._is_running else "unhealthy",
            "service": "water",
            "uptime": uptime,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "snapshot": snapshot.to_dict() if snapshot else None,
            "availability": self.state.availability().to_dict(),
            "poller": self.poller.get_stats(),
            "scheduler": self._loop.get_stats(),
            "status_cache": self.aggregator.cache.get_stats(),
        })

    async def _status_handler(self, request: web.Request) -> web.Response:
        try:
            report = await self.aggregator.get_status()
        except Exception as e:
            logger.error(f"Error fetching status: {e}", exc_info=True)
            return web.json_response({"error": "Failed to fetch status"}, status=500)
        return web.json_response(report.to_dict())

    async def _refresh_handler(self, request: web.Request) -> web.Response:
        outcome = await self.poller.run_once()
        status = 409 if outcome == CycleOutcome.SKIPPED else 200
        return web.json_response({"outcome": outcome.value}, status=status)
