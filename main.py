"""
============================================================================
PINGMASTER - MAIN APPLICATION
============================================================================
Wires every layer of the monitoring engine together:

    Layer 1: Core & Storage
        • Settings (pydantic-settings), loguru logging
        • SQLAlchemy async engine + models, SqlRepository

    Layer 2: Delivery
        • PushBroadcaster + PushChannel   (SSE)
        • WebhookService  + WebhookChannel (signed POST, retries)
        • EmailQueue      + EmailChannel   (SMTP worker)
        • NotificationDispatcher           (throttle, persist, fan-out)

    Layer 3: Monitoring
        • Probe             - DNS → TLS → HTTP
        • MonitorScheduler  - one timer per active monitor
        • PingMasterServer  - /health and /notifications/stream

Startup Order
-------------
1.  Load settings & configure logging
2.  Initialize DatabaseManager (create tables if needed)
3.  Create channels and the dispatcher, start channel workers
4.  Create the probe and the scheduler
5.  Start the HTTP server
6.  Start the scheduler (registers every active monitor)
7.  Wait for SIGINT / SIGTERM

Shutdown Order (reverse)
-------------------------
    Stop scheduler (grace period for in-flight probes) → drain dispatcher →
    stop channels → stop server → close probe client → close DB

Author: PingMaster Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import signal
import sys
from typing import Any, Dict, List, Optional

from channels import (
    DeliveryChannel,
    EmailChannel,
    EmailQueue,
    PushBroadcaster,
    PushChannel,
    WebhookChannel,
    WebhookService,
)
from config.settings import Settings, get_settings
from database.manager import DatabaseManager
from database.repository import SqlRepository
from exceptions import InitializationError, PingMasterException
from monitoring.dispatcher import NotificationDispatcher
from monitoring.probe import Probe
from monitoring.scheduler import MonitorScheduler
from monitoring.server import PingMasterServer
from utils.logger import get_logger, setup_logging


logger = get_logger("Main")


# ============================================================================
# APPLICATION CLASS
# ============================================================================

class PingMasterApplication:
    """
    Top-level application orchestrator.

    Owns every subsystem and is the single place that knows the startup /
    shutdown order. Subsystems reach each other only through the instances
    stored here.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

        # --- subsystems (populated during startup) ---
        self.db_manager: Optional[DatabaseManager] = None
        self.repository: Optional[SqlRepository] = None
        self.broadcaster: Optional[PushBroadcaster] = None
        self.channels: List[DeliveryChannel] = []
        self.dispatcher: Optional[NotificationDispatcher] = None
        self.probe: Optional[Probe] = None
        self.scheduler: Optional[MonitorScheduler] = None
        self.server: Optional[PingMasterServer] = None

        # --- lifecycle ---
        self._is_running = False
        self._stop_event = asyncio.Event()

    def _print_banner(self) -> None:
        settings = self.settings
        logger.info("=" * 74)
        logger.info(f"  {settings.app_name} v{settings.app_version} ({settings.environment.value})")
        logger.info(f"  Database : {settings.database.url.split('://')[0]}")
        logger.info(f"  HTTP     : {settings.web_host}:{settings.web_port}")
        logger.info(f"  Channels : {', '.join(settings.notifications.default_channels)} (default)")
        logger.info("=" * 74)

    # ==================================================================
    # PHASE 1: DATABASE
    # ==================================================================

    async def _init_database(self) -> bool:
        logger.info("── Phase 1: Database ─────────────────────────────")
        try:
            self.db_manager = DatabaseManager(self.settings.database)
            await self.db_manager.initialize()

            if not await self.db_manager.check_connection():
                logger.error("  ✗ Database connection check failed")
                return False

            self.repository = SqlRepository(self.db_manager)
            logger.info("  ✓ Database ready")
            return True

        except PingMasterException as e:
            logger.error(f"  ✗ Database init failed: {e.log_format()}")
            return False

    # ==================================================================
    # PHASE 2: DELIVERY
    # ==================================================================

    async def _init_delivery(self) -> None:
        logger.info("── Phase 2: Delivery Channels ────────────────────")
        self.broadcaster = PushBroadcaster()
        webhook_service = WebhookService(self.repository, self.settings.webhooks)
        email_queue = EmailQueue(self.settings.email)

        self.channels = [
            PushChannel(self.broadcaster),
            WebhookChannel(webhook_service),
            EmailChannel(
                self.repository,
                email_queue,
                self.settings.email,
                app_name=self.settings.app_name,
            ),
        ]
        for channel in self.channels:
            await channel.start()

        self.dispatcher = NotificationDispatcher(
            self.repository,
            self.channels,
            self.settings.notifications,
        )
        logger.info(f"  ✓ Channels started: {', '.join(c.name for c in self.channels)}")

    # ==================================================================
    # PHASE 3: MONITORING
    # ==================================================================

    async def _init_monitoring(self) -> None:
        logger.info("── Phase 3: Monitoring ───────────────────────────")
        self.probe = Probe(self.settings.monitoring)
        self.scheduler = MonitorScheduler(
            self.repository,
            self.probe,
            self.dispatcher,
            self.settings.monitoring,
        )
        self.server = PingMasterServer(
            self.broadcaster,
            stats_provider=self.get_stats,
            settings=self.settings,
        )
        logger.info("  ✓ Probe, scheduler and server created")

    # ==================================================================
    # FULL STARTUP SEQUENCE
    # ==================================================================

    async def startup(self) -> bool:
        """
        Execute the complete startup sequence.
        Returns False (and logs errors) if a critical phase fails.
        """
        self._print_banner()

        if not await self._init_database():
            return False

        await self._init_delivery()
        await self._init_monitoring()

        logger.info("── Starting background services ───────────────────")
        try:
            await self.server.start()
        except OSError as e:
            raise InitializationError(
                f"HTTP server could not bind {self.settings.web_host}:{self.settings.web_port}: {e}",
                component="server",
                cause=e,
            ) from e
        await self.scheduler.start()

        self._is_running = True
        logger.info("=" * 74)
        logger.info("  ✓ ALL SYSTEMS OPERATIONAL")
        logger.info("=" * 74)
        return True

    # ==================================================================
    # SHUTDOWN SEQUENCE
    # ==================================================================

    async def shutdown(self) -> None:
        """
        Graceful shutdown in reverse order.
        Each step is wrapped so a failure in one subsystem doesn't prevent
        the others from cleaning up.
        """
        logger.info("=" * 74)
        logger.info("  SHUTTING DOWN …")
        logger.info("=" * 74)

        self._is_running = False

        if self.scheduler:
            try:
                await self.scheduler.stop(self.settings.monitoring.shutdown_grace)
            except Exception as e:
                logger.error(f"  ✗ Scheduler stop error: {e}")

        if self.dispatcher:
            try:
                await self.dispatcher.drain()
            except Exception as e:
                logger.error(f"  ✗ Dispatcher drain error: {e}")

        for channel in reversed(self.channels):
            try:
                await channel.stop()
            except Exception as e:
                logger.error(f"  ✗ {channel.name} channel stop error: {e}")

        if self.server:
            try:
                await self.server.stop()
            except Exception as e:
                logger.error(f"  ✗ Server stop error: {e}")

        if self.probe:
            try:
                await self.probe.close()
            except Exception as e:
                logger.error(f"  ✗ Probe close error: {e}")

        if self.db_manager:
            try:
                await self.db_manager.close()
            except Exception as e:
                logger.error(f"  ✗ Database close error: {e}")

        logger.info("  ✓ SHUTDOWN COMPLETE")

    # ==================================================================
    # RUN
    # ==================================================================

    def request_stop(self) -> None:
        self._stop_event.set()

    async def run(self) -> None:
        """Block until a stop is requested."""
        await self._stop_event.wait()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "scheduler": self.scheduler.get_stats() if self.scheduler else None,
            "dispatcher": self.dispatcher.get_stats() if self.dispatcher else None,
        }


# ============================================================================
# SIGNAL HANDLER SETUP
# ============================================================================

def _install_signal_handlers(app: PingMasterApplication) -> None:
    """
    Install SIGTERM / SIGINT handlers so the engine shuts down gracefully
    even when killed by the OS.
    """
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        logger.info(f"  ⚡ {sig.name} received, initiating graceful shutdown…")
        app.request_stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal, sig)
        except (NotImplementedError, OSError):
            # Not supported on Windows; KeyboardInterrupt still applies
            pass


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

async def main() -> int:
    settings = get_settings()
    setup_logging(settings.logging)

    app = PingMasterApplication(settings)
    _install_signal_handlers(app)

    try:
        if not await app.startup():
            logger.error("  ✗ Startup failed, exiting")
            return 1
        await app.run()
    except PingMasterException as e:
        logger.error(f"  ✗ {e.log_format()}")
        return 1
    except Exception as e:
        logger.opt(exception=True).error(f"  ✗ Unhandled error: {e}")
        return 1
    finally:
        await app.shutdown()
    return 0


def cli() -> None:
    """Console entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
