#!/usr/bin/env python3
"""
SignalDesk - Main Orchestrator
==============================

Entry point for the market-signal dashboard.

This orchestrator:
1. Loads and validates configuration
2. Builds the core components (event bus, simulator, watchlist, alerts, analysis)
3. Wires the tick pipeline: simulator -> bus -> watchlist/alerts -> notifications
4. Serves the dashboard (optional) and runs until a shutdown signal
"""

from __future__ import annotations

import asyncio
import logging
import signal
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import uvicorn
import yaml

from dashboard.server import DashboardServer, create_dashboard_server
from signaldesk.alert_evaluator import AlertEvaluator
from signaldesk.analysis import AnalysisOrchestrator
from signaldesk.auth_store import JsonAuthStore
from signaldesk.auto_scan import AutoScanScheduler
from signaldesk.config_validator import validate_config_at_startup
from signaldesk.event_bus import MarketEventBus
from signaldesk.llm_client import GeminiSignalClient
from signaldesk.logging_config import LoggingConfig
from signaldesk.notifications import ChimeHook, FileChimeChannel, LogChimeChannel, NotificationQueue
from signaldesk.price_simulator import PriceSimulator
from signaldesk.watchlist import WatchlistStore


logger = logging.getLogger(__name__)


class SignalDeskOrchestrator:
    """
    Owns the lifecycle of every SignalDesk component.

    Data flow:
        PriceSimulator --TickBatch--> MarketEventBus --> AlertEvaluator
                                            |              (WatchlistStore merge,
                                            |               NotificationQueue, ChimeHook)
                                            +--> DashboardServer (WebSocket)
        AnalysisOrchestrator <-- user request / AutoScanScheduler
    """

    def __init__(self, config_path: str = "config.yaml", config: dict[str, Any] | None = None):
        self._config_path = config_path
        self._config: dict[str, Any] = config or {}

        self._event_bus: MarketEventBus | None = None
        self._simulator: PriceSimulator | None = None
        self._store: WatchlistStore | None = None
        self._queue: NotificationQueue | None = None
        self._chime: ChimeHook | None = None
        self._evaluator: AlertEvaluator | None = None
        self._client: GeminiSignalClient | None = None
        self._analysis: AnalysisOrchestrator | None = None
        self._scheduler: AutoScanScheduler | None = None
        self._auth: JsonAuthStore | None = None
        self._dashboard: DashboardServer | None = None
        self._uvicorn: uvicorn.Server | None = None
        self._uvicorn_task: asyncio.Task | None = None

        self._running = False
        self._stopped = False
        self._shutdown_event = asyncio.Event()
        self._startup_time: datetime | None = None

    def _load_config(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        config_file = Path(self._config_path)

        if not config_file.exists():
            logger.error(f"Config file not found: {config_file}")
            raise FileNotFoundError(f"Config file not found: {config_file}")

        with open(config_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

        logger.info(f"Loaded configuration from {config_file}")
        return config

    def initialize(self) -> None:
        """Build and wire all components."""
        if not self._config:
            self._config = self._load_config()
        validate_config_at_startup(self._config)

        LoggingConfig.from_dict(self._config.get("logging")).apply()

        logger.info("=" * 60)
        logger.info("SIGNALDESK - INITIALIZING")
        logger.info("=" * 60)
        self._startup_time = datetime.now(timezone.utc)

        self._event_bus = MarketEventBus()
        self._simulator = PriceSimulator.from_config(self._event_bus, self._config.get("simulator", {}))

        watchlist_config = self._config.get("watchlist", {})
        self._store = WatchlistStore(watchlist_config.get("symbols"))
        self._queue = NotificationQueue()

        channels = [LogChimeChannel()]
        alerts_file = self._config.get("notifications", {}).get("file")
        if alerts_file:
            channels.append(FileChimeChannel(alerts_file))
        self._chime = ChimeHook(channels)

        self._evaluator = AlertEvaluator(self._store, self._queue, self._chime)
        self._evaluator.attach(self._event_bus)

        self._client = GeminiSignalClient(self._config.get("analysis", {}))
        self._analysis = AnalysisOrchestrator(self._store, self._client)

        scan_config = self._config.get("auto_scan", {})
        self._scheduler = AutoScanScheduler(
            self._store,
            self._analysis,
            interval_seconds=scan_config.get("interval_seconds", 20),
            cooldown_seconds=scan_config.get("cooldown_seconds", 60),
        )

        self._auth = JsonAuthStore(self._config.get("auth", {}).get("store_path", "data/auth.json"))

        dashboard_config = self._config.get("dashboard", {})
        if dashboard_config.get("enabled", True):
            self._dashboard = create_dashboard_server(
                event_bus=self._event_bus,
                store=self._store,
                queue=self._queue,
                orchestrator=self._analysis,
                auth_store=self._auth,
                chime=self._chime,
                simulator=self._simulator,
                scheduler=self._scheduler,
                cors_origins=dashboard_config.get("cors_origins"),
            )

        logger.info(f"Watchlist: {', '.join(self._store.symbols)}")
        logger.info(f"Simulated instruments: {len(self._simulator.symbols)}")

    async def start(self) -> None:
        """Start the stream and serve until shutdown is requested."""
        self._running = True
        self._simulator.start()

        if self._config.get("auto_scan", {}).get("enabled", False):
            self._scheduler.start()

        if self._dashboard is not None:
            dashboard_config = self._config.get("dashboard", {})
            host = dashboard_config.get("host", "127.0.0.1")
            port = dashboard_config.get("port", 8080)
            server_config = uvicorn.Config(self._dashboard.app, host=host, port=port, log_level="warning")
            self._uvicorn = uvicorn.Server(server_config)
            # Signals are handled by setup_signal_handlers
            self._uvicorn.install_signal_handlers = lambda: None
            self._uvicorn_task = asyncio.create_task(self._uvicorn.serve())
            logger.info(f"  Dashboard: http://{host}:{port}")
            logger.info(f"  WebSocket: ws://{host}:{port}/ws/market")

        logger.info("=" * 60)
        logger.info("SIGNALDESK STARTED")
        logger.info(f"  Analysis: {'CONFIGURED' if self._client.is_configured else 'NO API KEY'}")
        logger.info("=" * 60)

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            pass

    async def stop(self) -> None:
        """Stop all components gracefully (idempotent)."""
        if self._stopped:
            return
        self._stopped = True
        self._running = False
        logger.info("SIGNALDESK - STOPPING")

        if self._uvicorn is not None:
            self._uvicorn.should_exit = True
        if self._uvicorn_task is not None:
            await self._uvicorn_task

        if self._scheduler:
            await self._scheduler.stop()
        if self._simulator:
            self._simulator.dispose()
        if self._evaluator and self._event_bus:
            self._evaluator.detach(self._event_bus)
        if self._client:
            await self._client.close()

        uptime = (datetime.now(timezone.utc) - self._startup_time).total_seconds() if self._startup_time else 0
        logger.info(f"SignalDesk stopped after {uptime:.0f}s")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "startup_time": self._startup_time.isoformat() if self._startup_time else None,
            "simulator": self._simulator.get_status() if self._simulator else None,
            "event_bus": self._event_bus.get_status() if self._event_bus else None,
            "alerts": self._evaluator.get_stats() if self._evaluator else None,
            "chime": self._chime.get_stats() if self._chime else None,
            "analysis": self._analysis.get_stats() if self._analysis else None,
            "llm": self._client.get_stats() if self._client else None,
            "auto_scan": self._scheduler.get_status() if self._scheduler else None,
            "auth": self._auth.get_stats() if self._auth else None,
        }


def setup_signal_handlers(orchestrator: SignalDeskOrchestrator) -> None:
    """Set up signal handlers for graceful shutdown."""
    def handle_signal(sig, frame):
        logger.info(f"Received signal {sig}")
        orchestrator.request_shutdown()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)


async def main():
    """Main entry point."""
    # Basic console logging until the configured LoggingConfig is applied
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    orchestrator = SignalDeskOrchestrator()
    setup_signal_handlers(orchestrator)

    try:
        orchestrator.initialize()
        await orchestrator.start()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
    finally:
        await orchestrator.stop()


if __name__ == "__main__":
    asyncio.run(main())
