"""
SignalDesk Dashboard Server
===========================

FastAPI surface over the signal desk core, with live WebSocket updates.

Endpoints:
    GET    /api/watchlist                    - Watchlist entries
    POST   /api/watchlist/{symbol}/alert     - Set a price alert
    DELETE /api/watchlist/{symbol}/alert     - Clear a price alert
    POST   /api/watchlist/{symbol}/analyze   - Request analysis
    GET    /api/notifications                - Pending notifications
    DELETE /api/notifications/{id}           - Dismiss a notification
    GET    /api/market                       - Latest tick batch
    GET    /api/status                       - Component status
    POST   /api/auth/register                - Create account
    POST   /api/auth/login                   - Sign in
    POST   /api/auth/logout                  - Sign out
    POST   /api/subscription/upgrade         - Upgrade to PRO
    GET    /api/transactions                 - Payment history
    POST   /api/autopilot                    - Toggle auto-scan (PRO only)
    WS     /ws/market                        - market-update / notifications stream
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from signaldesk.analysis import AnalysisOrchestrator, AnalysisStatus
from signaldesk.auth_store import AuthStore, UserPlan
from signaldesk.auto_scan import AutoScanScheduler
from signaldesk.errors import AuthError, InvalidAlertTargetError
from signaldesk.event_bus import MarketEventBus, SubscriptionToken
from signaldesk.events import TickBatch
from signaldesk.notifications import CallbackChimeChannel, ChimeHook, Notification, NotificationQueue
from signaldesk.price_simulator import PriceSimulator
from signaldesk.subscription import SubscriptionService
from signaldesk.watchlist import WatchlistStore, parse_alert_target


logger = logging.getLogger(__name__)


# =============================================================================
# Request bodies
# =============================================================================

class AlertRequest(BaseModel):
    # Validated by parse_alert_target so bad input maps to one error shape
    target_price: Any = None


class RegisterRequest(BaseModel):
    email: str
    password: str
    phone: str = ""
    display_name: str = ""


class LoginRequest(BaseModel):
    email: str
    password: str


class UpgradeRequest(BaseModel):
    method: str
    cycle: str = "MONTHLY"
    bank_region: str | None = None


class AutopilotRequest(BaseModel):
    enabled: bool


_AUTH_STATUS = {
    "invalid-credential": 401,
    "user-not-found": 404,
    "email-already-in-use": 409,
    "phone-already-in-use": 409,
}

_OUTCOME_STATUS = {
    AnalysisStatus.COMPLETED: 200,
    AnalysisStatus.SKIPPED: 409,
    AnalysisStatus.QUOTA_EXCEEDED: 429,
    AnalysisStatus.FAILED: 502,
}


# =============================================================================
# Connection Manager (WebSocket)
# =============================================================================

class ConnectionManager:
    """Manages WebSocket connections for the market stream."""

    def __init__(self):
        self._connections: list[WebSocket] = []
        # Waiters acquire in FIFO order, so messages reach clients in send order.
        self._send_lock = asyncio.Lock()

    async def connect(self, ws: WebSocket, initial: list[dict] | None = None) -> None:
        """Accept a client, send it the initial messages, then add it to the broadcast set."""
        await ws.accept()
        async with self._send_lock:
            for data in initial or []:
                await ws.send_json(data)
            self._connections.append(ws)

    def disconnect(self, ws: WebSocket) -> None:
        if ws in self._connections:
            self._connections.remove(ws)

    async def broadcast(self, data: dict) -> None:
        async with self._send_lock:
            dead = []
            for ws in list(self._connections):
                try:
                    await ws.send_json(data)
                except Exception as e:
                    logger.debug(f"WebSocket send failed, dropping client: {e}")
                    dead.append(ws)
            for ws in dead:
                self.disconnect(ws)

    @property
    def count(self) -> int:
        return len(self._connections)


# =============================================================================
# Dashboard Server
# =============================================================================

class DashboardServer:
    """
    HTTP/WebSocket front end.

    Holds references to the core components; every mutation goes through
    the components' own operations.
    """

    def __init__(
        self,
        event_bus: MarketEventBus,
        store: WatchlistStore,
        queue: NotificationQueue,
        orchestrator: AnalysisOrchestrator,
        auth_store: AuthStore,
        chime: ChimeHook | None = None,
        simulator: PriceSimulator | None = None,
        scheduler: AutoScanScheduler | None = None,
        cors_origins: list[str] | None = None,
    ):
        self._event_bus = event_bus
        self._store = store
        self._queue = queue
        self._orchestrator = orchestrator
        self._auth = auth_store
        self._subscriptions = SubscriptionService(auth_store)
        self._simulator = simulator
        self._scheduler = scheduler
        self._cors_origins = cors_origins or ["*"]

        self._ws_manager = ConnectionManager()
        self._bus_token: SubscriptionToken | None = None
        self._pending_broadcasts: set[asyncio.Task] = set()

        if chime is not None:
            chime.add_channel(CallbackChimeChannel(self._broadcast_notifications, name="websocket"))

        self._app = self._create_app()

    @property
    def app(self) -> FastAPI:
        return self._app

    def _create_app(self) -> FastAPI:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            self._bus_token = self._event_bus.subscribe(self._on_tick_batch, name="dashboard")
            yield
            if self._bus_token is not None:
                self._event_bus.unsubscribe(self._bus_token)
                self._bus_token = None

        app = FastAPI(title="SignalDesk", version="1.0.0", lifespan=lifespan)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=self._cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        self._register_routes(app)
        return app

    # =========================================================================
    # Live updates
    # =========================================================================

    def _on_tick_batch(self, batch: TickBatch) -> None:
        if self._ws_manager.count == 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._ws_manager.broadcast(batch.to_dict()))
        self._pending_broadcasts.add(task)
        task.add_done_callback(self._pending_broadcasts.discard)

    async def _broadcast_notifications(self, notifications: list[Notification]) -> None:
        await self._ws_manager.broadcast({
            "type": "notifications",
            "data": [n.to_dict() for n in notifications],
        })

    # =========================================================================
    # Routes
    # =========================================================================

    def _entry_or_404(self, symbol: str):
        entry = self._store.get(symbol)
        if entry is None:
            raise HTTPException(status_code=404, detail=f"Unknown symbol: {symbol}")
        return entry

    def _require_user(self):
        user = self._auth.current_user()
        if user is None:
            raise HTTPException(status_code=401, detail="Not signed in")
        return user

    @staticmethod
    def _auth_error(e: AuthError) -> HTTPException:
        return HTTPException(
            status_code=_AUTH_STATUS.get(e.code, 400),
            detail={"code": f"auth/{e.code}", "message": str(e)},
        )

    def _register_routes(self, app: FastAPI) -> None:
        """Register all API routes."""

        # ---------------------------------------------------------------- market

        @app.get("/api/watchlist")
        async def get_watchlist():
            return JSONResponse(content=self._store.to_list())

        @app.post("/api/watchlist/{symbol}/alert")
        async def set_alert(symbol: str, body: AlertRequest):
            entry = self._entry_or_404(symbol)
            try:
                parse_alert_target(body.target_price)
            except InvalidAlertTargetError as e:
                raise HTTPException(status_code=422, detail=str(e))
            alert = self._store.set_alert(symbol, body.target_price)
            if alert is None:
                return JSONResponse(status_code=409, content=entry.to_dict())
            return JSONResponse(content=self._store.get(symbol).to_dict())

        @app.delete("/api/watchlist/{symbol}/alert")
        async def clear_alert(symbol: str):
            self._entry_or_404(symbol)
            self._store.clear_alert(symbol)
            return JSONResponse(content=self._store.get(symbol).to_dict())

        @app.post("/api/watchlist/{symbol}/analyze")
        async def analyze(symbol: str):
            self._entry_or_404(symbol)
            outcome = await self._orchestrator.request_analysis(symbol)
            content = outcome.to_dict()
            content["entry"] = self._store.get(symbol).to_dict()
            return JSONResponse(status_code=_OUTCOME_STATUS[outcome.status], content=content)

        @app.get("/api/notifications")
        async def get_notifications():
            return JSONResponse(content=[n.to_dict() for n in self._queue.items()])

        @app.delete("/api/notifications/{notification_id}")
        async def dismiss_notification(notification_id: str):
            if not self._queue.dismiss(notification_id):
                raise HTTPException(status_code=404, detail="Notification not found")
            return JSONResponse(content={"dismissed": notification_id})

        @app.get("/api/market")
        async def get_market():
            batch = self._event_bus.latest
            if batch is None:
                return JSONResponse(content={"type": "market-update", "data": []})
            return JSONResponse(content=batch.to_dict())

        @app.get("/api/status")
        async def get_status():
            return JSONResponse(content={
                "event_bus": self._event_bus.get_status(),
                "simulator": self._simulator.get_status() if self._simulator else None,
                "analysis": self._orchestrator.get_stats(),
                "auto_scan": self._scheduler.get_status() if self._scheduler else None,
                "notifications": len(self._queue),
                "websocket_clients": self._ws_manager.count,
            })

        # ------------------------------------------------------------------ auth

        @app.post("/api/auth/register")
        async def register(body: RegisterRequest):
            try:
                user = self._auth.register(body.email, body.password, body.phone, body.display_name)
            except AuthError as e:
                raise self._auth_error(e)
            return JSONResponse(status_code=201, content=user.to_dict())

        @app.post("/api/auth/login")
        async def login(body: LoginRequest):
            try:
                user = self._auth.login(body.email, body.password)
            except AuthError as e:
                raise self._auth_error(e)
            return JSONResponse(content=user.to_dict())

        @app.post("/api/auth/logout")
        async def logout():
            self._auth.logout()
            return JSONResponse(content={"signed_in": False})

        @app.post("/api/subscription/upgrade")
        async def upgrade(body: UpgradeRequest):
            user = self._require_user()
            try:
                user, txn = self._subscriptions.upgrade(user.uid, body.method, body.cycle, body.bank_region)
            except ValueError as e:
                raise HTTPException(status_code=422, detail=str(e))
            except AuthError as e:
                raise self._auth_error(e)
            return JSONResponse(content={"user": user.to_dict(), "transaction": txn.to_dict()})

        @app.get("/api/transactions")
        async def get_transactions():
            user = self._require_user()
            return JSONResponse(content=[t.to_dict() for t in self._auth.list_transactions(user.uid)])

        @app.post("/api/autopilot")
        async def autopilot(body: AutopilotRequest):
            user = self._require_user()
            if user.plan is not UserPlan.PRO:
                raise HTTPException(status_code=403, detail="Auto-pilot requires the PRO plan")
            if self._scheduler is None:
                raise HTTPException(status_code=503, detail="Auto-scan is not configured")
            if body.enabled:
                self._scheduler.start()
            else:
                await self._scheduler.stop()
            return JSONResponse(content=self._scheduler.get_status())

        # ------------------------------------------------------------- websocket

        @app.websocket("/ws/market")
        async def market_stream(ws: WebSocket):
            # Late joiners get the current state before any live update
            initial = []
            if self._event_bus.latest is not None:
                initial.append(self._event_bus.latest.to_dict())
            initial.append({
                "type": "notifications",
                "data": [n.to_dict() for n in self._queue.items()],
            })
            try:
                await self._ws_manager.connect(ws, initial)
                while True:
                    await ws.receive_text()
            except WebSocketDisconnect:
                pass
            finally:
                self._ws_manager.disconnect(ws)


# =============================================================================
# Factory
# =============================================================================

def create_dashboard_server(**components: Any) -> DashboardServer:
    """Create a dashboard server over already-built core components."""
    return DashboardServer(**components)
