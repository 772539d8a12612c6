"""
SignalDesk - Core Module
========================

Market-signal dashboard core: simulated price stream, watchlist with
one-shot price alerts, notification queue and an analysis orchestrator
for an external pattern-recognition model.
"""

from signaldesk.errors import (
    SignalDeskError,
    AnalysisError,
    QuotaExceededError,
    InvalidAlertTargetError,
    AuthError,
    ConfigValidationError,
)
from signaldesk.events import InstrumentSnapshot, TickBatch, EventType
from signaldesk.event_bus import MarketEventBus, SubscriptionToken
from signaldesk.price_simulator import PriceSimulator, InstrumentSpec, InstrumentClass
from signaldesk.watchlist import (
    WatchlistStore,
    WatchlistEntry,
    PriceAlert,
    AlertCondition,
    InstrumentCategory,
)
from signaldesk.notifications import Notification, NotificationQueue, ChimeHook
from signaldesk.alert_evaluator import AlertEvaluator
from signaldesk.llm_client import AnalysisResult, SignalAnalysisClient, GeminiSignalClient
from signaldesk.analysis import AnalysisOrchestrator, AnalysisOutcome, AnalysisStatus
from signaldesk.auto_scan import AutoScanScheduler

__all__ = [
    # Errors
    "SignalDeskError",
    "AnalysisError",
    "QuotaExceededError",
    "InvalidAlertTargetError",
    "AuthError",
    "ConfigValidationError",
    # Market stream
    "InstrumentSnapshot",
    "TickBatch",
    "EventType",
    "MarketEventBus",
    "SubscriptionToken",
    "PriceSimulator",
    "InstrumentSpec",
    "InstrumentClass",
    # Watchlist and alerts
    "WatchlistStore",
    "WatchlistEntry",
    "PriceAlert",
    "AlertCondition",
    "InstrumentCategory",
    "Notification",
    "NotificationQueue",
    "ChimeHook",
    "AlertEvaluator",
    # Analysis
    "AnalysisResult",
    "SignalAnalysisClient",
    "GeminiSignalClient",
    "AnalysisOrchestrator",
    "AnalysisOutcome",
    "AnalysisStatus",
    "AutoScanScheduler",
]
