"""
Analysis Orchestrator
=====================

Gates and sequences calls to the external signal-analysis capability,
one in-flight request per instrument.

Features:
- Preconditions checked against caller-observable store state (no locks)
- Quota exhaustion reported as a distinguished outcome
- Failed analysis never overwrites a prior successful result
- Exceptions from the capability never escape request_analysis()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from signaldesk.errors import QuotaExceededError
from signaldesk.llm_client import AnalysisResult, SignalAnalysisClient
from signaldesk.watchlist import WatchlistStore


logger = logging.getLogger(__name__)


QUOTA_MESSAGE = "Limit Reached. Wait 60s."
FAILURE_MESSAGE = "Analysis failed. Please retry."


class AnalysisStatus(str, Enum):
    """Result kind of one analysis request."""
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class AnalysisOutcome:
    """What happened to one request_analysis() call."""
    symbol: str
    status: AnalysisStatus
    result: AnalysisResult | None = None
    message: str = ""

    @property
    def is_quota_exceeded(self) -> bool:
        return self.status is AnalysisStatus.QUOTA_EXCEEDED

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "status": self.status.value,
            "result": self.result.to_dict() if self.result else None,
            "message": self.message,
        }


class AnalysisOrchestrator:
    """
    Runs analysis requests against the store.

    The is_analyzing flag is set before the only suspension point (the
    capability call), so a second request for the same symbol issued
    while the first is awaiting sees the flag and is skipped.
    """

    def __init__(self, store: WatchlistStore, client: SignalAnalysisClient):
        self._store = store
        self._client = client
        self._stats = {
            "requested": 0,
            "completed": 0,
            "skipped": 0,
            "quota_exceeded": 0,
            "failed": 0,
        }

    def can_analyze(self, symbol: str) -> bool:
        entry = self._store.get(symbol)
        return entry is not None and entry.snapshot is not None and not entry.is_analyzing

    async def request_analysis(self, symbol: str) -> AnalysisOutcome:
        """
        Analyze the current snapshot of one watchlist symbol.

        No-op (SKIPPED) when the symbol has no price yet or a request for
        it is already in flight.
        """
        self._stats["requested"] += 1
        entry = self._store.get(symbol)
        if entry is None or entry.snapshot is None or entry.is_analyzing:
            self._stats["skipped"] += 1
            reason = "no price yet" if entry is None or entry.snapshot is None else "already analyzing"
            logger.debug(f"Analysis skipped for {symbol}: {reason}")
            return AnalysisOutcome(symbol=symbol, status=AnalysisStatus.SKIPPED, message=reason)

        self._store.set_analyzing(symbol, True)
        snapshot = entry.snapshot

        try:
            result = await self._client.analyze_market_data(snapshot)
        except QuotaExceededError:
            self._stats["quota_exceeded"] += 1
            logger.warning(f"Analysis quota exceeded for {symbol}")
            return AnalysisOutcome(symbol=symbol, status=AnalysisStatus.QUOTA_EXCEEDED, message=QUOTA_MESSAGE)
        except Exception as e:
            self._stats["failed"] += 1
            logger.warning(f"Analysis failed for {symbol}: {e}")
            return AnalysisOutcome(symbol=symbol, status=AnalysisStatus.FAILED, message=FAILURE_MESSAGE)
        finally:
            # Cleared on every exit path, cancellation included.
            self._store.set_analyzing(symbol, False)

        self._store.merge_analysis(symbol, result, datetime.now(timezone.utc))
        self._stats["completed"] += 1
        logger.info(
            f"Analysis complete for {symbol}: {result.qualification_status.value} {result.signal.value}"
        )
        return AnalysisOutcome(symbol=symbol, status=AnalysisStatus.COMPLETED, result=result)

    def get_stats(self) -> dict:
        return dict(self._stats)
