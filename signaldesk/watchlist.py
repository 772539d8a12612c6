"""
Watchlist Store
===============

Authoritative view of each tracked instrument: latest snapshot, optional
price alert, last analysis result and in-flight analysis marker.

Three producers mutate the store: tick delivery, user alert edits and
analysis completion. Each mutation is a single synchronous step, so on
one event loop no locking is needed.

The store owns its entries. Readers get shallow copies whose nested
values (snapshot, alert, analysis) are immutable.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from signaldesk.errors import InvalidAlertTargetError
from signaldesk.events import InstrumentSnapshot, TickBatch

if TYPE_CHECKING:
    from signaldesk.llm_client import AnalysisResult


logger = logging.getLogger(__name__)


DEFAULT_WATCHLIST_SYMBOLS = ("NVDA", "TSLA", "BTC-USD", "ETH-USD", "EUR-USD", "XAU-USD")


class InstrumentCategory(str, Enum):
    """Watchlist categories, derived from the symbol."""
    STOCK = "STOCK"
    CRYPTO = "CRYPTO"
    FOREX = "FOREX"
    COMMODITY = "COMMODITY"


def categorize_symbol(symbol: str) -> InstrumentCategory:
    """
    Derive a category from the symbol naming convention.

    USD-quoted pairs are crypto (BTC/ETH), commodities (XAU/XAG) or forex;
    everything else is a stock.
    """
    if "USD" in symbol:
        if "BTC" in symbol or "ETH" in symbol:
            return InstrumentCategory.CRYPTO
        if "XAU" in symbol or "XAG" in symbol:
            return InstrumentCategory.COMMODITY
        return InstrumentCategory.FOREX
    return InstrumentCategory.STOCK


class AlertCondition(str, Enum):
    """Trigger direction of a price alert."""
    ABOVE = "ABOVE"
    BELOW = "BELOW"

    @classmethod
    def for_target(cls, target_price: float, current_price: float) -> "AlertCondition":
        """ABOVE only when the target is strictly greater than the current price."""
        return cls.ABOVE if target_price > current_price else cls.BELOW

    def is_met(self, price: float, target_price: float) -> bool:
        if self is AlertCondition.ABOVE:
            return price >= target_price
        return price <= target_price


@dataclass(frozen=True)
class PriceAlert:
    """
    User-defined threshold, consumed at most once.

    The condition is fixed when the alert is created and never
    re-derived from later prices.
    """
    target_price: float
    condition: AlertCondition
    is_active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    triggered_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "target_price": self.target_price,
            "condition": self.condition.value,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "triggered_at": self.triggered_at.isoformat() if self.triggered_at else None,
        }


@dataclass
class WatchlistEntry:
    """One tracked instrument."""
    symbol: str
    category: InstrumentCategory
    name: str = ""
    snapshot: InstrumentSnapshot | None = None
    alert: PriceAlert | None = None
    analysis: AnalysisResult | None = None
    is_analyzing: bool = False
    last_analyzed_at: datetime | None = None

    def __post_init__(self):
        if not self.name:
            self.name = self.symbol

    @property
    def price(self) -> float | None:
        return self.snapshot.price if self.snapshot else None

    @property
    def is_pending(self) -> bool:
        """True until the first tick for this symbol arrives."""
        return self.snapshot is None

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "category": self.category.value,
            "data": self.snapshot.to_dict() if self.snapshot else None,
            "alert": self.alert.to_dict() if self.alert else None,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "is_analyzing": self.is_analyzing,
            "last_analyzed_at": self.last_analyzed_at.isoformat() if self.last_analyzed_at else None,
        }


def parse_alert_target(value: Any) -> float:
    """
    Validate a user-supplied alert target.

    Raises:
        InvalidAlertTargetError: missing, non-numeric, non-finite or <= 0
    """
    if value is None or isinstance(value, bool):
        raise InvalidAlertTargetError("Alert target price is required")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise InvalidAlertTargetError("Alert target price is required")
    try:
        target = float(value)
    except (TypeError, ValueError):
        raise InvalidAlertTargetError(f"Alert target is not a number: {value!r}")
    if not math.isfinite(target) or target <= 0:
        raise InvalidAlertTargetError(f"Alert target must be a positive finite number: {value!r}")
    return target


@dataclass(frozen=True)
class TriggeredAlert:
    """An alert that fired during one tick batch evaluation."""
    symbol: str
    alert: PriceAlert
    price: float


class WatchlistStore:
    """
    Fixed set of watchlist entries keyed by symbol.

    Entries are created by initialize() and never removed.
    """

    def __init__(self, symbols: list[str] | tuple[str, ...] | None = None):
        self._entries: dict[str, WatchlistEntry] = {}
        self.initialize(symbols if symbols is not None else DEFAULT_WATCHLIST_SYMBOLS)

    def initialize(self, symbols: list[str] | tuple[str, ...]) -> list[WatchlistEntry]:
        """Create one empty entry per symbol (duplicates collapse to one)."""
        self._entries = {}
        for symbol in symbols:
            if symbol in self._entries:
                logger.warning(f"Duplicate watchlist symbol ignored: {symbol}")
                continue
            self._entries[symbol] = WatchlistEntry(symbol=symbol, category=categorize_symbol(symbol))
        logger.info(f"Watchlist initialized: {', '.join(self._entries)}")
        return self.entries()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @property
    def symbols(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, symbol: str) -> WatchlistEntry | None:
        entry = self._entries.get(symbol)
        return replace(entry) if entry else None

    def entries(self) -> list[WatchlistEntry]:
        return [replace(entry) for entry in self._entries.values()]

    def active_alerts(self) -> dict[str, PriceAlert]:
        return {
            symbol: entry.alert
            for symbol, entry in self._entries.items()
            if entry.alert is not None and entry.alert.is_active
        }

    # -------------------------------------------------------------------------
    # Tick delivery
    # -------------------------------------------------------------------------

    def apply_tick_batch(self, batch: TickBatch) -> list[str]:
        """
        Replace the snapshot of every entry present in the batch.

        Entries missing from the batch keep whatever they had (possibly
        nothing). Returns the updated symbols.
        """
        data = batch.by_symbol()
        updated = []
        for symbol, entry in self._entries.items():
            snapshot = data.get(symbol)
            if snapshot is None:
                continue
            entry.snapshot = snapshot
            updated.append(symbol)
        return updated

    def trigger_alerts(self, now: datetime | None = None) -> list[TriggeredAlert]:
        """
        Deactivate every active alert whose condition is met by the current price.

        Runs without suspension, so deactivation and detection form one
        step: a later batch sees is_active=False and skips the alert.
        """
        now = now or datetime.now(timezone.utc)
        triggered = []
        for symbol, entry in self._entries.items():
            alert = entry.alert
            if alert is None or not alert.is_active or entry.snapshot is None:
                continue
            price = entry.snapshot.price
            if alert.condition.is_met(price, alert.target_price):
                entry.alert = replace(alert, is_active=False, triggered_at=now)
                triggered.append(TriggeredAlert(symbol=symbol, alert=entry.alert, price=price))
        return triggered

    # -------------------------------------------------------------------------
    # User edits
    # -------------------------------------------------------------------------

    def set_alert(self, symbol: str, target_price: Any) -> PriceAlert | None:
        """
        Create (or replace) the alert for a symbol.

        No-op returning None when the symbol is unknown, no price has
        arrived yet, or the target is invalid.
        """
        entry = self._entries.get(symbol)
        if entry is None or entry.snapshot is None:
            logger.debug(f"set_alert ignored for {symbol}: no price yet")
            return None
        try:
            target = parse_alert_target(target_price)
        except InvalidAlertTargetError as e:
            logger.debug(f"set_alert ignored for {symbol}: {e}")
            return None

        alert = PriceAlert(
            target_price=target,
            condition=AlertCondition.for_target(target, entry.snapshot.price),
        )
        entry.alert = alert
        logger.info(f"Alert set: {symbol} {alert.condition.value} {target} (price {entry.snapshot.price})")
        return alert

    def clear_alert(self, symbol: str) -> bool:
        """Remove the alert for a symbol. Returns True if one was removed."""
        entry = self._entries.get(symbol)
        if entry is None or entry.alert is None:
            return False
        entry.alert = None
        logger.info(f"Alert cleared: {symbol}")
        return True

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def set_analyzing(self, symbol: str, flag: bool) -> None:
        entry = self._entries.get(symbol)
        if entry is not None:
            entry.is_analyzing = flag

    def merge_analysis(self, symbol: str, result: AnalysisResult, now: datetime | None = None) -> None:
        """Store a completed analysis and clear the in-flight marker."""
        entry = self._entries.get(symbol)
        if entry is None:
            return
        entry.analysis = result
        entry.is_analyzing = False
        entry.last_analyzed_at = now or datetime.now(timezone.utc)

    def to_list(self) -> list[dict]:
        return [entry.to_dict() for entry in self._entries.values()]
