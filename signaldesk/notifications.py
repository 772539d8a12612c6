"""
Notification Queue
==================

Fired-alert notifications and the best-effort "chime" hook.

Features:
- Most-recent-first queue, removal only by explicit dismissal
- Batch pushes keep their generation order, ahead of older entries
- Pluggable chime channels (log, JSONL file, callback)
- Channel failures are logged, never propagated
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import secrets
import string
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable


logger = logging.getLogger(__name__)


_ID_ALPHABET = string.ascii_lowercase + string.digits
_ID_LENGTH = 9


def new_notification_id() -> str:
    """Random 9-character base-36 token."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_LENGTH))


@dataclass(frozen=True)
class Notification:
    """Immutable record of one fired alert."""
    title: str
    message: str
    symbol: str = ""
    id: str = field(default_factory=new_notification_id)
    fired_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "symbol": self.symbol,
            "fired_at": self.fired_at.isoformat(),
        }


class NotificationQueue:
    """
    Ordered list of unacknowledged notifications, newest first.

    Unbounded: entries stay until dismissed or the session ends.
    """

    def __init__(self):
        self._items: list[Notification] = []

    def push(self, notifications: list[Notification]) -> None:
        """Prepend a batch, preserving its internal order."""
        if not notifications:
            return
        self._items = list(notifications) + self._items

    def dismiss(self, notification_id: str) -> bool:
        """Remove the notification with this id. Returns False if absent."""
        for i, item in enumerate(self._items):
            if item.id == notification_id:
                del self._items[i]
                return True
        return False

    def items(self) -> list[Notification]:
        return list(self._items)

    def get(self, notification_id: str) -> Notification | None:
        for item in self._items:
            if item.id == notification_id:
                return item
        return None

    def clear(self) -> None:
        self._items = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))


# =============================================================================
# Chime channels
# =============================================================================

class ChimeChannel(ABC):
    """Abstract base class for "notifications were added" side effects."""

    name: str = "channel"

    @abstractmethod
    def send(self, notifications: list[Notification]) -> bool:
        """Deliver the side effect. Returns True if successful."""

    def is_available(self) -> bool:
        return True


class LogChimeChannel(ChimeChannel):
    """Writes fired alerts to the application log."""

    name = "log"

    def send(self, notifications: list[Notification]) -> bool:
        for n in notifications:
            logger.info(f"🔔 {n.title}: {n.message}")
        return True


class FileChimeChannel(ChimeChannel):
    """
    File-based channel.

    Appends one JSON line per notification for log aggregation systems.
    """

    name = "file"

    def __init__(self, filepath: str = "logs/alerts.jsonl"):
        self.filepath = Path(filepath)
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def send(self, notifications: list[Notification]) -> bool:
        with self._lock:
            with open(self.filepath, "a", encoding="utf-8") as f:
                for n in notifications:
                    f.write(json.dumps(n.to_dict()) + "\n")
        return True


class CallbackChimeChannel(ChimeChannel):
    """
    Wraps a plain or async callable (e.g. a sound player or a WebSocket broadcast).

    Coroutines are scheduled on the running loop and not awaited; their
    failures are logged from a done-callback.
    """

    def __init__(self, callback: Callable[[list[Notification]], Any], name: str = "callback"):
        self._callback = callback
        self.name = name
        self._pending: set[asyncio.Task] = set()

    def send(self, notifications: list[Notification]) -> bool:
        result = self._callback(notifications)
        if inspect.isawaitable(result):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                if inspect.iscoroutine(result):
                    result.close()
                logger.debug(f"Chime channel {self.name}: no running loop, skipped")
                return False
            task = asyncio.ensure_future(result, loop=loop)
            self._pending.add(task)
            task.add_done_callback(self._on_done)
        return True

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Chime channel {self.name} failed: {exc}")


class ChimeHook:
    """
    Best-effort "notifications were added" hook.

    Every channel is attempted; errors are logged and swallowed so a
    failing side effect can never disturb alert evaluation.
    """

    def __init__(self, channels: list[ChimeChannel] | None = None):
        self.channels: list[ChimeChannel] = list(channels) if channels is not None else [LogChimeChannel()]
        self._fired = 0
        self._failures = 0

    def add_channel(self, channel: ChimeChannel) -> None:
        self.channels.append(channel)

    def fire(self, notifications: list[Notification]) -> None:
        if not notifications:
            return
        self._fired += 1
        for channel in self.channels:
            try:
                if not channel.is_available():
                    continue
                if not channel.send(notifications):
                    self._failures += 1
                    logger.warning(f"Chime channel {channel.name} reported failure")
            except Exception as e:
                self._failures += 1
                logger.warning(f"Chime channel {channel.name} failed: {e}")

    def get_stats(self) -> dict:
        return {
            "channels": [c.name for c in self.channels],
            "fired": self._fired,
            "failures": self._failures,
        }
