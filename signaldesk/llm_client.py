"""
Signal Analysis Client
======================

Async client for the external vision/reasoning model that turns market
data (or a chart screenshot) into a qualified trading signal.

Features:
- Gemini generateContent REST API over aiohttp
- Structured JSON responses parsed into AnalysisResult
- Rate limiting to avoid API throttling
- Retry with exponential backoff for timeouts and transport errors
- Quota (HTTP 429 / RESOURCE_EXHAUSTED) reported as QuotaExceededError, never retried
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import aiohttp
import numpy as np

from signaldesk.errors import AnalysisError, QuotaExceededError
from signaldesk.events import InstrumentSnapshot


logger = logging.getLogger(__name__)


class QualificationStatus(str, Enum):
    """Whether the model considers the setup actionable."""
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class TradeSignal(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    WAIT = "WAIT"


@dataclass(frozen=True)
class AnalysisResult:
    """
    Opaque model output, merged wholesale into a watchlist entry.

    Only qualification_status is interpreted by the core; the remaining
    fields are convenience views over the raw payload.
    """
    qualification_status: QualificationStatus
    signal: TradeSignal = TradeSignal.WAIT
    confidence: float = 0.0
    predicted_movement: str = ""
    detected_pattern: str = ""
    pattern_type: str = ""
    pattern_confidence: float = 0.0
    reasoning: str = ""
    payload: dict = field(default_factory=dict)
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_approved(self) -> bool:
        return self.qualification_status is QualificationStatus.APPROVED

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AnalysisResult":
        """Build from the model's JSON object; unknown enum values degrade to REJECTED/WAIT."""
        if not isinstance(payload, dict):
            raise AnalysisError(f"Expected a JSON object, got {type(payload).__name__}")
        try:
            status = QualificationStatus(str(payload.get("qualificationStatus", "")).upper())
        except ValueError:
            status = QualificationStatus.REJECTED
        try:
            signal = TradeSignal(str(payload.get("signal", "")).upper())
        except ValueError:
            signal = TradeSignal.WAIT

        return cls(
            qualification_status=status,
            signal=signal,
            confidence=_as_float(payload.get("confidence")),
            predicted_movement=str(payload.get("predictedMovement") or ""),
            detected_pattern=str(payload.get("detectedPattern") or ""),
            pattern_type=str(payload.get("patternType") or ""),
            pattern_confidence=_as_float(payload.get("patternConfidence")),
            reasoning=str(payload.get("reasoning") or ""),
            payload=dict(payload),
        )

    def to_dict(self) -> dict:
        return {
            **self.payload,
            "qualificationStatus": self.qualification_status.value,
            "signal": self.signal.value,
            "analyzed_at": self.analyzed_at.isoformat(),
        }


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def history_stats(history: tuple[float, ...] | list[float]) -> dict[str, float]:
    """Summary statistics of the price ring used as extra prompt context."""
    prices = np.asarray(history, dtype=float)
    if prices.size < 2:
        return {"mean": float(prices.mean()) if prices.size else 0.0, "return_std_pct": 0.0, "range_pct": 0.0}
    returns = np.diff(prices) / prices[:-1]
    low, high = float(prices.min()), float(prices.max())
    return {
        "mean": round(float(prices.mean()), 4),
        "return_std_pct": round(float(returns.std()) * 100, 4),
        "range_pct": round((high - low) / low * 100, 4) if low > 0 else 0.0,
    }


def is_quota_error(status: int | None, body: str = "") -> bool:
    """Rate limiting shows up as HTTP 429 or a RESOURCE_EXHAUSTED error body."""
    return status == 429 or "RESOURCE_EXHAUSTED" in body or "429" in body


class RateLimiter:
    """Minimum-interval rate limiter for API calls."""

    def __init__(self, calls_per_minute: int = 20):
        self._min_interval = 60.0 / calls_per_minute
        self._last_call_time = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until we can make another API call."""
        async with self._lock:
            now = time.monotonic()
            time_since_last = now - self._last_call_time
            if time_since_last < self._min_interval:
                await asyncio.sleep(self._min_interval - time_since_last)
            self._last_call_time = time.monotonic()


class SignalAnalysisClient(ABC):
    """The external analysis capability: Analyze(input) -> Result | QuotaExceeded."""

    @abstractmethod
    async def analyze_market_data(self, snapshot: InstrumentSnapshot) -> AnalysisResult:
        """
        Analyze one instrument snapshot.

        Raises:
            QuotaExceededError: the capability is rate limited
            AnalysisError: any other failure
        """

    async def close(self) -> None:
        """Release network resources."""


class GeminiSignalClient(SignalAnalysisClient):
    """
    Pattern-recognition engine backed by Gemini.

    Usage:
        client = GeminiSignalClient(config={"model": "gemini-2.5-flash"})
        result = await client.analyze_market_data(snapshot)
    """

    API_BASE = "https://generativelanguage.googleapis.com/v1beta"

    SYSTEM_PROMPT = """Role: You are an Intraday Pattern Recognition Engine for financial chart analysis.
OBJECTIVE: Identify significant chart patterns and generate actionable trading signals ONLY when the predicted intraday move is between 3% and 5%.

1. Pattern detection: look for intraday patterns (Bull/Bear Flag, Cup & Handle, Head & Shoulders, Double Top/Bottom, Ascending Triangle) and classify them (Bullish Continuation, Bearish Reversal, Neutral Consolidation). Only report patterns with > 87% recognition confidence.
2. 3-5% significance filter: output "WAIT" if the projected move is below 3% or above 5%, or pattern confidence is low. Output BUY/SELL only for a clear pattern with a 3-5% projected move.
3. Validation: volume must confirm the breakout, the signal must align with the broader trend, reject choppy price action.

If no clear pattern exists or the criteria are not met, set signal to "WAIT" and qualificationStatus to "REJECTED".
Be precise with entry, stop loss and target prices based on the pattern structure."""

    RESPONSE_SCHEMA = {
        "type": "OBJECT",
        "properties": {
            "qualificationStatus": {"type": "STRING", "enum": ["APPROVED", "REJECTED"]},
            "qualificationScore": {"type": "NUMBER"},
            "signal": {"type": "STRING", "enum": ["BUY", "SELL", "HOLD", "WAIT"]},
            "predictedMovement": {"type": "STRING"},
            "confidence": {"type": "NUMBER"},
            "ticker": {"type": "STRING"},
            "entryPrice": {"type": "STRING"},
            "stopLoss": {"type": "STRING"},
            "targetPrice": {"type": "STRING"},
            "timeframe": {"type": "STRING"},
            "reasoning": {"type": "STRING"},
            "detectedPattern": {"type": "STRING"},
            "patternType": {"type": "STRING"},
            "patternConfidence": {"type": "NUMBER"},
            "riskLevel": {"type": "STRING", "enum": ["LOW", "MEDIUM", "HIGH"]},
            "marketCondition": {"type": "STRING", "enum": ["TRENDING", "RANGING", "VOLATILE", "CORRECTING"]},
            "technicalIndicators": {"type": "ARRAY", "items": {"type": "STRING"}},
        },
        "required": [
            "qualificationStatus", "signal", "predictedMovement", "ticker",
            "entryPrice", "stopLoss", "targetPrice", "reasoning",
            "detectedPattern", "patternType",
        ],
    }

    def __init__(self, config: dict[str, Any] | None = None):
        config = config or {}
        self._model = config.get("model", "gemini-2.5-flash")
        self._api_base = config.get("api_base", self.API_BASE)
        self._timeout = config.get("timeout_seconds", 30)
        self._max_retries = max(1, int(config.get("max_retries", 2)))
        self._thinking_budget = config.get("thinking_budget", 1024)
        self._api_key = config.get("api_key") or os.environ.get(config.get("api_key_env", "GEMINI_API_KEY"), "")
        self._rate_limiter = RateLimiter(config.get("calls_per_minute", 20))

        self._session: aiohttp.ClientSession | None = None

        self._stats = {
            "requests": 0,
            "successes": 0,
            "failures": 0,
            "quota_errors": 0,
            "avg_latency_ms": 0.0,
        }

        if not self._api_key:
            logger.warning("GeminiSignalClient: no API key configured; analysis requests will fail")

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout))
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def analyze_market_data(self, snapshot: InstrumentSnapshot) -> AnalysisResult:
        stats = history_stats(snapshot.history)
        prompt = (
            "SCAN REQUEST:\n"
            f"Asset: {snapshot.symbol}\n"
            f"Price: {snapshot.price}\n"
            f"Change: {snapshot.change_percent}%\n"
            f"Volume: {snapshot.volume}\n"
            f"Trend History: {json.dumps(list(snapshot.history))}\n"
            f"History Stats: mean={stats['mean']}, tick return stdev={stats['return_std_pct']}%, "
            f"range={stats['range_pct']}%\n\n"
            "Task: Detect Intraday Patterns. Apply 3-5% Move Filter."
        )
        return await self._analyze([{"text": prompt}], thinking=False)

    async def analyze_chart_image(self, image: bytes) -> AnalysisResult:
        """Analyze a captured screen frame (JPEG bytes)."""
        parts = [
            {"inlineData": {"mimeType": "image/jpeg", "data": base64.b64encode(image).decode("ascii")}},
            {"text": "Analyze this chart. Identify Intraday Patterns. Filter for 3-5% moves ONLY."},
        ]
        return await self._analyze(parts, thinking=True)

    async def ask_about_chart(self, image: bytes, question: str) -> str:
        """Free-form question about a captured frame. Errors become user-facing text."""
        parts = [
            {"inlineData": {"mimeType": "image/jpeg", "data": base64.b64encode(image).decode("ascii")}},
            {"text": f"Pattern Context Question: {question}"},
        ]
        try:
            text = await self._generate(parts, json_response=False, thinking=True)
        except QuotaExceededError:
            return "Error: API Quota Exceeded. Please try again in a moment."
        except AnalysisError as e:
            logger.warning(f"Chart question failed: {e}")
            return "Connection to Pattern Engine failed."
        return text or "No insight generated."

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _analyze(self, parts: list[dict], thinking: bool) -> AnalysisResult:
        text = await self._generate(parts, json_response=True, thinking=thinking)
        return AnalysisResult.from_payload(self._parse_json(text))

    @staticmethod
    def _parse_json(text: str) -> dict:
        cleaned = text.replace("```json", "").replace("```", "").strip()
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise AnalysisError(f"Malformed model response: {e}") from e

    def _build_payload(self, parts: list[dict], json_response: bool, thinking: bool) -> dict:
        generation_config: dict[str, Any] = {}
        if json_response:
            generation_config["responseMimeType"] = "application/json"
            generation_config["responseSchema"] = self.RESPONSE_SCHEMA
        if thinking and self._thinking_budget:
            generation_config["thinkingConfig"] = {"thinkingBudget": self._thinking_budget}
        payload = {
            "systemInstruction": {"parts": [{"text": self.SYSTEM_PROMPT}]},
            "contents": [{"role": "user", "parts": parts}],
        }
        if generation_config:
            payload["generationConfig"] = generation_config
        return payload

    async def _generate(self, parts: list[dict], json_response: bool, thinking: bool) -> str:
        if not self._api_key:
            raise AnalysisError("API key not configured")

        await self._rate_limiter.acquire()

        payload = self._build_payload(parts, json_response, thinking)
        last_error: str | None = None
        start_time = time.monotonic()
        self._stats["requests"] += 1

        for attempt in range(self._max_retries):
            try:
                text = await self._post(payload)
                self._update_latency_stats((time.monotonic() - start_time) * 1000)
                self._stats["successes"] += 1
                return text
            except QuotaExceededError:
                self._stats["quota_errors"] += 1
                logger.warning("Analysis quota exceeded (429)")
                raise
            except AnalysisError:
                self._stats["failures"] += 1
                raise
            except asyncio.TimeoutError:
                last_error = "API timeout"
                logger.warning(f"Analysis timeout (attempt {attempt + 1}/{self._max_retries})")
            except aiohttp.ClientError as e:
                last_error = f"API error: {e}"
                logger.warning(f"Analysis transport error (attempt {attempt + 1}): {e}")

            if attempt < self._max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        self._stats["failures"] += 1
        raise AnalysisError(f"Analysis failed after {self._max_retries} attempts: {last_error}")

    async def _post(self, payload: dict) -> str:
        session = await self._get_session()
        url = f"{self._api_base}/models/{self._model}:generateContent"
        headers = {"Content-Type": "application/json", "x-goog-api-key": self._api_key}

        async with session.post(url, json=payload, headers=headers) as response:
            if response.status != 200:
                body = await response.text()
                if is_quota_error(response.status, body):
                    retry_after = response.headers.get("Retry-After")
                    raise QuotaExceededError(
                        retry_after_seconds=float(retry_after) if retry_after and retry_after.isdigit() else None
                    )
                raise AnalysisError(f"Gemini API error {response.status}: {body[:200]}")
            data = await response.json()

        return self._extract_text(data)

    @staticmethod
    def _extract_text(data: dict) -> str:
        try:
            candidate = data["candidates"][0]
            parts = candidate["content"]["parts"]
        except (KeyError, IndexError, TypeError) as e:
            raise AnalysisError("No response from model") from e
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict) and not p.get("thought"))
        if not text:
            raise AnalysisError("No response from model")
        return text

    def _update_latency_stats(self, latency_ms: float) -> None:
        """Update running average of latency."""
        alpha = 0.2
        if self._stats["avg_latency_ms"] == 0:
            self._stats["avg_latency_ms"] = latency_ms
        else:
            self._stats["avg_latency_ms"] = alpha * latency_ms + (1 - alpha) * self._stats["avg_latency_ms"]

    def get_stats(self) -> dict:
        return {"model": self._model, "configured": self.is_configured, **self._stats}
