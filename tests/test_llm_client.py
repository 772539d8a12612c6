"""
Tests for Signal Analysis Client
================================
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from signaldesk.errors import AnalysisError, QuotaExceededError
from signaldesk.llm_client import (
    AnalysisResult,
    GeminiSignalClient,
    QualificationStatus,
    TradeSignal,
    history_stats,
    is_quota_error,
)


PAYLOAD = {
    "qualificationStatus": "APPROVED",
    "signal": "BUY",
    "predictedMovement": "+3.8%",
    "confidence": 92,
    "ticker": "NVDA",
    "entryPrice": "$880.50",
    "stopLoss": "$860.00",
    "targetPrice": "$914.00",
    "reasoning": "Bull flag breakout on rising volume",
    "detectedPattern": "Bull Flag",
    "patternType": "Bullish Continuation",
    "patternConfidence": 89,
}


def gemini_body(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class FakeResponse:
    def __init__(self, status: int, body: dict | str, headers: dict | None = None):
        self.status = status
        self._body = body
        self.headers = headers or {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def text(self) -> str:
        return self._body if isinstance(self._body, str) else json.dumps(self._body)

    async def json(self) -> dict:
        return self._body


class FakeSession:
    def __init__(self, responses):
        self._responses = list(responses)
        self.requests = []
        self.closed = False

    def post(self, url, json=None, headers=None):
        self.requests.append({"url": url, "json": json, "headers": headers})
        return self._responses.pop(0)

    async def close(self):
        self.closed = True


@pytest.fixture
def client():
    c = GeminiSignalClient({"api_key": "test-key", "calls_per_minute": 6000, "max_retries": 3})
    yield c


class TestAnalysisResult:
    """Test payload parsing."""

    def test_from_payload(self):
        result = AnalysisResult.from_payload(PAYLOAD)

        assert result.is_approved
        assert result.signal is TradeSignal.BUY
        assert result.confidence == 92.0
        assert result.detected_pattern == "Bull Flag"
        assert result.to_dict()["entryPrice"] == "$880.50"

    def test_unknown_values_degrade(self):
        result = AnalysisResult.from_payload({"qualificationStatus": "MAYBE", "signal": "YOLO", "confidence": "high"})

        assert result.qualification_status is QualificationStatus.REJECTED
        assert result.signal is TradeSignal.WAIT
        assert result.confidence == 0.0

    def test_non_object_rejected(self):
        with pytest.raises(AnalysisError):
            AnalysisResult.from_payload(["not", "a", "dict"])


class TestHelpers:
    """Test quota detection and prompt statistics."""

    @pytest.mark.parametrize("status,body,expected", [
        (429, "", True),
        (400, '{"error": {"status": "RESOURCE_EXHAUSTED"}}', True),
        (500, "upstream said 429", True),
        (500, "internal", False),
        (None, "", False),
    ])
    def test_is_quota_error(self, status, body, expected):
        assert is_quota_error(status, body) is expected

    def test_history_stats(self):
        stats = history_stats([100.0, 101.0, 99.0, 100.0])
        assert stats["mean"] == 100.0
        assert stats["range_pct"] == pytest.approx(2.0202, abs=1e-3)
        assert stats["return_std_pct"] > 0

    def test_history_stats_flat(self):
        stats = history_stats([5.0] * 20)
        assert stats["return_std_pct"] == 0.0
        assert stats["range_pct"] == 0.0


class TestGeminiSignalClient:
    """Test transport behaviour against a fake session."""

    @pytest.mark.asyncio
    async def test_analyze_market_data(self, client, make_snapshot):
        session = FakeSession([FakeResponse(200, gemini_body(json.dumps(PAYLOAD)))])
        client._session = session

        result = await client.analyze_market_data(make_snapshot("NVDA", 880.5, 870.0))

        assert result.is_approved
        request = session.requests[0]
        assert request["url"].endswith("/models/gemini-2.5-flash:generateContent")
        assert request["headers"]["x-goog-api-key"] == "test-key"
        prompt = request["json"]["contents"][0]["parts"][0]["text"]
        assert "Asset: NVDA" in prompt
        assert "Trend History:" in prompt
        assert request["json"]["generationConfig"]["responseMimeType"] == "application/json"

    @pytest.mark.asyncio
    async def test_fenced_json_is_accepted(self, client, make_snapshot):
        text = "```json\n" + json.dumps(PAYLOAD) + "\n```"
        client._session = FakeSession([FakeResponse(200, gemini_body(text))])

        result = await client.analyze_market_data(make_snapshot("NVDA", 880.0))
        assert result.signal is TradeSignal.BUY

    @pytest.mark.asyncio
    async def test_quota_is_raised_and_not_retried(self, client, make_snapshot):
        session = FakeSession([FakeResponse(429, "quota", {"Retry-After": "60"})])
        client._session = session

        with pytest.raises(QuotaExceededError) as exc:
            await client.analyze_market_data(make_snapshot("NVDA", 880.0))

        assert exc.value.retry_after_seconds == 60.0
        assert len(session.requests) == 1
        assert client.get_stats()["quota_errors"] == 1

    @pytest.mark.asyncio
    async def test_resource_exhausted_body_is_quota(self, client, make_snapshot):
        body = '{"error": {"code": 400, "status": "RESOURCE_EXHAUSTED"}}'
        client._session = FakeSession([FakeResponse(400, body)])

        with pytest.raises(QuotaExceededError):
            await client.analyze_market_data(make_snapshot("NVDA", 880.0))

    @pytest.mark.asyncio
    async def test_server_error_is_analysis_error(self, client, make_snapshot):
        client._session = FakeSession([FakeResponse(500, "internal")])

        with pytest.raises(AnalysisError) as exc:
            await client.analyze_market_data(make_snapshot("NVDA", 880.0))
        assert not isinstance(exc.value, QuotaExceededError)

    @pytest.mark.asyncio
    async def test_malformed_json_is_analysis_error(self, client, make_snapshot):
        client._session = FakeSession([FakeResponse(200, gemini_body("not json"))])

        with pytest.raises(AnalysisError):
            await client.analyze_market_data(make_snapshot("NVDA", 880.0))

    @pytest.mark.asyncio
    async def test_empty_candidates_is_analysis_error(self, client, make_snapshot):
        client._session = FakeSession([FakeResponse(200, {"candidates": []})])

        with pytest.raises(AnalysisError):
            await client.analyze_market_data(make_snapshot("NVDA", 880.0))

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self, client, make_snapshot):
        post = AsyncMock(side_effect=[asyncio.TimeoutError(), json.dumps(PAYLOAD)])
        with patch.object(client, "_post", post), patch("signaldesk.llm_client.asyncio.sleep", AsyncMock()):
            result = await client.analyze_market_data(make_snapshot("NVDA", 880.0))

        assert result.is_approved
        assert post.await_count == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, client, make_snapshot):
        post = AsyncMock(side_effect=asyncio.TimeoutError())
        with patch.object(client, "_post", post), patch("signaldesk.llm_client.asyncio.sleep", AsyncMock()):
            with pytest.raises(AnalysisError, match="after 3 attempts"):
                await client.analyze_market_data(make_snapshot("NVDA", 880.0))

        assert post.await_count == 3

    @pytest.mark.asyncio
    async def test_missing_api_key(self, make_snapshot, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        client = GeminiSignalClient({})

        assert client.is_configured is False
        with pytest.raises(AnalysisError):
            await client.analyze_market_data(make_snapshot("NVDA", 880.0))

    def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "from-env")
        assert GeminiSignalClient({"api_key_env": "MY_KEY"}).is_configured

    @pytest.mark.asyncio
    async def test_analyze_chart_image_sends_inline_jpeg(self, client):
        session = FakeSession([FakeResponse(200, gemini_body(json.dumps(PAYLOAD)))])
        client._session = session

        await client.analyze_chart_image(b"\xff\xd8\xff")

        parts = session.requests[0]["json"]["contents"][0]["parts"]
        assert parts[0]["inlineData"]["mimeType"] == "image/jpeg"
        assert parts[0]["inlineData"]["data"] == "/9j/"

    @pytest.mark.asyncio
    async def test_ask_about_chart_error_strings(self, client):
        client._session = FakeSession([FakeResponse(429, "quota")])
        assert await client.ask_about_chart(b"img", "Where is support?") == (
            "Error: API Quota Exceeded. Please try again in a moment."
        )

        client._session = FakeSession([FakeResponse(500, "boom")])
        assert await client.ask_about_chart(b"img", "Where is support?") == "Connection to Pattern Engine failed."

    @pytest.mark.asyncio
    async def test_ask_about_chart_answer(self, client):
        client._session = FakeSession([FakeResponse(200, gemini_body("Support near 860."))])
        assert await client.ask_about_chart(b"img", "Where is support?") == "Support near 860."

    @pytest.mark.asyncio
    async def test_close(self, client):
        session = FakeSession([])
        client._session = session
        await client.close()
        assert session.closed
