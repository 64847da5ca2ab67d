"""Tests for the resilience module (retry policy and resilient request client)."""

import json
import logging
from unittest.mock import AsyncMock

import httpx
import pytest

from fitness_analyst.core.exceptions import RequestError
from fitness_analyst.core.resilience import (
    UNKNOWN_SERVER_ERROR,
    RequestDescriptor,
    ResilientRequestClient,
    RetryPolicy,
    extract_error_message,
)


def _client(handler, sleep: AsyncMock | None = None, max_attempts: int = 3) -> ResilientRequestClient:
    policy = RetryPolicy(max_attempts=max_attempts, sleep=sleep or AsyncMock())
    return ResilientRequestClient(
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        policy=policy,
    )


URL = "https://api.example.test/v1/chat/completions"
REQUEST = RequestDescriptor(method="POST", headers={"Authorization": "Bearer k"}, body={"a": 1})


# ---------------------------------------------------------------------------
# RetryPolicy
# ---------------------------------------------------------------------------


class TestRetryPolicyDelays:
    """Backoff schedule: 2^i seconds plus up to one second of jitter."""

    @pytest.mark.parametrize("attempt", [0, 1, 2, 3, 4])
    def test_delay_within_bounds(self, attempt: int) -> None:
        policy = RetryPolicy()
        for _ in range(50):
            delay = policy.delay_for(attempt)
            assert 2**attempt <= delay < 2**attempt + 1

    def test_delay_uses_jitter_source(self) -> None:
        policy = RetryPolicy(rand=lambda: 0.25)
        assert policy.delay_for(0) == pytest.approx(1.25)
        assert policy.delay_for(2) == pytest.approx(4.25)

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestRetryPolicyCall:
    """The call() loop."""

    @pytest.mark.asyncio
    async def test_succeeds_immediately_without_sleeping(self) -> None:
        sleep = AsyncMock()
        policy = RetryPolicy(sleep=sleep)
        func = AsyncMock(return_value="ok")

        assert await policy.call(func) == "ok"
        assert func.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retries_until_success(self) -> None:
        sleep = AsyncMock()
        policy = RetryPolicy(max_attempts=3, sleep=sleep, rand=lambda: 0.0)
        func = AsyncMock(side_effect=[RequestError("a"), RequestError("b"), "recovered"])

        assert await policy.call(func) == "recovered"
        assert func.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_raises_last_error_after_budget(self) -> None:
        sleep = AsyncMock()
        policy = RetryPolicy(max_attempts=2, sleep=sleep)
        func = AsyncMock(side_effect=[RequestError("first"), RequestError("second")])

        with pytest.raises(RequestError, match="second"):
            await policy.call(func)
        assert func.await_count == 2
        # No wait after the final attempt
        assert sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_does_not_retry_other_exceptions(self) -> None:
        policy = RetryPolicy(max_attempts=3, sleep=AsyncMock())
        func = AsyncMock(side_effect=KeyError("bug"))

        with pytest.raises(KeyError):
            await policy.call(func)
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_override_budget_below_one_rejected(self) -> None:
        policy = RetryPolicy()
        with pytest.raises(ValueError):
            await policy.call(AsyncMock(), max_attempts=0)

    @pytest.mark.asyncio
    async def test_logs_retries_and_exhaustion(self, caplog: pytest.LogCaptureFixture) -> None:
        policy = RetryPolicy(max_attempts=2, sleep=AsyncMock())
        func = AsyncMock(side_effect=RequestError("down"))

        with caplog.at_level(logging.WARNING), pytest.raises(RequestError):
            await policy.call(func, name="POST upstream")

        assert any("Retry 1/1 for POST upstream" in r.message for r in caplog.records)
        assert any("All 2 attempts exhausted" in r.message for r in caplog.records)


# ---------------------------------------------------------------------------
# Error message extraction
# ---------------------------------------------------------------------------


class TestExtractErrorMessage:
    """Body message, then reason phrase, then the generic fallback."""

    def test_prefers_error_message_from_body(self) -> None:
        response = httpx.Response(429, json={"error": {"message": "Rate limit reached"}})
        assert extract_error_message(response) == "Rate limit reached"

    def test_falls_back_to_reason_phrase_for_unparsable_body(self) -> None:
        response = httpx.Response(502, text="<html>bad gateway</html>")
        assert extract_error_message(response) == "Bad Gateway"

    def test_falls_back_to_reason_phrase_without_error_message(self) -> None:
        response = httpx.Response(500, json={"detail": "nope"})
        assert extract_error_message(response) == "Internal Server Error"

    def test_generic_message_when_nothing_available(self) -> None:
        response = httpx.Response(599)
        assert extract_error_message(response) == UNKNOWN_SERVER_ERROR


# ---------------------------------------------------------------------------
# ResilientRequestClient
# ---------------------------------------------------------------------------


class TestResilientRequestClient:
    """send(): bounded attempts, one final outcome."""

    @pytest.mark.asyncio
    async def test_returns_successful_response(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        client = _client(handler)
        response = await client.send(URL, REQUEST)

        assert response.json() == {"ok": True}
        assert len(seen) == 1
        assert seen[0].method == "POST"
        assert seen[0].headers["Authorization"] == "Bearer k"
        assert json.loads(seen[0].content) == {"a": 1}

    @pytest.mark.asyncio
    async def test_retries_non_success_status_then_succeeds(self) -> None:
        statuses = iter([503, 500, 200])
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(next(statuses), json={"ok": True})

        sleep = AsyncMock()
        client = _client(handler, sleep=sleep)
        response = await client.send(URL, REQUEST)

        assert response.status_code == 200
        assert calls == 3
        assert sleep.await_count == 2

    @pytest.mark.parametrize("max_attempts", [1, 2, 3, 5])
    @pytest.mark.asyncio
    async def test_never_exceeds_attempt_budget(self, max_attempts: int) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500, json={"error": {"message": f"boom {calls}"}})

        client = _client(handler)
        with pytest.raises(RequestError) as exc_info:
            await client.send(URL, REQUEST, max_attempts=max_attempts)

        assert calls == max_attempts
        assert exc_info.value.message == f"boom {max_attempts}"
        assert exc_info.value.status_code == 500
        assert exc_info.value.attempts == max_attempts

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={})

        client = _client(handler)
        response = await client.send(URL, REQUEST)
        assert response.status_code == 200
        assert calls == 3

    @pytest.mark.asyncio
    async def test_terminal_transport_error_carries_message(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler, max_attempts=2)
        with pytest.raises(RequestError, match="connection refused") as exc_info:
            await client.send(URL, REQUEST)
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_zero_attempts_rejected_without_request(self) -> None:
        handler_calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal handler_calls
            handler_calls += 1
            return httpx.Response(200)

        client = _client(handler)
        with pytest.raises(ValueError):
            await client.send(URL, REQUEST, max_attempts=0)
        assert handler_calls == 0

    @pytest.mark.asyncio
    async def test_raw_string_body_sent_as_content(self) -> None:
        bodies: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(200)

        client = _client(handler)
        await client.send(URL, RequestDescriptor(method="PUT", body="plain text"))
        assert bodies == [b"plain text"]
