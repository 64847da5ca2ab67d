"""Resilience patterns for outbound HTTP calls.

Provides:
- RetryPolicy: attempt budget plus exponential backoff with full jitter
- ResilientRequestClient: httpx wrapper that retries any failed attempt
  and raises a single RequestError once the budget is spent

Every AI request goes through ``ResilientRequestClient.send``; nothing
else in the package retries.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import httpx

from fitness_analyst.core.exceptions import RequestError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
UNKNOWN_SERVER_ERROR = "Unknown server error"


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


class RetryPolicy:
    """Exponential backoff with full jitter, parameterized by attempt budget.

    The wait that follows failed attempt ``i`` (0-indexed) is
    ``base_delay * 2**i + uniform[0, max_jitter)`` seconds.  There is no
    wait before the first attempt and none after the last.

    Args:
        max_attempts: Total tries, including the first one.
        base_delay: Seconds for the first backoff step.
        max_jitter: Upper bound (exclusive) of the random component in seconds.
        retry_on: Exception types that count as a failed attempt.
        sleep: Awaitable sleep, injectable for tests.
        rand: Source of ``[0, 1)`` floats, injectable for tests.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = 1.0,
        max_jitter: float = 1.0,
        retry_on: tuple[type[BaseException], ...] = (RequestError,),
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        rand: Callable[[], float] | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_jitter = max_jitter
        self.retry_on = retry_on
        self._sleep = sleep or asyncio.sleep
        self._rand = rand or random.random

    def delay_for(self, attempt: int) -> float:
        """Backoff in seconds after failed attempt ``attempt`` (0-indexed)."""
        return self.base_delay * (2**attempt) + self._rand() * self.max_jitter

    async def call(
        self,
        func: Callable[[], Awaitable[T]],
        *,
        max_attempts: int | None = None,
        name: str | None = None,
    ) -> T:
        """Run ``func`` until it succeeds or the attempt budget is spent.

        Attempts are strictly sequential.  The exception from the last
        attempt is re-raised unchanged.

        Args:
            func: Zero-argument async callable performing one attempt.
            max_attempts: Override of the policy's attempt budget.
            name: Label used in log lines.

        Raises:
            ValueError: If the attempt budget is below one.
        """
        attempts = self.max_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        label = name or getattr(func, "__qualname__", repr(func))

        last_exc: BaseException | None = None
        for attempt in range(attempts):
            try:
                return await func()
            except self.retry_on as exc:
                last_exc = exc
                if attempt < attempts - 1:
                    delay = self.delay_for(attempt)
                    logger.warning(
                        "Retry %d/%d for %s after %s (waiting %.2fs)",
                        attempt + 1,
                        attempts - 1,
                        label,
                        exc,
                        delay,
                    )
                    await self._sleep(delay)
                else:
                    logger.error(
                        "All %d attempts exhausted for %s: %s",
                        attempts,
                        label,
                        exc,
                    )
        raise last_exc  # type: ignore[misc]


# ---------------------------------------------------------------------------
# Request client
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequestDescriptor:
    """Method, headers and body of one outbound call.

    Dict and list bodies are sent as JSON; str/bytes bodies are sent raw.
    """

    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None


def extract_error_message(response: httpx.Response) -> str:
    """Human-readable message for a failed response.

    Prefers ``error.message`` from a JSON body, then the HTTP reason
    phrase, then a generic fallback.
    """
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])

    return response.reason_phrase or UNKNOWN_SERVER_ERROR


class ResilientRequestClient:
    """httpx.AsyncClient wrapper that retries every failed attempt.

    A transport exception and a non-2xx status are both failures.  Either
    a successful response is returned or exactly one RequestError is
    raised carrying the last observed message.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        policy: RetryPolicy | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self.policy = policy or RetryPolicy()

    async def send(
        self,
        url: str,
        request: RequestDescriptor,
        max_attempts: int | None = None,
    ) -> httpx.Response:
        """Perform ``request`` against ``url`` with retries.

        Args:
            url: Absolute URL.
            request: Method, headers and body.
            max_attempts: Total tries; defaults to the policy budget.

        Returns:
            The first successful ``httpx.Response``.

        Raises:
            ValueError: If ``max_attempts`` is below one.
            RequestError: After the last attempt fails.
        """
        attempts = self.policy.max_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        async def attempt() -> httpx.Response:
            return await self._attempt(url, request)

        try:
            return await self.policy.call(
                attempt, max_attempts=attempts, name=f"{request.method} {url}"
            )
        except RequestError as exc:
            raise RequestError(exc.message, status_code=exc.status_code, attempts=attempts) from exc

    async def _attempt(self, url: str, request: RequestDescriptor) -> httpx.Response:
        kwargs: dict[str, Any] = {"headers": request.headers}
        if isinstance(request.body, str | bytes):
            kwargs["content"] = request.body
        elif request.body is not None:
            kwargs["json"] = request.body

        try:
            response = await self._http.request(request.method, url, **kwargs)
        except httpx.HTTPError as e:
            raise RequestError(str(e) or type(e).__name__) from e

        if not response.is_success:
            raise RequestError(extract_error_message(response), status_code=response.status_code)
        return response

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()
