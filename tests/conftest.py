"""Shared fixtures for the fitness analyst tests."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from fitness_analyst.core.completions import CompletionClient
from fitness_analyst.core.config import Settings
from fitness_analyst.core.resilience import ResilientRequestClient, RetryPolicy
from fitness_analyst.db.supabase import ProfileChange
from fitness_analyst.models.profile import Profile

Handler = Callable[[httpx.Request], httpx.Response]


def _completion_body(content: str | None) -> dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class _RecordingTransport:
    """MockTransport handler that records requests and replays responses."""

    def __init__(self, *responses: httpx.Response | Exception) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        return item

    def payload(self, index: int = -1) -> dict[str, Any]:
        """Decoded JSON body of a recorded request."""
        return json.loads(self.requests[index].content)


class _FakeSubscription:
    """Push subscription handle that records release."""

    def __init__(self, user_id: str, on_change: Callable[[ProfileChange], None]) -> None:
        self.user_id = user_id
        self.on_change = on_change
        self.active = True

    async def unsubscribe(self) -> None:
        self.active = False

    def push(self, event_type: str, new: dict[str, Any]) -> None:
        """Deliver a change as the store would (even after release)."""
        self.on_change(ProfileChange(event_type=event_type, new=new))


class _FakeProfileStore:
    """In-memory profile store with push subscriptions."""

    def __init__(self, rows: dict[str, dict[str, Any]] | None = None) -> None:
        self.rows = rows or {}
        self.fetch = AsyncMock(side_effect=self._fetch)
        self.upsert = AsyncMock(side_effect=self._upsert)
        self.subscribe = AsyncMock(side_effect=self._subscribe)
        self.subscriptions: list[_FakeSubscription] = []

    async def _fetch(self, user_id: str) -> dict[str, Any] | None:
        return self.rows.get(user_id)

    async def _upsert(self, record: dict[str, Any]) -> None:
        self.rows[record["user_id"]] = dict(record)

    async def _subscribe(
        self, user_id: str, on_change: Callable[[ProfileChange], None]
    ) -> _FakeSubscription:
        subscription = _FakeSubscription(user_id, on_change)
        self.subscriptions.append(subscription)
        return subscription

    @property
    def active_subscriptions(self) -> list[_FakeSubscription]:
        return [s for s in self.subscriptions if s.active]


@pytest.fixture
def settings() -> Settings:
    """Settings with test credentials and a fake completion endpoint."""
    return Settings(
        SUPABASE_URL="https://project.supabase.test",
        SUPABASE_ANON_KEY="anon-key",
        GROQ_API_KEY="test-key",
        GROQ_MODEL="test-model",
        GROQ_URL="https://groq.test/openai/v1/chat/completions",
    )


@pytest.fixture
def make_completions(settings: Settings) -> Callable[[Handler], CompletionClient]:
    """Build a CompletionClient whose HTTP traffic goes to ``handler``."""

    def _make(handler: Handler) -> CompletionClient:
        requests = ResilientRequestClient(
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            policy=RetryPolicy(max_attempts=settings.REQUEST_MAX_ATTEMPTS, sleep=AsyncMock()),
        )
        return CompletionClient(requests, settings)

    return _make


@pytest.fixture
def complete_profile() -> Profile:
    """A profile with every field filled in."""
    return Profile(
        name="Alex",
        age="30",
        height="180",
        current_weight="90",
        target_weight="80",
    )


@pytest.fixture
def store() -> _FakeProfileStore:
    """An empty in-memory profile store with push subscriptions."""
    return _FakeProfileStore()


@pytest.fixture
def completion_reply() -> Callable[[str | None], httpx.Response]:
    """Build a successful chat-completions response carrying ``content``."""

    def _reply(content: str | None) -> httpx.Response:
        return httpx.Response(200, json=_completion_body(content))

    return _reply


@pytest.fixture
def make_transport() -> Callable[..., _RecordingTransport]:
    """Build a MockTransport handler that records requests.

    Responses are replayed in order and the last one repeats; exceptions
    are raised instead of returned.
    """
    return _RecordingTransport
