"""Supabase adapters: profile store, realtime subscription and auth provider."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, cast

from supabase import acreate_client

from fitness_analyst.core.config import Settings, get_settings
from fitness_analyst.core.exceptions import PersistenceError

if TYPE_CHECKING:
    from supabase import AsyncClient

logger = logging.getLogger(__name__)

PROFILE_CHANNEL = "profile_changes"


async def create_supabase_client(settings: Settings | None = None) -> AsyncClient:
    """Create the async Supabase client used by the adapters.

    Raises:
        PersistenceError: If client initialization fails.
    """
    settings = settings or get_settings()
    try:
        client = await acreate_client(
            settings.SUPABASE_URL,
            settings.SUPABASE_ANON_KEY.get_secret_value(),
        )
    except Exception as e:
        logger.exception("Failed to initialize Supabase client")
        raise PersistenceError(f"Failed to initialize database connection: {e}") from e
    logger.info("Supabase client initialized successfully")
    return client


# ---------------------------------------------------------------------------
# Push events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProfileChange:
    """A change event pushed by the store for one profile row."""

    event_type: str
    new: dict[str, Any] = field(default_factory=dict)


def parse_change_payload(payload: dict[str, Any]) -> ProfileChange:
    """Normalize a realtime postgres_changes payload.

    Accepts both the wrapped form (``{"data": {"type", "record"}}``) and
    the flat form (``{"eventType", "new"}``).
    """
    data = payload.get("data", payload) if isinstance(payload, dict) else {}
    if not isinstance(data, dict):
        data = {}
    event_type = data.get("eventType") or data.get("type") or ""
    new = data.get("new")
    if new is None:
        new = data.get("record")
    return ProfileChange(
        event_type=str(event_type).upper(),
        new=new if isinstance(new, dict) else {},
    )


class RealtimeSubscription:
    """Handle for one realtime channel; ``unsubscribe`` is idempotent."""

    def __init__(self, client: AsyncClient, channel: Any, user_id: str) -> None:
        self._client = client
        self._channel = channel
        self.user_id = user_id
        self.active = True

    async def unsubscribe(self) -> None:
        """Remove the channel from the client."""
        if not self.active:
            return
        self.active = False
        try:
            await self._client.remove_channel(self._channel)
        except Exception:
            logger.exception("Failed to remove realtime channel", extra={"user_id": self.user_id})
        else:
            logger.info("Realtime profile subscription released", extra={"user_id": self.user_id})


# ---------------------------------------------------------------------------
# Profile store
# ---------------------------------------------------------------------------


class SupabaseProfileStore:
    """Reads, upserts and watches rows of the profiles table."""

    def __init__(self, client: AsyncClient, table: str = "profiles") -> None:
        self._client = client
        self.table = table

    async def fetch(self, user_id: str) -> dict[str, Any] | None:
        """Fetch the profile row for ``user_id``.

        Returns:
            The row, or None when the user has no profile yet.

        Raises:
            PersistenceError: If the read fails.
        """
        try:
            response = await (
                self._client.table(self.table)
                .select("*")
                .eq("user_id", user_id)
                .maybe_single()
                .execute()
            )
        except Exception as e:
            logger.exception("Error fetching profile", extra={"user_id": user_id})
            raise PersistenceError(f"Failed to fetch profile: {e}") from e

        # maybe_single() yields no response at all when the row is missing
        if response is None or response.data is None:
            return None
        return cast(dict[str, Any], response.data)

    async def upsert(self, record: dict[str, Any]) -> None:
        """Insert or replace the row keyed by ``user_id``.

        Raises:
            PersistenceError: If the write fails.
        """
        try:
            await self._client.table(self.table).upsert(record, on_conflict="user_id").execute()
        except Exception as e:
            logger.exception("Error saving profile", extra={"user_id": record.get("user_id")})
            raise PersistenceError(str(e)) from e

    async def subscribe(
        self,
        user_id: str,
        on_change: Callable[[ProfileChange], None],
    ) -> RealtimeSubscription:
        """Watch the user's row for changes.

        Every event type is delivered; filtering is left to the consumer.

        Raises:
            PersistenceError: If the channel cannot be joined.
        """

        def _callback(payload: dict[str, Any]) -> None:
            on_change(parse_change_payload(payload))

        try:
            channel = self._client.channel(PROFILE_CHANNEL)
            channel.on_postgres_changes(
                "*",
                callback=_callback,
                table=self.table,
                schema="public",
                filter=f"user_id=eq.{user_id}",
            )
            await channel.subscribe()
        except Exception as e:
            logger.exception("Error subscribing to profile changes", extra={"user_id": user_id})
            raise PersistenceError(f"Failed to subscribe to profile changes: {e}") from e

        logger.info("Realtime profile subscription active", extra={"user_id": user_id})
        return RealtimeSubscription(self._client, channel, user_id)


# ---------------------------------------------------------------------------
# Auth provider
# ---------------------------------------------------------------------------


def _user_id_from_session(session: Any) -> str | None:
    user = getattr(session, "user", None) if session is not None else None
    user_id = getattr(user, "id", None)
    return str(user_id) if user_id else None


class SupabaseAuthProvider:
    """Exposes the current user, sign-out and auth change notifications."""

    def __init__(self, client: AsyncClient) -> None:
        self._client = client

    async def current_user_id(self) -> str | None:
        """User id of the current session, or None when signed out."""
        session = await self._client.auth.get_session()
        return _user_id_from_session(session)

    async def sign_out(self) -> None:
        """End the current session."""
        await self._client.auth.sign_out()

    def on_change(self, callback: Callable[[str | None], None]) -> Callable[[], None]:
        """Call ``callback`` with the user id (or None) on every auth change.

        Returns:
            A function that stops the notifications.
        """

        def _listener(event: Any, session: Any) -> None:
            logger.debug("Auth state change: %s", event)
            callback(_user_id_from_session(session))

        subscription = self._client.auth.on_auth_state_change(_listener)
        return subscription.unsubscribe
