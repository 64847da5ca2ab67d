"""Profile synchronization controller.

Owns the canonical profile and plan for the signed-in user and folds
every mutation source into it: the initial load, local edits, local
saves and pushes from the store.  Lifecycle::

    UNAUTHENTICATED --sign in--> LOADING --fetch done--> SYNCED
    SYNCED --save / push--> SYNCED
    any --sign out--> UNAUTHENTICATED

Saves are unconditional upserts keyed by user id (last writer wins).  A
push that lands after a local save replaces local fields even if the
user has edited them since; there is no revision check.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol

from pydantic import ValidationError as PydanticValidationError

from fitness_analyst.core.exceptions import (
    FitnessAnalystError,
    PersistenceError,
    ValidationError,
    sanitize_error,
)
from fitness_analyst.db.supabase import ProfileChange
from fitness_analyst.models.profile import (
    ActivityLevel,
    Equipment,
    FitnessGoal,
    Gender,
    Plan,
    Profile,
    format_number,
    parse_positive_number,
)
from fitness_analyst.services.plan_generation import PlanGenerator
from fitness_analyst.services.status import StatusSlot

logger = logging.getLogger(__name__)

LOAD_FAILED_MESSAGE = "Failed to load profile."
LOGIN_REQUIRED_MESSAGE = "You must be logged in to save your profile."
SAVE_SUCCESS_MESSAGE = "Profile saved successfully!"
PLAN_SUCCESS_MESSAGE = "Fitness plan generated and saved successfully!"


class SyncState(str, Enum):
    """Lifecycle of the controller."""

    UNAUTHENTICATED = "unauthenticated"
    LOADING = "loading"
    SYNCED = "synced"


class Subscription(Protocol):
    """An open push subscription."""

    async def unsubscribe(self) -> None: ...


class ProfileStore(Protocol):
    """Remote profile storage keyed by user id."""

    async def fetch(self, user_id: str) -> dict[str, Any] | None: ...

    async def upsert(self, record: dict[str, Any]) -> None: ...

    async def subscribe(
        self, user_id: str, on_change: Callable[[ProfileChange], None]
    ) -> Subscription: ...


class AuthProvider(Protocol):
    """Session source and sign-out."""

    async def current_user_id(self) -> str | None: ...

    async def sign_out(self) -> None: ...

    def on_change(self, callback: Callable[[str | None], None]) -> Callable[[], None]: ...


# ---------------------------------------------------------------------------
# Store boundary: editable text <-> stored numbers
# ---------------------------------------------------------------------------

# Stored column -> profile field for numeric values
_NUMERIC_COLUMNS = {
    "age": "age",
    "height": "height",
    "currentweight": "current_weight",
    "targetweight": "target_weight",
}

# Stored column -> (profile field, enum type)
_ENUM_COLUMNS: dict[str, tuple[str, type[Enum]]] = {
    "gender": ("gender", Gender),
    "fitnessgoal": ("fitness_goal", FitnessGoal),
    "activitylevel": ("activity_level", ActivityLevel),
    "equipment": ("equipment", Equipment),
}


def _to_stored_number(text: str, *, integer: bool = False) -> float | int | None:
    number = parse_positive_number(text)
    if number is None:
        return None
    return round(number) if integer else number


def profile_to_record(
    profile: Profile, user_id: str, plan: Plan | None = None
) -> dict[str, Any]:
    """Build the store row for ``profile``.

    Numeric text becomes a positive number or None; NaN, zero and
    unparseable text are never written.
    """
    return {
        "user_id": user_id,
        "name": profile.name,
        "age": _to_stored_number(profile.age, integer=True),
        "gender": profile.gender.value,
        "height": _to_stored_number(profile.height),
        "currentweight": _to_stored_number(profile.current_weight),
        "targetweight": _to_stored_number(profile.target_weight),
        "fitnessgoal": profile.fitness_goal.value,
        "activitylevel": profile.activity_level.value,
        "equipment": profile.equipment.value,
        "last_plan": plan.to_record() if plan is not None else None,
    }


def merge_record(base: Profile, record: dict[str, Any]) -> Profile:
    """Overlay the columns present in ``record`` onto ``base``.

    Stored numbers become editable text; enum columns holding an unknown
    value keep the base value.
    """
    updates: dict[str, Any] = {}

    if "name" in record:
        updates["name"] = str(record["name"] or "")

    for column, field_name in _NUMERIC_COLUMNS.items():
        if column in record:
            updates[field_name] = format_number(record[column])

    for column, (field_name, enum_type) in _ENUM_COLUMNS.items():
        if record.get(column) is None:
            continue
        try:
            updates[field_name] = enum_type(record[column])
        except ValueError:
            logger.warning(
                "Ignoring unknown %s value from store: %r", column, record[column]
            )

    return base.model_copy(update=updates)


def record_to_profile(record: dict[str, Any]) -> Profile:
    """Profile for a freshly loaded row, starting from defaults."""
    return merge_record(Profile(), record)


def plan_from_record(record: dict[str, Any]) -> Plan | None:
    """The row's ``last_plan``, or None when absent or malformed."""
    raw = record.get("last_plan")
    if not raw:
        return None
    try:
        if isinstance(raw, str):
            return Plan.model_validate_json(raw)
        return Plan.model_validate(raw)
    except PydanticValidationError:
        logger.warning("Ignoring malformed last_plan for user %s", record.get("user_id"))
        return None


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class ProfileSyncController:
    """Canonical profile/plan state for one client session.

    Args:
        store: Remote profile store.
        plan_generator: Pipeline used by ``generate_plan``.
        status: User-facing status slot.
    """

    def __init__(
        self,
        store: ProfileStore,
        plan_generator: PlanGenerator | None = None,
        status: StatusSlot | None = None,
    ) -> None:
        self._store = store
        self._plan_generator = plan_generator
        self.status = status or StatusSlot()

        self.state = SyncState.UNAUTHENTICATED
        self.user_id: str | None = None
        self.profile = Profile()
        self.plan: Plan | None = None

        self._subscription: Subscription | None = None
        self._pending_changes: list[ProfileChange] = []
        self._auth: AuthProvider | None = None
        self._stop_auth: Callable[[], None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def bmi(self) -> float:
        """BMI of the current profile, recomputed on every read."""
        return self.profile.bmi

    # -- Auth ------------------------------------------------------------------

    async def attach(self, auth: AuthProvider) -> None:
        """Follow ``auth``: load the current session and react to changes."""
        self._auth = auth
        self._stop_auth = auth.on_change(self._on_auth_change)
        user_id = await auth.current_user_id()
        if user_id:
            await self.handle_auth_change(user_id)

    def _on_auth_change(self, user_id: str | None) -> None:
        task = asyncio.get_running_loop().create_task(self.handle_auth_change(user_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def handle_auth_change(self, user_id: str | None) -> None:
        """Apply an auth notification carrying the new user id (or None)."""
        if user_id is None:
            if self.state != SyncState.UNAUTHENTICATED:
                await self.reset()
            return
        if user_id == self.user_id:
            # Token refreshes re-announce the same user; keep local edits.
            logger.debug("Auth change for current user %s ignored", user_id)
            return
        await self.sign_in(user_id)

    async def sign_in(self, user_id: str) -> None:
        """Start a session for ``user_id``: subscribe to pushes and load."""
        if self.user_id is not None and self.user_id != user_id:
            await self.reset()

        self.user_id = user_id
        self.state = SyncState.LOADING
        self._pending_changes.clear()
        logger.info("Loading profile", extra={"user_id": user_id})

        await self._resubscribe(user_id)
        await self._load(user_id)

    async def sign_out(self) -> None:
        """Sign out with the auth provider and reset local state."""
        if self._auth is not None:
            try:
                await self._auth.sign_out()
            except Exception:
                logger.exception("Sign-out failed", extra={"user_id": self.user_id})
        await self.reset()

    async def reset(self) -> None:
        """Drop the session: defaults, no plan, no subscription."""
        await self._release_subscription()
        previous = self.user_id
        self.user_id = None
        self.state = SyncState.UNAUTHENTICATED
        self.profile = Profile()
        self.plan = None
        self._pending_changes.clear()
        self.status.clear()
        if previous is not None:
            logger.info("Session reset", extra={"user_id": previous})

    async def close(self) -> None:
        """Stop following auth changes and release the push subscription."""
        if self._stop_auth is not None:
            self._stop_auth()
            self._stop_auth = None
        await self._release_subscription()

    # -- Load ------------------------------------------------------------------

    async def _load(self, user_id: str) -> None:
        try:
            record = await self._store.fetch(user_id)
        except PersistenceError as e:
            if self.user_id != user_id:
                return
            logger.warning("Profile load failed: %s", e.message, extra={"user_id": user_id})
            self.status.set_error(LOAD_FAILED_MESSAGE)
            record = None

        if self.user_id != user_id:
            logger.info("Discarding profile load for previous user %s", user_id)
            return

        if record is not None:
            self.profile = record_to_profile(record)
            plan = plan_from_record(record)
            if plan is not None:
                self.plan = plan
        self.state = SyncState.SYNCED
        logger.info(
            "Profile synced",
            extra={"user_id": user_id, "found": record is not None},
        )

        pending, self._pending_changes = self._pending_changes, []
        for change in pending:
            self.apply_change(change)

    # -- Local mutations -------------------------------------------------------

    def edit(self, field: str, value: Any) -> Profile:
        """Replace one profile field with a local (unsaved) value."""
        self.profile = self.profile.with_field(field, value)
        return self.profile

    def replace_profile(self, profile: Profile) -> None:
        """Replace the whole profile with a local (unsaved) one."""
        self.profile = profile

    async def save(self, profile: Profile | None = None) -> bool:
        """Upsert the profile (and current plan) for the signed-in user.

        Args:
            profile: Form state to adopt before saving; defaults to the
                current profile.

        Returns:
            True when the store accepted the write.
        """
        if profile is not None:
            self.profile = profile
        if self.user_id is None:
            self.status.set_error(LOGIN_REQUIRED_MESSAGE)
            return False
        if await self._persist(self.user_id, self.profile, self.plan):
            self.status.set_success(SAVE_SUCCESS_MESSAGE)
            return True
        return False

    async def _persist(self, user_id: str, profile: Profile, plan: Plan | None) -> bool:
        record = profile_to_record(profile, user_id, plan)
        logger.info("Saving profile", extra={"user_id": user_id})
        try:
            await self._store.upsert(record)
        except PersistenceError as e:
            self.status.set_error(f"Failed to save profile: {e.message}")
            return False
        except Exception as e:
            logger.exception("Unexpected profile save failure", extra={"user_id": user_id})
            self.status.set_error(sanitize_error(e))
            return False

        # Merge back only if nothing changed while the write was in flight.
        if self.user_id == user_id and self.profile is profile:
            self.profile = merge_record(profile, record)
        return True

    # -- Plan ------------------------------------------------------------------

    async def generate_plan(self) -> Plan | None:
        """Generate a plan for the current profile and persist it.

        The previous plan is cleared first.  On success the new plan and
        the current profile are saved together in one upsert.

        Returns:
            The new plan, or None if generation failed.
        """
        if self._plan_generator is None:
            raise RuntimeError("No plan generator configured")

        self.status.clear()
        self.plan = None
        user_id = self.user_id
        snapshot = self.profile

        try:
            plan = await self._plan_generator.generate(snapshot, snapshot.bmi)
        except ValidationError as e:
            self.status.set_error(e.message)
            return None
        except FitnessAnalystError as e:
            logger.warning("Plan generation failed: %s", e.message, extra={"code": e.code})
            self.status.set_error(f"Failed to generate plan: {e.message}. Please try again.")
            return None
        except Exception as e:
            logger.exception("Unexpected plan generation failure")
            self.status.set_error(sanitize_error(e))
            return None

        if self.user_id != user_id:
            logger.info("Discarding plan generated for previous user %s", user_id)
            return None

        self.plan = plan
        if user_id is None:
            logger.info("Plan generated without a session; not persisted")
            return plan

        if await self._persist(user_id, self.profile, plan):
            self.status.set_success(PLAN_SUCCESS_MESSAGE)
        return plan

    # -- Push ------------------------------------------------------------------

    def apply_change(self, change: ProfileChange) -> None:
        """Merge a pushed change into the canonical state.

        Only UPDATE events are applied, and only for the current user.
        Changes arriving while the initial load is in flight are replayed
        once it completes.
        """
        if change.event_type != "UPDATE":
            logger.debug("Ignoring %s push event", change.event_type)
            return
        if self.user_id is None:
            return
        record_user = change.new.get("user_id")
        if record_user is not None and str(record_user) != self.user_id:
            logger.debug("Ignoring push for another user %s", record_user)
            return
        if self.state == SyncState.LOADING:
            self._pending_changes.append(change)
            return

        logger.debug("Applying pushed profile update", extra={"user_id": self.user_id})
        self.profile = merge_record(self.profile, change.new)
        plan = plan_from_record(change.new)
        if plan is not None:
            self.plan = plan

    async def _resubscribe(self, user_id: str) -> None:
        await self._release_subscription()

        def on_change(change: ProfileChange) -> None:
            if self.user_id != user_id:
                logger.debug("Dropping push for stale subscription %s", user_id)
                return
            self.apply_change(change)

        try:
            subscription = await self._store.subscribe(user_id, on_change)
        except PersistenceError as e:
            logger.warning("Push subscription unavailable: %s", e.message)
            return

        # The session may have ended or moved on while the channel was joining.
        if self.user_id != user_id or self._subscription is not None:
            logger.info("Releasing late push subscription for %s", user_id)
            await subscription.unsubscribe()
            return
        self._subscription = subscription

    async def _release_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.unsubscribe()
