"""Single user-facing status slot.

Errors stay until replaced; success messages expire after a fixed delay.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_SUCCESS_TTL_SECONDS = 5.0


class StatusKind(str, Enum):
    """Kind of message shown to the user."""

    ERROR = "error"
    SUCCESS = "success"


@dataclass(frozen=True)
class StatusMessage:
    """A message occupying the status slot."""

    kind: StatusKind
    text: str


class StatusSlot:
    """Holds at most one status message.

    Args:
        success_ttl: Seconds a success message stays visible.
    """

    def __init__(self, success_ttl: float = DEFAULT_SUCCESS_TTL_SECONDS) -> None:
        self.success_ttl = success_ttl
        self._current: StatusMessage | None = None
        self._expiry: asyncio.TimerHandle | None = None

    @property
    def current(self) -> StatusMessage | None:
        """The visible message, if any."""
        return self._current

    @property
    def error(self) -> str | None:
        """Text of the visible error, if the slot holds one."""
        if self._current and self._current.kind == StatusKind.ERROR:
            return self._current.text
        return None

    @property
    def success(self) -> str | None:
        """Text of the visible success message, if the slot holds one."""
        if self._current and self._current.kind == StatusKind.SUCCESS:
            return self._current.text
        return None

    def set_error(self, text: str) -> None:
        """Show an error until the next message or clear."""
        self._cancel_expiry()
        self._current = StatusMessage(StatusKind.ERROR, text)
        logger.info("Status error: %s", text)

    def set_success(self, text: str) -> None:
        """Show a success message and schedule its expiry."""
        self._cancel_expiry()
        message = StatusMessage(StatusKind.SUCCESS, text)
        self._current = message
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to run the timer on; the message stays until replaced.
            return
        self._expiry = loop.call_later(self.success_ttl, self._expire, message)

    def clear(self) -> None:
        """Empty the slot."""
        self._cancel_expiry()
        self._current = None

    def _expire(self, message: StatusMessage) -> None:
        self._expiry = None
        if self._current is message:
            self._current = None

    def _cancel_expiry(self) -> None:
        if self._expiry is not None:
            self._expiry.cancel()
            self._expiry = None
