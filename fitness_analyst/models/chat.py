"""Chat message model for the coaching assistant."""

from dataclasses import dataclass
from enum import Enum


class ChatRole(str, Enum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    """A single message in the in-memory conversation."""

    role: ChatRole
    content: str

    def to_dict(self) -> dict[str, str]:
        """Convert to the completion endpoint's message shape."""
        return {"role": self.role.value, "content": self.content}
