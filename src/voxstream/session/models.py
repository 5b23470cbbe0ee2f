"""Chat session and message data types."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from voxstream.stream.channels import Extracted, extract


def _gen_id() -> str:
    return str(uuid.uuid4())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def session_title(first_message: str | None, length: int = 30) -> str:
    """Title for a new session: the start of its first message."""
    if not first_message:
        return "New Chat"
    title = first_message[:length]
    if len(first_message) > length:
        title += "..."
    return title


@dataclass
class ChatSession:
    """A conversation thread inside a space."""

    user_id: str
    space_id: str
    title: str = "New Chat"
    id: str = field(default_factory=_gen_id)
    created_at: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "space_id": self.space_id,
            "title": self.title,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatSession:
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            space_id=data.get("space_id", ""),
            title=data.get("title", "New Chat"),
            created_at=data.get("created_at", ""),
        )


@dataclass
class ChatMessage:
    """One turn of a conversation.

    Assistant content is stored in composed form (answer plus sidecars).
    The in-memory copy has its sidecars stripped at most once, by
    ``strip_sidecars()``, when it is loaded for display.
    """

    session_id: str
    space_id: str
    user_id: str
    content: str
    is_user: bool
    id: str = field(default_factory=_gen_id)
    created_at: str = field(default_factory=_now)
    sidecars_stripped: bool = field(default=False, compare=False)

    def strip_sidecars(self) -> Extracted | None:
        """Remove reasoning/events markers from ``content``.

        Returns what was extracted, or None if the message was already
        stripped.
        """
        if self.sidecars_stripped:
            return None
        extracted = extract(self.content)
        self.content = extracted.clean_text
        self.sidecars_stripped = True
        return extracted

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "space_id": self.space_id,
            "user_id": self.user_id,
            "content": self.content,
            "is_user": self.is_user,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        return cls(
            id=data["id"],
            session_id=data["session_id"],
            space_id=data.get("space_id", ""),
            user_id=data.get("user_id", ""),
            content=data.get("content", ""),
            is_user=bool(data.get("is_user", False)),
            created_at=data.get("created_at", ""),
        )


@dataclass
class ReasoningData:
    """Reasoning recovered from an assistant message; hidden until toggled."""

    content: str
    visible: bool = False
