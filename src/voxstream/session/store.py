"""Session persistence boundary and a local JSONL-backed implementation."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import aiofiles

from voxstream.session.models import ChatMessage, ChatSession

logger = logging.getLogger(__name__)


@runtime_checkable
class SessionStore(Protocol):
    """Persistence collaborator used by the session controller."""

    async def create_session(
        self, user_id: str, space_id: str, title: str
    ) -> ChatSession: ...

    async def list_sessions(
        self, user_id: str, space_id: str | None = None
    ) -> list[ChatSession]:
        """Newest first."""
        ...

    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        """Oldest first."""
        ...

    async def save_message(self, message: ChatMessage) -> None: ...


class JsonlSessionStore:
    """Sessions and messages as two append-only JSONL files in one directory."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)
        self.sessions_path = self.directory / "sessions.jsonl"
        self.messages_path = self.directory / "messages.jsonl"

    async def create_session(
        self, user_id: str, space_id: str, title: str
    ) -> ChatSession:
        session = ChatSession(user_id=user_id, space_id=space_id, title=title)
        await self._append(self.sessions_path, session.to_dict())
        logger.debug("Created session %s", session.id)
        return session

    async def list_sessions(
        self, user_id: str, space_id: str | None = None
    ) -> list[ChatSession]:
        sessions = [
            ChatSession.from_dict(d)
            for d in await self._read(self.sessions_path)
            if d.get("user_id") == user_id
            and (space_id is None or d.get("space_id") == space_id)
        ]
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions

    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        messages = [
            ChatMessage.from_dict(d)
            for d in await self._read(self.messages_path)
            if d.get("session_id") == session_id
        ]
        messages.sort(key=lambda m: m.created_at)
        return messages

    async def save_message(self, message: ChatMessage) -> None:
        await self._append(self.messages_path, message.to_dict())

    async def _append(self, path: Path, data: dict[str, Any]) -> None:
        async with aiofiles.open(path, "a", encoding="utf-8") as f:
            await f.write(json.dumps(data, ensure_ascii=False) + "\n")

    async def _read(self, path: Path) -> list[dict[str, Any]]:
        if not path.exists():
            return []

        records: list[dict[str, Any]] = []
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            async for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed JSONL line in %s", path)
                    continue
                if "id" in data:
                    records.append(data)
        return records
