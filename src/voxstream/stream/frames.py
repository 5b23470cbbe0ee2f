"""Frame types and the line-record decoder for the agent response stream.

The agent service answers with an SSE-like body. Each logical record is a
line of the form::

    data: {"type": "token", "content": "Hel"}

where ``type`` is one of ``token``, ``reasoning``, ``agent_event`` or
``error``. Some producers also emit inline ``[EVENT:<type>]...[/EVENT]``
blocks on plain lines; both conventions may appear in the same stream.

``decode_frames()`` always works on the *whole* buffer received so far, so
calling it again on a longer buffer reproduces every earlier frame in the
same order, plus any new ones.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

RECORD_PREFIX = "data:"

_EVENT_BLOCK_RE = re.compile(r"\[EVENT:([^\]]+)\](.*?)\[/EVENT\]")


class AgentEvent(BaseModel):
    """A tool/agent workflow event.

    The field set is open: producers may attach keys beyond the ones named
    here and they are carried through untouched. ``event_type`` is the only
    field guaranteed to be non-empty.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    kind: str = Field(default="agent_event", alias="type")
    event_type: str = "unknown"
    decision: str | None = None
    file_id: str | None = None
    tool: str | None = None
    message: str | None = None
    data: Any = None

    @field_validator("event_type", mode="before")
    @classmethod
    def _default_event_type(cls, value: Any) -> Any:
        if value is None or value == "":
            return "unknown"
        return value

    def to_wire(self) -> dict[str, Any]:
        """Serialize with wire key names, dropping unset optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass
class TokenFrame:
    """A piece of visible answer text."""

    type: Literal["token"] = "token"
    text: str = ""


@dataclass
class ReasoningFrame:
    """A piece of reasoning commentary."""

    type: Literal["reasoning"] = "reasoning"
    text: str = ""


@dataclass
class AgentEventFrame:
    """A structured workflow event."""

    type: Literal["agent_event"] = "agent_event"
    event: AgentEvent = field(default_factory=AgentEvent)


@dataclass
class ErrorFrame:
    """An error reported by the service, or a record we could not make sense of."""

    type: Literal["error"] = "error"
    message: str = "Unknown error"


Frame = TokenFrame | ReasoningFrame | AgentEventFrame | ErrorFrame


def decode_frames(buffer: str) -> list[Frame]:
    """Decode every complete record in ``buffer`` into frames, in order.

    Never raises. Lines that do not parse (including a trailing record cut
    off mid-chunk) are skipped; they decode normally once the rest of the
    record has arrived and the caller decodes the longer buffer.
    """
    frames: list[Frame] = []
    if not buffer:
        return frames

    for line in buffer.split("\n"):
        line = line.rstrip("\r")
        if not line.strip():
            continue

        if line.startswith(RECORD_PREFIX):
            frame = _decode_record(line[len(RECORD_PREFIX) :].strip())
            if frame is not None:
                frames.append(frame)
            continue

        for match in _EVENT_BLOCK_RE.finditer(line):
            frames.append(
                AgentEventFrame(
                    event=AgentEvent(event_type=match.group(1), data=match.group(2))
                )
            )

    return frames


def _decode_record(payload: str) -> Frame | None:
    """Classify one ``data:`` payload. Returns None for lines to skip."""
    try:
        record = json.loads(payload)
    except json.JSONDecodeError:
        # Usually the tail of the buffer, still waiting for the next chunk.
        logger.debug("Skipping unparseable record: %s", payload[:200])
        return None

    if not isinstance(record, dict):
        logger.debug("Skipping non-object record: %s", payload[:200])
        return None

    kind = record.get("type")

    if kind in ("token", "reasoning"):
        content = record.get("content")
        if not isinstance(content, str):
            return ErrorFrame(message=f"malformed {kind} record")
        if kind == "token":
            return TokenFrame(text=content)
        return ReasoningFrame(text=content)

    if kind == "agent_event":
        try:
            event = AgentEvent.model_validate(record)
        except ValidationError as e:
            logger.warning("Invalid agent_event record: %s", e.errors()[:3])
            return ErrorFrame(message="malformed agent_event record")
        return AgentEventFrame(event=event)

    if kind == "error":
        message = record.get("message")
        if not isinstance(message, str) or not message:
            message = "Unknown error"
        return ErrorFrame(message=message)

    # Unknown record types are ignored so newer producers don't break us.
    return None
