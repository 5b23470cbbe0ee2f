"""Channel folding and the sidecar multiplexing grammar.

The callback boundary to the rest of the application carries a single
string, so the reasoning and agent-event channels ride along as HTML-comment
sidecars appended to the answer text::

    <answer><!--reasoning:<text>--><!--agent_events:<JSON array>-->

Each sidecar is optional, appears at most once, and always in that order.
``compose()`` writes the grammar and ``extract()`` reads it back.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from voxstream.stream.frames import (
    AgentEvent,
    AgentEventFrame,
    ErrorFrame,
    Frame,
    ReasoningFrame,
    TokenFrame,
)

logger = logging.getLogger(__name__)

REASONING_OPEN = "<!--reasoning:"
EVENTS_OPEN = "<!--agent_events:"
MARKER_CLOSE = "-->"

# Speaker labels some models prepend to their answer.
ANSWER_PREFIXES = (
    "Answer:",
    "Answer :",
    "AI:",
    "AI :",
    "Assistant:",
    "Assistant :",
)

# Reasoning ends right before the events sidecar or at the end of the text.
_REASONING_RE = re.compile(
    r"<!--reasoning:(.*?)-->(?=<!--agent_events:|\Z)", re.DOTALL
)
_EVENTS_RE = re.compile(r"<!--agent_events:(.*?)-->\Z", re.DOTALL)


@dataclass
class Snapshot:
    """The three channels of a response at one point in time."""

    answer: str = ""
    reasoning: str = ""
    events: list[AgentEvent] = field(default_factory=list)


@dataclass
class Extracted:
    """Result of pulling the sidecars back out of a composed string."""

    clean_text: str
    reasoning: str | None = None
    events: list[AgentEvent] | None = None

    def to_snapshot(self) -> Snapshot:
        return Snapshot(
            answer=self.clean_text,
            reasoning=self.reasoning or "",
            events=list(self.events or []),
        )


def accumulate(frames: list[Frame]) -> Snapshot:
    """Fold the full frame list into a fresh snapshot.

    Always recomputed from scratch: the decoder re-parses the whole buffer
    on every chunk, so an incremental append would double-count.
    """
    answer: list[str] = []
    reasoning: list[str] = []
    events: list[AgentEvent] = []

    for frame in frames:
        if isinstance(frame, TokenFrame):
            answer.append(frame.text)
        elif isinstance(frame, ReasoningFrame):
            reasoning.append(frame.text)
        elif isinstance(frame, AgentEventFrame):
            events.append(frame.event)
        elif isinstance(frame, ErrorFrame):
            events.append(AgentEvent(event_type="error", message=frame.message))

    return Snapshot(answer="".join(answer), reasoning="".join(reasoning), events=events)


def strip_answer_prefix(text: str) -> str:
    """Remove at most one leading speaker label such as ``Answer:``."""
    for prefix in ANSWER_PREFIXES:
        if text.startswith(prefix):
            return text[len(prefix) :].strip()
    return text


def tidy(snapshot: Snapshot) -> Snapshot:
    """Display post-process: trim both text channels and drop a speaker label."""
    return Snapshot(
        answer=strip_answer_prefix(snapshot.answer.strip()),
        reasoning=snapshot.reasoning.strip(),
        events=list(snapshot.events),
    )


def compose(snapshot: Snapshot) -> str:
    """Serialize a snapshot into a single composed string."""
    text = snapshot.answer
    if snapshot.reasoning:
        text += REASONING_OPEN + snapshot.reasoning + MARKER_CLOSE
    if snapshot.events:
        text += EVENTS_OPEN + _dump_events(snapshot.events) + MARKER_CLOSE
    return text


def extract(text: str) -> Extracted:
    """Split a (possibly partial) composed string back into its channels.

    Safe on text with no sidecars, and idempotent: extracting from
    already-clean text returns it unchanged. An events payload that is not
    valid JSON is dropped (``events`` is None) but its marker is still
    removed from the text.
    """
    reasoning: str | None = None
    events: list[AgentEvent] | None = None

    match = _REASONING_RE.search(text)
    if match:
        reasoning = match.group(1)
        text = text[: match.start()] + text[match.end() :]

    match = _EVENTS_RE.search(text)
    if match:
        text = text[: match.start()] + text[match.end() :]
        events = _load_events(match.group(1))

    return Extracted(clean_text=text, reasoning=reasoning, events=events)


def _dump_events(events: list[AgentEvent]) -> str:
    payload = json.dumps([e.to_wire() for e in events], ensure_ascii=False)
    # "-->" only occurs inside JSON strings, where \u003e decodes back to ">".
    return payload.replace(MARKER_CLOSE, "--\\u003e")


def _load_events(payload: str) -> list[AgentEvent] | None:
    try:
        raw: Any = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse agent events sidecar: %s", e)
        return None

    if not isinstance(raw, list):
        logger.warning("Agent events sidecar is not a list: %s", type(raw).__name__)
        return []

    events: list[AgentEvent] = []
    for item in raw:
        try:
            events.append(AgentEvent.model_validate(item))
        except ValidationError:
            logger.warning("Dropping invalid agent event: %s", str(item)[:200])
    return events
