"""Tests for voxstream.stream.channels (accumulate, tidy, compose, extract)."""

from __future__ import annotations

import json

from voxstream.stream.channels import (
    Snapshot,
    accumulate,
    compose,
    extract,
    strip_answer_prefix,
    tidy,
)
from voxstream.stream.frames import (
    AgentEvent,
    AgentEventFrame,
    ErrorFrame,
    ReasoningFrame,
    TokenFrame,
    decode_frames,
)


def _event(event_type: str, **fields: object) -> AgentEvent:
    return AgentEvent(event_type=event_type, **fields)


# ---------------------------------------------------------------------------
# accumulate
# ---------------------------------------------------------------------------


class TestAccumulate:
    def test_empty(self) -> None:
        snapshot = accumulate([])
        assert snapshot == Snapshot()

    def test_concatenates_per_channel(self) -> None:
        snapshot = accumulate(
            [
                TokenFrame(text="Hel"),
                ReasoningFrame(text="think "),
                TokenFrame(text="lo"),
                ReasoningFrame(text="more"),
            ]
        )
        assert snapshot.answer == "Hello"
        assert snapshot.reasoning == "think more"
        assert snapshot.events == []

    def test_events_in_arrival_order(self) -> None:
        snapshot = accumulate(
            [
                AgentEventFrame(event=_event("tool_start")),
                TokenFrame(text="x"),
                AgentEventFrame(event=_event("tool_complete")),
            ]
        )
        assert [e.event_type for e in snapshot.events] == ["tool_start", "tool_complete"]

    def test_error_frame_becomes_error_event(self) -> None:
        snapshot = accumulate([TokenFrame(text="a"), ErrorFrame(message="boom")])
        assert snapshot.answer == "a"
        assert len(snapshot.events) == 1
        assert snapshot.events[0].event_type == "error"
        assert snapshot.events[0].message == "boom"

    def test_recomputing_does_not_double_count(self) -> None:
        frames = [TokenFrame(text="a"), TokenFrame(text="b")]
        assert accumulate(frames) == accumulate(frames)
        assert accumulate(frames).answer == "ab"


# ---------------------------------------------------------------------------
# tidy / strip_answer_prefix
# ---------------------------------------------------------------------------


class TestTidy:
    def test_strips_answer_prefix(self) -> None:
        assert strip_answer_prefix("Answer: 42") == "42"

    def test_strips_spaced_prefixes(self) -> None:
        assert strip_answer_prefix("AI : hi") == "hi"
        assert strip_answer_prefix("Assistant :  hi") == "hi"

    def test_only_one_prefix_removed(self) -> None:
        assert strip_answer_prefix("Answer: Answer: 42") == "Answer: 42"

    def test_prefix_must_be_leading(self) -> None:
        assert strip_answer_prefix("The Answer: 42") == "The Answer: 42"

    def test_tidy_trims_channels(self) -> None:
        snapshot = tidy(Snapshot(answer="  Answer: 42\n", reasoning="\n why \n"))
        assert snapshot.answer == "42"
        assert snapshot.reasoning == "why"

    def test_tidy_keeps_events(self) -> None:
        events = [_event("tool_complete")]
        assert tidy(Snapshot(answer="x", events=events)).events == events


# ---------------------------------------------------------------------------
# compose
# ---------------------------------------------------------------------------


class TestCompose:
    def test_answer_only(self) -> None:
        assert compose(Snapshot(answer="Hello")) == "Hello"

    def test_reasoning_sidecar(self) -> None:
        assert compose(Snapshot(answer="a", reasoning="r")) == "a<!--reasoning:r-->"

    def test_events_sidecar(self) -> None:
        composed = compose(Snapshot(answer="a", events=[_event("tool_complete")]))
        assert composed.startswith("a<!--agent_events:")
        assert composed.endswith("-->")
        payload = composed[len("a<!--agent_events:") : -len("-->")]
        assert json.loads(payload) == [
            {"type": "agent_event", "event_type": "tool_complete"}
        ]

    def test_sidecar_order(self) -> None:
        composed = compose(
            Snapshot(answer="a", reasoning="r", events=[_event("e")])
        )
        assert composed.index("<!--reasoning:") < composed.index("<!--agent_events:")

    def test_arrow_in_event_payload_escaped(self) -> None:
        composed = compose(Snapshot(answer="a", events=[_event("e", message="x --> y")]))
        # Exactly one closing marker: the one ending the sidecar.
        assert composed.count("-->") == 1

    def test_empty_snapshot(self) -> None:
        assert compose(Snapshot()) == ""


# ---------------------------------------------------------------------------
# extract
# ---------------------------------------------------------------------------


class TestExtract:
    def test_no_sidecars(self) -> None:
        extracted = extract("plain answer")
        assert extracted.clean_text == "plain answer"
        assert extracted.reasoning is None
        assert extracted.events is None

    def test_idempotent(self) -> None:
        composed = compose(Snapshot(answer="a", reasoning="r", events=[_event("e")]))
        once = extract(composed)
        twice = extract(once.clean_text)
        assert twice.clean_text == once.clean_text == "a"
        assert twice.reasoning is None

    def test_reasoning_only(self) -> None:
        extracted = extract("a<!--reasoning:multi\nline-->")
        assert extracted.clean_text == "a"
        assert extracted.reasoning == "multi\nline"

    def test_invalid_events_json_dropped_but_marker_removed(self) -> None:
        extracted = extract("a<!--agent_events:[{not json-->")
        assert extracted.clean_text == "a"
        assert extracted.events is None

    def test_non_list_events_payload(self) -> None:
        extracted = extract('a<!--agent_events:{"event_type":"x"}-->')
        assert extracted.clean_text == "a"
        assert extracted.events == []

    def test_invalid_items_dropped(self) -> None:
        extracted = extract(
            'a<!--agent_events:[{"event_type":"ok"},{"event_type":"bad","tool":[1]}]-->'
        )
        assert [e.event_type for e in extracted.events or []] == ["ok"]

    def test_partial_sidecar_left_in_text(self) -> None:
        text = "a<!--reasoning:still stream"
        assert extract(text).clean_text == text

    def test_to_snapshot(self) -> None:
        snapshot = extract("a<!--reasoning:r-->").to_snapshot()
        assert snapshot == Snapshot(answer="a", reasoning="r", events=[])


# ---------------------------------------------------------------------------
# Round trip
# ---------------------------------------------------------------------------


class TestRoundTrip:
    def test_all_channels(self) -> None:
        snapshot = Snapshot(
            answer="The answer is 42.",
            reasoning="because x=6,y=7",
            events=[
                _event("tool_start", tool="search"),
                _event("decision", decision="use_notes", file_id="f1"),
            ],
        )
        assert extract(compose(snapshot)).to_snapshot() == snapshot

    def test_arrow_in_reasoning_and_events(self) -> None:
        snapshot = Snapshot(
            answer="a",
            reasoning="step 1 --> step 2",
            events=[_event("e", message="left --> right")],
        )
        assert extract(compose(snapshot)).to_snapshot() == snapshot

    def test_arrow_in_reasoning_without_events(self) -> None:
        snapshot = Snapshot(answer="a", reasoning="x --> y")
        assert extract(compose(snapshot)).to_snapshot() == snapshot

    def test_unicode(self) -> None:
        snapshot = Snapshot(answer="héllo ✓", reasoning="因为", events=[_event("é")])
        assert extract(compose(snapshot)).to_snapshot() == snapshot


# ---------------------------------------------------------------------------
# End to end through the decoder
# ---------------------------------------------------------------------------


class TestPipeline:
    def test_plain_streaming(self) -> None:
        buffer = (
            'data: {"type":"token","content":"Hel"}\n'
            'data: {"type":"token","content":"lo"}\n'
        )
        assert compose(tidy(accumulate(decode_frames(buffer)))) == "Hello"

    def test_mixed_channels(self) -> None:
        buffer = (
            'data: {"type":"token","content":"Answer: 42"}\n'
            'data: {"type":"reasoning","content":"because x=6,y=7"}\n'
            'data: {"type":"agent_event","event_type":"tool_complete"}\n'
        )
        composed = compose(tidy(accumulate(decode_frames(buffer))))
        assert composed.startswith("42<!--reasoning:because x=6,y=7--><!--agent_events:[")
        extracted = extract(composed)
        assert extracted.clean_text == "42"
        assert [e.event_type for e in extracted.events or []] == ["tool_complete"]

    def test_compose_without_tidy_keeps_prefix(self) -> None:
        buffer = 'data: {"type":"token","content":"Answer: 42"}\n'
        assert compose(accumulate(decode_frames(buffer))) == "Answer: 42"
