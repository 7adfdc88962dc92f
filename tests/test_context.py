from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from mentor.context import (
    FLATTENED,
    STRUCTURED,
    ContextAssembler,
    build_context,
    flatten_payload,
)
from mentor.prompts import RESPOND_INSTRUCTION, STYLE_INSTRUCTION
from mentor.store import Turn

PERSONA = "You are Dr. Mentor."
T0 = datetime(2026, 5, 1, 8, 0, tzinfo=timezone.utc)


def make_turns(n):
    return [
        Turn(
            id=i + 1,
            user_id="u1",
            role="user" if i % 2 == 0 else "assistant",
            content=f"turn {i}",
            timestamp=T0 + timedelta(minutes=i),
        )
        for i in range(n)
    ]


def test_structured_mirrors_turns_then_new_message():
    payload = build_context(make_turns(3), "Studied 6 hours today", PERSONA, mode=STRUCTURED)

    assert payload.mode == STRUCTURED
    assert [(m.role, m.content) for m in payload.history] == [
        ("user", "turn 0"),
        ("assistant", "turn 1"),
        ("user", "turn 2"),
    ]
    last = payload.messages[-1]
    assert last.role == "user"
    assert last.content.startswith(f"System: {PERSONA}")
    assert last.content.endswith("User: Studied 6 hours today")


def test_reverse_input_is_presented_oldest_first():
    turns = make_turns(4)
    payload = build_context(list(reversed(turns)), "next", PERSONA)
    assert [m.content for m in payload.history] == ["turn 0", "turn 1", "turn 2", "turn 3"]


def test_same_timestamp_ties_break_on_id():
    turns = [
        Turn(id=2, user_id="u1", role="assistant", content="second", timestamp=T0),
        Turn(id=1, user_id="u1", role="user", content="first", timestamp=T0),
    ]
    payload = build_context(turns, "next", PERSONA)
    assert [m.content for m in payload.history] == ["first", "second"]


def test_window_keeps_most_recent_turns():
    payload = build_context(make_turns(8), "next", PERSONA, window=3)
    assert [m.content for m in payload.history] == ["turn 5", "turn 6", "turn 7"]


def test_zero_window_sends_only_new_message():
    payload = build_context(make_turns(4), "next", PERSONA, window=0)
    assert payload.history == []
    assert len(payload.messages) == 1


def test_flattened_transcript_layout():
    payload = build_context(list(reversed(make_turns(2))), "Studied 6 hours today", PERSONA, mode=FLATTENED)

    assert payload.mode == FLATTENED
    assert payload.messages == []
    text = payload.text
    assert text.startswith(PERSONA)
    assert STYLE_INSTRUCTION in text
    assert "user: turn 0\nassistant: turn 1" in text
    assert text.index("assistant: turn 1") < text.index("user: Studied 6 hours today")
    assert text.rstrip().endswith(RESPOND_INSTRUCTION)


def test_flattened_without_history():
    payload = build_context([], "hello", PERSONA, mode=FLATTENED)
    assert "(no previous messages)" in payload.text


def test_unknown_mode_rejected():
    with pytest.raises(ValueError):
        build_context([], "hello", PERSONA, mode="chatml")


def test_build_context_does_not_mutate_input():
    turns = list(reversed(make_turns(3)))
    snapshot = list(turns)
    build_context(turns, "next", PERSONA, window=2)
    assert turns == snapshot


def test_flatten_payload_for_structured():
    payload = build_context(make_turns(2), "next", PERSONA)
    text = flatten_payload(payload)
    lines = text.split("\n")
    assert lines[0] == "user: turn 0"
    assert lines[1] == "assistant: turn 1"
    assert text.endswith("User: next")


def test_assembler_binds_configuration():
    assembler = ContextAssembler(PERSONA, mode=FLATTENED, window=1)
    payload = assembler.build(make_turns(3), "next")
    assert "user: turn 2" in payload.text
    assert "turn 1" not in payload.text

    with pytest.raises(ValueError):
        ContextAssembler(PERSONA, window=-1)
