"""Turns a window of stored turns plus the persona into a model-ready prompt.

Pure functions only: no storage access, no model calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List

from .prompts import RESPOND_INSTRUCTION, STYLE_INSTRUCTION
from .store import Turn

STRUCTURED = "structured"
FLATTENED = "flattened"
MODES = (STRUCTURED, FLATTENED)

DEFAULT_WINDOW = 20


@dataclass(frozen=True)
class PromptMessage:
    role: str  # "user" | "assistant"
    content: str


@dataclass
class PromptPayload:
    mode: str
    messages: List[PromptMessage] = field(default_factory=list)
    text: str = ""

    @property
    def history(self) -> List[PromptMessage]:
        """Structured mode: everything before the final user entry."""
        return self.messages[:-1]

    @property
    def latest(self) -> str:
        if self.mode == FLATTENED:
            return self.text
        return self.messages[-1].content if self.messages else ""


def chronological(turns: Iterable[Turn]) -> List[Turn]:
    return sorted(turns, key=lambda t: t.sort_key)


def render_transcript(turns: Iterable[Turn]) -> str:
    return "\n".join(f"{t.role}: {t.content}" for t in turns)


def final_user_entry(persona: str, new_message: str) -> str:
    return f"System: {persona}\n\n{STYLE_INSTRUCTION}\n\nUser: {new_message}"


def flatten_prompt(persona: str, transcript: str, new_message: str) -> str:
    return (
        f"{persona}\n\n"
        f"{STYLE_INSTRUCTION}\n\n"
        f"Previous conversation:\n{transcript or '(no previous messages)'}\n\n"
        f"user: {new_message}\n\n"
        f"{RESPOND_INSTRUCTION}"
    )


def build_context(
    prior_turns: Iterable[Turn],
    new_message: str,
    persona: str,
    mode: str = STRUCTURED,
    window: int = DEFAULT_WINDOW,
) -> PromptPayload:
    if mode not in MODES:
        raise ValueError(f"mode must be one of {MODES}, got {mode!r}")

    # callers may hand us newest-first turns straight from the store
    turns = chronological(prior_turns)
    turns = turns[-window:] if window > 0 else []

    if mode == FLATTENED:
        return PromptPayload(mode=FLATTENED, text=flatten_prompt(persona, render_transcript(turns), new_message))

    messages = [PromptMessage(role=t.role, content=t.content) for t in turns]
    messages.append(PromptMessage(role="user", content=final_user_entry(persona, new_message)))
    return PromptPayload(mode=STRUCTURED, messages=messages)


def flatten_payload(payload: PromptPayload) -> str:
    """Text rendering of any payload, for backends that only take a single prompt."""
    if payload.mode == FLATTENED:
        return payload.text
    lines = [f"{m.role}: {m.content}" for m in payload.history]
    lines.append(payload.latest)
    return "\n".join(lines)


class ContextAssembler:
    def __init__(self, persona: str, mode: str = STRUCTURED, window: int = DEFAULT_WINDOW) -> None:
        if mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}, got {mode!r}")
        if window < 0:
            raise ValueError("window must be >= 0")
        self.persona = persona
        self.mode = mode
        self.window = window

    def build(self, prior_turns: Iterable[Turn], new_message: str) -> PromptPayload:
        return build_context(prior_turns, new_message, self.persona, mode=self.mode, window=self.window)
