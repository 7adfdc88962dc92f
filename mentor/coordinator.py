"""One chat exchange, from the inbound message to the stored reply.

States: Received -> UserTurnPersisted -> ContextBuilt -> ModelInvoked
-> AssistantTurnPersisted -> Completed, or Failed(stage). Any failure stops
the exchange. A model failure leaves the inbound user turn in the history
without a reply; that orphan is kept, not cleaned up. If the reply cannot be
stored, the caller gets StoreUnavailable and never sees the generated text.
Nothing is retried.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .context import ContextAssembler
from .errors import InvalidRequest, MentorError, ModelUnavailable
from .llm import LanguageModel
from .store import REVERSE_CHRONOLOGICAL, ConversationStore

logger = logging.getLogger(__name__)


class TurnState(str, enum.Enum):
    RECEIVED = "received"
    USER_TURN_PERSISTED = "user-turn-persisted"
    CONTEXT_BUILT = "context-built"
    MODEL_INVOKED = "model-invoked"
    ASSISTANT_TURN_PERSISTED = "assistant-turn-persisted"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureStage(str, enum.Enum):
    VALIDATION = "validation"
    PERSIST_INBOUND = "persist-inbound"
    CONTEXT = "context"
    MODEL_INVOCATION = "model-invocation"
    PERSIST_OUTBOUND = "persist-outbound"


@dataclass
class ChatOutcome:
    user_id: str
    reply: str
    user_turn_id: int
    assistant_turn_id: int
    trace: List[TurnState] = field(default_factory=list)

    @property
    def state(self) -> TurnState:
        return self.trace[-1]


class TurnCoordinator:
    def __init__(self, store: ConversationStore, assembler: ContextAssembler, model: LanguageModel) -> None:
        self.store = store
        self.assembler = assembler
        self.model = model

    def handle_chat_turn(self, user_id: Optional[str], message: Optional[str]) -> ChatOutcome:
        trace = [TurnState.RECEIVED]

        def fail(stage: FailureStage, error: MentorError) -> MentorError:
            trace.append(TurnState.FAILED)
            logger.warning("chat turn failed user_id=%s stage=%s error=%s", user_id, stage.value, error)
            error.stage = stage.value
            error.trace = list(trace)
            return error

        if not user_id or not str(user_id).strip():
            raise fail(FailureStage.VALIDATION, InvalidRequest("user_id and message required"))
        if not message or not message.strip():
            raise fail(FailureStage.VALIDATION, InvalidRequest("user_id and message required"))

        try:
            user_turn_id = self.store.append(user_id, "user", message)
        except MentorError as e:
            raise fail(FailureStage.PERSIST_INBOUND, e)
        trace.append(TurnState.USER_TURN_PERSISTED)

        try:
            # one extra row so the window is still full once the inbound turn is dropped
            recent = self.store.recent_turns(user_id, self.assembler.window + 1, REVERSE_CHRONOLOGICAL)
            prior = [t for t in recent if t.id != user_turn_id]
            payload = self.assembler.build(prior, message)
        except MentorError as e:
            raise fail(FailureStage.CONTEXT, e)
        trace.append(TurnState.CONTEXT_BUILT)
        logger.info(
            "context built user_id=%s prior_turns=%d mode=%s",
            user_id,
            min(len(prior), self.assembler.window),
            payload.mode,
        )

        try:
            reply = self.model.generate(payload)
        except ModelUnavailable as e:
            raise fail(FailureStage.MODEL_INVOCATION, e)
        except Exception as e:
            raise fail(FailureStage.MODEL_INVOCATION, ModelUnavailable(f"model call failed: {e}")) from e
        if not reply or not reply.strip():
            raise fail(FailureStage.MODEL_INVOCATION, ModelUnavailable("model returned an empty response"))
        trace.append(TurnState.MODEL_INVOKED)

        try:
            assistant_turn_id = self.store.append(user_id, "assistant", reply)
        except MentorError as e:
            raise fail(FailureStage.PERSIST_OUTBOUND, e)
        trace.append(TurnState.ASSISTANT_TURN_PERSISTED)

        trace.append(TurnState.COMPLETED)
        logger.info("chat turn completed user_id=%s reply_chars=%d", user_id, len(reply))
        return ChatOutcome(
            user_id=user_id,
            reply=reply,
            user_turn_id=user_turn_id,
            assistant_turn_id=assistant_turn_id,
            trace=trace,
        )
