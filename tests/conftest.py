from __future__ import annotations

from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from mentor.config import Settings
from mentor.context import ContextAssembler, PromptPayload
from mentor.coordinator import TurnCoordinator
from mentor.errors import ModelUnavailable
from mentor.llm import LanguageModel
from mentor.main import create_app
from mentor.store import InMemoryStore


class StubModel(LanguageModel):
    name = "stub"

    def __init__(self, reply: str = "Great job! What subject?", error: Optional[Exception] = None) -> None:
        self.reply = reply
        self.error = error
        self.payloads: List[PromptPayload] = []

    def generate(self, payload: PromptPayload) -> str:
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def user(store):
    return store.create_user("Asha", "asha@example.com")


@pytest.fixture
def stub_model():
    return StubModel()


@pytest.fixture
def failing_model():
    return StubModel(error=ModelUnavailable("quota exceeded"))


@pytest.fixture
def coordinator(store, stub_model):
    return TurnCoordinator(store, ContextAssembler("You are a coach.", window=5), stub_model)


@pytest.fixture
def settings():
    return Settings(context_window=5, demo=True)


@pytest.fixture
def client(store, stub_model, settings):
    return TestClient(create_app(store=store, model=stub_model, settings=settings))


@pytest.fixture
def model_factory():
    return StubModel
