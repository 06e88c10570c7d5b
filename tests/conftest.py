from __future__ import annotations

import json
from typing import Any

import pytest
from fastapi.testclient import TestClient

from suggestion_engine.api.main import create_app
from suggestion_engine.config.settings import Settings
from suggestion_engine.generation.adapter import GenerationAdapter
from suggestion_engine.storage.memory import InMemoryBoardStore, InMemorySuggestionStore
from suggestion_engine.suggestions.events import InMemoryEventPublisher, InMemoryMessageHistory
from suggestion_engine.suggestions.lifecycle import SuggestionLifecycleService
from suggestion_engine.suggestions.materializer import EntityMaterializer


class FakeLLMClient:
    """Returns queued responses in order and records every call."""

    def __init__(self, *responses: str | dict[str, Any] | Exception) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def complete(self, messages, *, temperature, max_tokens, timeout_s) -> str:
        self.calls.append(
            {
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "timeout_s": timeout_s,
            }
        )
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response


def scenario_board_content() -> dict[str, Any]:
    """Board with "To Do" holding "Write spec" and its two subtasks, plus an empty "Done"."""
    return {
        "boardName": "Launch",
        "thoughtProcess": "Two stages are enough.",
        "columns": [
            {
                "name": "To Do",
                "position": 0,
                "tasks": [
                    {
                        "id": "T1",
                        "title": "Write spec",
                        "description": "First draft",
                        "position": 0,
                        "subtasks": [
                            {"id": "S1", "title": "Outline", "description": "", "completed": False},
                            {"id": "S2", "title": "Review", "description": "", "completed": False},
                        ],
                    }
                ],
            },
            {"name": "Done", "position": 1, "tasks": []},
        ],
    }


@pytest.fixture
def suggestion_store() -> InMemorySuggestionStore:
    return InMemorySuggestionStore()


@pytest.fixture
def board_store() -> InMemoryBoardStore:
    return InMemoryBoardStore()


@pytest.fixture
def events() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def messages() -> InMemoryMessageHistory:
    return InMemoryMessageHistory()


@pytest.fixture
def lifecycle(
    suggestion_store: InMemorySuggestionStore,
    board_store: InMemoryBoardStore,
    events: InMemoryEventPublisher,
    messages: InMemoryMessageHistory,
) -> SuggestionLifecycleService:
    return SuggestionLifecycleService(
        suggestion_store,
        EntityMaterializer(board_store),
        board_store=board_store,
        events=events,
        messages=messages,
    )


@pytest.fixture
def board_content() -> dict[str, Any]:
    return scenario_board_content()


@pytest.fixture
def with_llm(lifecycle: SuggestionLifecycleService):
    """Attach a generation adapter backed by a fake client with queued responses."""

    def attach(*responses: str | dict[str, Any] | Exception) -> FakeLLMClient:
        llm = FakeLLMClient(*responses)
        lifecycle.adapter = GenerationAdapter(llm, timeout_s=2.0)
        return llm

    return attach


@pytest.fixture
def fake_llm():
    return FakeLLMClient


@pytest.fixture
def memory_settings() -> Settings:
    return Settings(storage_backend="memory", llm_provider="none")


@pytest.fixture
def client(
    suggestion_store: InMemorySuggestionStore,
    board_store: InMemoryBoardStore,
    events: InMemoryEventPublisher,
    messages: InMemoryMessageHistory,
    memory_settings: Settings,
) -> TestClient:
    app = create_app(
        suggestion_store=suggestion_store,
        board_store=board_store,
        events=events,
        messages=messages,
        settings_override=memory_settings,
    )
    return TestClient(app)
