"""Collaborator interfaces for real-time events and chat message history."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, Protocol

logger = logging.getLogger(__name__)

MessageRole = Literal["user", "assistant", "system"]

SUGGESTION_PREVIEW = "suggestion_preview"
SUGGESTION_STATUS_UPDATE = "suggestion_status_update"
SUGGESTION_MODIFIED = "suggestion_modified"


class EventPublisher(Protocol):
    """Fire-and-forget delivery to everyone connected to a session channel."""

    def publish(self, session_id: str, event: str, payload: dict[str, Any]) -> None: ...


class MessageHistory(Protocol):
    def append(self, session_id: str, role: MessageRole, content: str) -> None: ...


class LoggingEventPublisher:
    """Default publisher when no real-time transport is wired in."""

    def publish(self, session_id: str, event: str, payload: dict[str, Any]) -> None:
        logger.info(
            "event_publish channel=chat:%s event=%s suggestion_id=%s",
            session_id,
            event,
            payload.get("suggestionId"),
        )


@dataclass(frozen=True)
class PublishedEvent:
    session_id: str
    event: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class HistoryMessage:
    session_id: str
    role: MessageRole
    content: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class InMemoryEventPublisher:
    def __init__(self) -> None:
        self.events: list[PublishedEvent] = []
        self._lock = threading.Lock()

    def publish(self, session_id: str, event: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.events.append(PublishedEvent(session_id=session_id, event=event, payload=payload))

    def for_session(self, session_id: str) -> list[PublishedEvent]:
        with self._lock:
            return [item for item in self.events if item.session_id == session_id]


class InMemoryMessageHistory:
    def __init__(self) -> None:
        self.messages: list[HistoryMessage] = []
        self._lock = threading.Lock()

    def append(self, session_id: str, role: MessageRole, content: str) -> None:
        with self._lock:
            self.messages.append(HistoryMessage(session_id=session_id, role=role, content=content))

    def for_session(self, session_id: str) -> list[HistoryMessage]:
        with self._lock:
            return [item for item in self.messages if item.session_id == session_id]
