"""Storage interfaces for suggestions and the board hierarchy."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from suggestion_engine.storage.entities import Board, Column, PopulatedBoard, Subtask, Task
from suggestion_engine.storage.models import Suggestion, SuggestionContent


class SuggestionStore(Protocol):
    def migrate(self) -> None: ...

    def create_suggestion(
        self,
        *,
        user_id: str,
        session_id: str,
        type: str,
        content: SuggestionContent,
        original_message: str,
        related_suggestion_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Suggestion: ...

    def get_suggestion(self, suggestion_id: str) -> Suggestion | None: ...

    def list_by_user(self, user_id: str) -> list[Suggestion]: ...

    def list_by_session(
        self,
        session_id: str,
        *,
        status: str | None = None,
        type: str | None = None,
    ) -> list[Suggestion]: ...

    def update_suggestion(
        self,
        suggestion_id: str,
        *,
        status: str | None = None,
        content: SuggestionContent | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Suggestion: ...

    def delete_pending_before(self, cutoff: datetime) -> int: ...


class BoardStore(Protocol):
    """Base persistence layer for boards, columns, tasks and subtasks."""

    def migrate(self) -> None: ...

    def insert_board(self, board: Board) -> Board: ...

    def insert_columns(self, columns: list[Column]) -> list[Column]: ...

    def insert_tasks(self, tasks: list[Task]) -> list[Task]: ...

    def insert_subtasks(self, subtasks: list[Subtask]) -> list[Subtask]: ...

    def get_board(self, board_id: str) -> Board | None: ...

    def get_column(self, column_id: str) -> Column | None: ...

    def get_task(self, task_id: str) -> Task | None: ...

    def list_columns(self, board_id: str) -> list[Column]: ...

    def list_tasks(self, column_id: str) -> list[Task]: ...

    def list_subtasks(self, task_id: str) -> list[Subtask]: ...

    def update_board(self, board_id: str, fields: dict[str, Any]) -> Board: ...

    def update_column(self, column_id: str, fields: dict[str, Any]) -> Column: ...

    def update_task(self, task_id: str, fields: dict[str, Any]) -> Task: ...

    def delete_board(self, board_id: str) -> None: ...

    def get_populated_board(self, board_id: str) -> PopulatedBoard | None: ...
