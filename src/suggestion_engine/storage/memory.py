"""In-memory storage backends for tests and local runs."""

from __future__ import annotations

import itertools
import threading
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from suggestion_engine.storage.entities import (
    Board,
    Column,
    PopulatedBoard,
    Subtask,
    Task,
    populate_board,
)
from suggestion_engine.storage.models import Suggestion, SuggestionContent


class InMemorySuggestionStore:
    """Dict-backed suggestion store; records are copied in and out."""

    def __init__(self) -> None:
        self._suggestions: dict[str, Suggestion] = {}
        # Insertion order breaks created_at ties when listing newest first.
        self._sequence: dict[str, int] = {}
        self._counter = itertools.count()
        self._lock = threading.Lock()

    def migrate(self) -> None:
        return None

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
    ) -> Suggestion:
        now = datetime.now(UTC)
        record = Suggestion(
            id=str(uuid4()),
            user_id=user_id,
            session_id=session_id,
            type=type,
            status="pending",
            content=content,
            original_message=original_message,
            related_suggestion_id=related_suggestion_id,
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._suggestions[record.id] = record
            self._sequence[record.id] = next(self._counter)
        return record.model_copy(deep=True)

    def get_suggestion(self, suggestion_id: str) -> Suggestion | None:
        with self._lock:
            record = self._suggestions.get(suggestion_id)
        return record.model_copy(deep=True) if record else None

    def list_by_user(self, user_id: str) -> list[Suggestion]:
        return self._select(lambda item: item.user_id == user_id)

    def list_by_session(
        self,
        session_id: str,
        *,
        status: str | None = None,
        type: str | None = None,
    ) -> list[Suggestion]:
        return self._select(
            lambda item: item.session_id == session_id
            and (status is None or item.status == status)
            and (type is None or item.type == type)
        )

    def update_suggestion(
        self,
        suggestion_id: str,
        *,
        status: str | None = None,
        content: SuggestionContent | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Suggestion:
        with self._lock:
            current = self._suggestions.get(suggestion_id)
            if current is None:
                raise KeyError(f"Suggestion {suggestion_id} does not exist")
            updated = current.model_copy(deep=True)
            if status is not None:
                updated.status = status
            if content is not None:
                updated.content = content.model_copy(deep=True)
            if metadata is not None:
                updated.metadata = dict(metadata)
            updated.updated_at = datetime.now(UTC)
            self._suggestions[suggestion_id] = updated
        return updated.model_copy(deep=True)

    def delete_pending_before(self, cutoff: datetime) -> int:
        with self._lock:
            expired = [
                suggestion_id
                for suggestion_id, item in self._suggestions.items()
                if item.status == "pending" and item.created_at < cutoff
            ]
            for suggestion_id in expired:
                del self._suggestions[suggestion_id]
                self._sequence.pop(suggestion_id, None)
        return len(expired)

    def _select(self, predicate) -> list[Suggestion]:
        with self._lock:
            matches = [item for item in self._suggestions.values() if predicate(item)]
            matches.sort(
                key=lambda item: (item.created_at, self._sequence[item.id]),
                reverse=True,
            )
            return [item.model_copy(deep=True) for item in matches]


class InMemoryBoardStore:
    """Dict-backed base persistence layer with parent checks and cascade delete."""

    def __init__(self) -> None:
        self._boards: dict[str, Board] = {}
        self._columns: dict[str, Column] = {}
        self._tasks: dict[str, Task] = {}
        self._subtasks: dict[str, Subtask] = {}
        self._lock = threading.Lock()

    def migrate(self) -> None:
        return None

    def insert_board(self, board: Board) -> Board:
        with self._lock:
            self._boards[board.id] = board.model_copy(deep=True)
        return board.model_copy(deep=True)

    def insert_columns(self, columns: list[Column]) -> list[Column]:
        with self._lock:
            for column in columns:
                if column.board_id not in self._boards:
                    raise KeyError(f"Board {column.board_id} does not exist")
            for column in columns:
                self._columns[column.id] = column.model_copy(deep=True)
        return [column.model_copy(deep=True) for column in columns]

    def insert_tasks(self, tasks: list[Task]) -> list[Task]:
        with self._lock:
            for task in tasks:
                if task.column_id not in self._columns:
                    raise KeyError(f"Column {task.column_id} does not exist")
            for task in tasks:
                self._tasks[task.id] = task.model_copy(deep=True)
        return [task.model_copy(deep=True) for task in tasks]

    def insert_subtasks(self, subtasks: list[Subtask]) -> list[Subtask]:
        with self._lock:
            for subtask in subtasks:
                if subtask.task_id not in self._tasks:
                    raise KeyError(f"Task {subtask.task_id} does not exist")
            for subtask in subtasks:
                self._subtasks[subtask.id] = subtask.model_copy(deep=True)
        return [subtask.model_copy(deep=True) for subtask in subtasks]

    def get_board(self, board_id: str) -> Board | None:
        with self._lock:
            record = self._boards.get(board_id)
        return _copy_or_none(record)

    def get_column(self, column_id: str) -> Column | None:
        with self._lock:
            record = self._columns.get(column_id)
        return _copy_or_none(record)

    def get_task(self, task_id: str) -> Task | None:
        with self._lock:
            record = self._tasks.get(task_id)
        return _copy_or_none(record)

    def list_columns(self, board_id: str) -> list[Column]:
        with self._lock:
            rows = [item for item in self._columns.values() if item.board_id == board_id]
        return [item.model_copy(deep=True) for item in sorted(rows, key=lambda c: c.position)]

    def list_tasks(self, column_id: str) -> list[Task]:
        with self._lock:
            rows = [item for item in self._tasks.values() if item.column_id == column_id]
        return [item.model_copy(deep=True) for item in sorted(rows, key=lambda t: t.position)]

    def list_subtasks(self, task_id: str) -> list[Subtask]:
        with self._lock:
            rows = [item for item in self._subtasks.values() if item.task_id == task_id]
        return [item.model_copy(deep=True) for item in rows]

    def update_board(self, board_id: str, fields: dict[str, Any]) -> Board:
        return self._update(self._boards, Board, board_id, fields)

    def update_column(self, column_id: str, fields: dict[str, Any]) -> Column:
        return self._update(self._columns, Column, column_id, fields)

    def update_task(self, task_id: str, fields: dict[str, Any]) -> Task:
        return self._update(self._tasks, Task, task_id, fields)

    def delete_board(self, board_id: str) -> None:
        with self._lock:
            self._boards.pop(board_id, None)
            column_ids = {cid for cid, c in self._columns.items() if c.board_id == board_id}
            task_ids = {tid for tid, t in self._tasks.items() if t.column_id in column_ids}
            subtask_ids = {sid for sid, s in self._subtasks.items() if s.task_id in task_ids}
            for column_id in column_ids:
                del self._columns[column_id]
            for task_id in task_ids:
                del self._tasks[task_id]
            for subtask_id in subtask_ids:
                del self._subtasks[subtask_id]

    def get_populated_board(self, board_id: str) -> PopulatedBoard | None:
        with self._lock:
            board = self._boards.get(board_id)
            if board is None:
                return None
            return populate_board(board, self._columns, self._tasks, self._subtasks)

    def _update(self, table: dict[str, Any], model: type, entity_id: str, fields: dict[str, Any]):
        with self._lock:
            current = table.get(entity_id)
            if current is None:
                raise KeyError(f"{model.__name__} {entity_id} does not exist")
            merged = {**current.model_dump(), **{k: v for k, v in fields.items() if k != "id"}}
            updated = model.model_validate(merged)
            table[entity_id] = updated
        return updated.model_copy(deep=True)


def _copy_or_none(record: Any) -> Any:
    return record.model_copy(deep=True) if record is not None else None
