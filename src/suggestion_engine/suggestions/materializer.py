"""Expand accepted suggestions into persisted board entities.

Materialization runs in two phases:

1) Build: walk the suggestion tree and assign a fresh identity to every node,
   wiring parent references and ordered child-id lists in memory. Nothing is
   written and no placeholder id is ever rewritten later.
2) Persist: insert parents before children with empty child lists, then write
   the child-id lists bottom-up. No row references a parent that does not
   exist yet and no parent lists a child that has not been inserted.

Ephemeral ids from the suggestion are only used to avoid collisions; they are
never reused as entity identities.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, TypeVar
from uuid import uuid4

from suggestion_engine.storage.base import BoardStore
from suggestion_engine.storage.entities import (
    Board,
    BoardGraph,
    BreakdownGraph,
    Column,
    PopulatedBoard,
    Subtask,
    Task,
)
from suggestion_engine.storage.models import BoardSuggestion, TaskBreakdownSuggestion
from suggestion_engine.suggestions.errors import MaterializationFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Task fields a suggestion may change on an existing task.
EDITABLE_TASK_FIELDS = ("title", "description", "status", "position")


def _new_id() -> str:
    return str(uuid4())


def ordered_by_position(items: Sequence[T]) -> list[T]:
    """Sort by ``position``; missing positions default to the array index, ties keep array order."""
    indexed = list(enumerate(items))
    indexed.sort(
        key=lambda pair: (
            pair[1].position if getattr(pair[1], "position", None) is not None else pair[0],
            pair[0],
        )
    )
    return [item for _, item in indexed]


class EntityMaterializer:
    def __init__(
        self,
        board_store: BoardStore,
        *,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self.board_store = board_store
        self._id_factory = id_factory

    def build_board_graph(self, suggestion: BoardSuggestion, owner_id: str) -> BoardGraph:
        """Assign fresh identities to the whole board tree. Pure; performs no I/O."""
        reserved = suggestion.ephemeral_ids()
        board_id = self._fresh_id(reserved)
        columns: list[Column] = []
        tasks: list[Task] = []
        subtasks: list[Subtask] = []

        for column_rank, column_suggestion in enumerate(ordered_by_position(suggestion.columns)):
            column_id = self._fresh_id(reserved)
            task_ids: list[str] = []
            for task_rank, task_suggestion in enumerate(
                ordered_by_position(column_suggestion.tasks)
            ):
                task_id = self._fresh_id(reserved)
                subtask_ids: list[str] = []
                for subtask_suggestion in task_suggestion.subtasks:
                    subtask_id = self._fresh_id(reserved)
                    subtasks.append(
                        Subtask(
                            id=subtask_id,
                            title=subtask_suggestion.title,
                            description=subtask_suggestion.description,
                            completed=subtask_suggestion.completed,
                            task_id=task_id,
                        )
                    )
                    subtask_ids.append(subtask_id)
                tasks.append(
                    Task(
                        id=task_id,
                        title=task_suggestion.title,
                        description=task_suggestion.description,
                        status="Todo",
                        column_id=column_id,
                        position=task_rank,
                        subtasks=subtask_ids,
                    )
                )
                task_ids.append(task_id)
            columns.append(
                Column(
                    id=column_id,
                    name=column_suggestion.name,
                    board_id=board_id,
                    position=column_rank,
                    tasks=task_ids,
                )
            )

        board = Board(
            id=board_id,
            name=suggestion.board_name,
            owner_id=owner_id,
            columns=[column.id for column in columns],
        )
        return BoardGraph(board=board, columns=columns, tasks=tasks, subtasks=subtasks)

    def persist_board_graph(self, graph: BoardGraph) -> PopulatedBoard:
        """Write the graph parent-before-child and return the populated board."""
        store = self.board_store
        board_id = graph.board.id
        try:
            store.insert_board(graph.board.model_copy(update={"columns": []}))
            store.insert_columns([c.model_copy(update={"tasks": []}) for c in graph.columns])
            store.insert_tasks([t.model_copy(update={"subtasks": []}) for t in graph.tasks])
            store.insert_subtasks(graph.subtasks)

            for task in graph.tasks:
                if task.subtasks:
                    store.update_task(task.id, {"subtasks": task.subtasks})
            for column in graph.columns:
                if column.tasks:
                    store.update_column(column.id, {"tasks": column.tasks})
            if graph.board.columns:
                store.update_board(board_id, {"columns": graph.board.columns})

            populated = store.get_populated_board(board_id)
        except Exception as exc:
            logger.exception(
                "materialize event=board_failed board_id=%s columns=%d tasks=%d subtasks=%d",
                board_id,
                len(graph.columns),
                len(graph.tasks),
                len(graph.subtasks),
            )
            raise MaterializationFailure(f"Failed to persist board {board_id}: {exc}") from exc

        if populated is None:
            raise MaterializationFailure(f"Board {board_id} was not found after persisting")
        logger.info(
            "materialize event=board_persisted board_id=%s columns=%d tasks=%d subtasks=%d",
            board_id,
            len(graph.columns),
            len(graph.tasks),
            len(graph.subtasks),
        )
        return populated

    def materialize_board(self, suggestion: BoardSuggestion, owner_id: str) -> PopulatedBoard:
        return self.persist_board_graph(self.build_board_graph(suggestion, owner_id))

    @staticmethod
    def build_task_update(existing_task: Task, updated_fields: dict[str, Any]) -> dict[str, Any]:
        """Return only the editable fields whose values differ from ``existing_task``.

        Identity and parent references are never part of the update.
        """
        current = existing_task.model_dump()
        update: dict[str, Any] = {}
        for field in EDITABLE_TASK_FIELDS:
            if field not in updated_fields:
                continue
            value = updated_fields[field]
            if value is None or value == current.get(field):
                continue
            update[field] = value
        return update

    def build_breakdown_graph(
        self,
        breakdown: TaskBreakdownSuggestion,
        *,
        column_id: str | None = None,
        task_id: str | None = None,
    ) -> BreakdownGraph:
        """Assign identities for a breakdown.

        With ``column_id`` a new task owning the subtasks is created at the end
        of that column; with ``task_id`` the subtasks attach to that task.
        """
        if (column_id is None) == (task_id is None):
            raise ValueError("Exactly one of column_id or task_id is required")

        reserved = {subtask.id for subtask in breakdown.subtasks}
        owner_task_id = task_id or self._fresh_id(reserved)
        subtasks = [
            Subtask(
                id=self._fresh_id(reserved),
                title=subtask.title,
                description=subtask.description,
                completed=subtask.completed,
                task_id=owner_task_id,
            )
            for subtask in breakdown.subtasks
        ]
        task = None
        if column_id is not None:
            task = Task(
                id=owner_task_id,
                title=breakdown.task_title,
                description=breakdown.task_description,
                status="Todo",
                column_id=column_id,
                subtasks=[subtask.id for subtask in subtasks],
            )
        return BreakdownGraph(
            task_id=owner_task_id,
            column_id=column_id,
            task=task,
            subtasks=subtasks,
        )

    def persist_breakdown_graph(self, graph: BreakdownGraph) -> Task:
        store = self.board_store
        try:
            if graph.task is not None:
                column = store.get_column(graph.task.column_id)
                if column is None:
                    raise KeyError(f"Column {graph.task.column_id} does not exist")
                position = len(column.tasks)
                store.insert_tasks(
                    [graph.task.model_copy(update={"subtasks": [], "position": position})]
                )
                store.insert_subtasks(graph.subtasks)
                store.update_task(graph.task_id, {"subtasks": graph.task.subtasks})
                store.update_column(column.id, {"tasks": [*column.tasks, graph.task_id]})
            else:
                existing = store.get_task(graph.task_id)
                if existing is None:
                    raise KeyError(f"Task {graph.task_id} does not exist")
                store.insert_subtasks(graph.subtasks)
                store.update_task(
                    graph.task_id,
                    {"subtasks": [*existing.subtasks, *(s.id for s in graph.subtasks)]},
                )
            task = store.get_task(graph.task_id)
        except Exception as exc:
            logger.exception(
                "materialize event=breakdown_failed task_id=%s subtasks=%d",
                graph.task_id,
                len(graph.subtasks),
            )
            raise MaterializationFailure(
                f"Failed to persist breakdown for task {graph.task_id}: {exc}"
            ) from exc
        if task is None:
            raise MaterializationFailure(f"Task {graph.task_id} was not found after persisting")
        return task

    def _fresh_id(self, reserved: set[str]) -> str:
        while True:
            candidate = self._id_factory()
            if candidate not in reserved:
                reserved.add(candidate)
                return candidate
