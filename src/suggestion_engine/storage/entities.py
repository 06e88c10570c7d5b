"""Board, column, task and subtask documents owned by the base persistence layer."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    return datetime.now(UTC)


class Board(BaseModel):
    id: str
    name: str
    owner_id: str
    description: str = ""
    # Ordered column ids.
    columns: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)


class Column(BaseModel):
    id: str
    name: str
    board_id: str
    position: int = 0
    # Ordered task ids.
    tasks: list[str] = Field(default_factory=list)


class Task(BaseModel):
    id: str
    title: str
    description: str = ""
    status: str = "Todo"
    column_id: str
    position: int = 0
    # Ordered subtask ids.
    subtasks: list[str] = Field(default_factory=list)


class Subtask(BaseModel):
    id: str
    title: str
    description: str = ""
    completed: bool = False
    task_id: str


class BoardGraph(BaseModel):
    """Board entities with every identity assigned but nothing persisted yet."""

    board: Board
    columns: list[Column] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list)
    subtasks: list[Subtask] = Field(default_factory=list)


class BreakdownGraph(BaseModel):
    """Subtasks from a task breakdown, optionally with the new task that owns them.

    ``task`` is set when the breakdown creates a new task in ``column_id``;
    otherwise the subtasks attach to the existing task ``task_id``.
    """

    task_id: str
    column_id: str | None = None
    task: Task | None = None
    subtasks: list[Subtask] = Field(default_factory=list)


class PopulatedTask(BaseModel):
    id: str
    title: str
    description: str = ""
    status: str = "Todo"
    column_id: str
    position: int = 0
    subtasks: list[Subtask] = Field(default_factory=list)


class PopulatedColumn(BaseModel):
    id: str
    name: str
    board_id: str
    position: int = 0
    tasks: list[PopulatedTask] = Field(default_factory=list)


class PopulatedBoard(BaseModel):
    id: str
    name: str
    owner_id: str
    description: str = ""
    columns: list[PopulatedColumn] = Field(default_factory=list)
    created_at: datetime


def populate_board(
    board: Board,
    columns: dict[str, Column],
    tasks: dict[str, Task],
    subtasks: dict[str, Subtask],
) -> PopulatedBoard:
    """Resolve child id lists into nested documents, keeping list order."""
    populated_columns: list[PopulatedColumn] = []
    for column_id in board.columns:
        column = columns.get(column_id)
        if column is None:
            continue
        populated_tasks: list[PopulatedTask] = []
        for task_id in column.tasks:
            task = tasks.get(task_id)
            if task is None:
                continue
            populated_tasks.append(
                PopulatedTask(
                    **task.model_dump(exclude={"subtasks"}),
                    subtasks=[subtasks[sid] for sid in task.subtasks if sid in subtasks],
                )
            )
        populated_columns.append(
            PopulatedColumn(**column.model_dump(exclude={"tasks"}), tasks=populated_tasks)
        )
    return PopulatedBoard(**board.model_dump(exclude={"columns"}), columns=populated_columns)
