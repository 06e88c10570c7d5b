"""Suggestion record and its content variants.

The ``content`` of a suggestion is a tagged union selected by ``type``:

- ``board`` -> BoardSuggestion (columns -> tasks -> subtasks)
- ``task-breakdown`` -> TaskBreakdownSuggestion
- ``task-improvement`` -> TaskImprovementSuggestion

Ids found inside content are ephemeral correlation keys. They identify an
item within one suggestion payload and never name a persisted entity.

Content models accept camelCase keys (the shape language-model output and
older clients use) as well as the snake_case field names.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

SuggestionType = Literal["board", "task-breakdown", "task-improvement"]
SuggestionStatus = Literal["pending", "accepted", "rejected", "modified"]


def new_ephemeral_id() -> str:
    return uuid4().hex


class ContentModel(BaseModel):
    """Base model for suggestion content payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class SubtaskSuggestion(ContentModel):
    id: str = Field(default_factory=new_ephemeral_id)
    title: str
    description: str = ""
    completed: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def _ephemeral_id(cls, value: Any) -> str:
        if value is None or value == "":
            return new_ephemeral_id()
        return str(value)

    @field_validator("description", mode="before")
    @classmethod
    def _description_text(cls, value: Any) -> str:
        return "" if value is None else value


class TaskSuggestion(ContentModel):
    id: str = Field(default_factory=new_ephemeral_id)
    title: str
    description: str = ""
    position: int | None = None
    subtasks: list[SubtaskSuggestion] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _ephemeral_id(cls, value: Any) -> str:
        if value is None or value == "":
            return new_ephemeral_id()
        return str(value)

    @field_validator("description", mode="before")
    @classmethod
    def _description_text(cls, value: Any) -> str:
        return "" if value is None else value

    @field_validator("subtasks", mode="before")
    @classmethod
    def _subtask_list(cls, value: Any) -> Any:
        return [] if value is None else value


class ColumnSuggestion(ContentModel):
    name: str
    position: int | None = None
    tasks: list[TaskSuggestion] = Field(default_factory=list)

    @field_validator("tasks", mode="before")
    @classmethod
    def _task_list(cls, value: Any) -> Any:
        return [] if value is None else value


class BoardSuggestion(ContentModel):
    board_name: str
    thought_process: str | None = None
    columns: list[ColumnSuggestion] = Field(default_factory=list)

    @field_validator("columns", mode="before")
    @classmethod
    def _column_list(cls, value: Any) -> Any:
        return [] if value is None else value

    def ephemeral_ids(self) -> set[str]:
        ids: set[str] = set()
        for column in self.columns:
            for task in column.tasks:
                ids.add(task.id)
                ids.update(subtask.id for subtask in task.subtasks)
        return ids


class TaskBreakdownSuggestion(ContentModel):
    task_title: str
    task_description: str = ""
    thought_process: str | None = None
    subtasks: list[SubtaskSuggestion] = Field(default_factory=list)

    @field_validator("task_description", mode="before")
    @classmethod
    def _description_text(cls, value: Any) -> str:
        return "" if value is None else value


class TaskText(ContentModel):
    title: str
    description: str = ""

    @field_validator("description", mode="before")
    @classmethod
    def _description_text(cls, value: Any) -> str:
        return "" if value is None else value


class TaskImprovementSuggestion(ContentModel):
    original_task: TaskText
    improved_task: TaskText
    thought_process: str | None = None
    reasoning: str = ""


SuggestionContent = BoardSuggestion | TaskBreakdownSuggestion | TaskImprovementSuggestion

CONTENT_MODELS: dict[str, type[ContentModel]] = {
    "board": BoardSuggestion,
    "task-breakdown": TaskBreakdownSuggestion,
    "task-improvement": TaskImprovementSuggestion,
}


def parse_content(suggestion_type: str, raw: Any) -> SuggestionContent:
    """Validate raw content into the variant selected by ``suggestion_type``."""
    model = CONTENT_MODELS.get(suggestion_type)
    if model is None:
        raise ValueError(f"Unknown suggestion type: {suggestion_type}")
    if isinstance(raw, model):
        return raw
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    return model.model_validate(raw)


class Suggestion(BaseModel):
    """Persisted suggestion record."""

    id: str
    user_id: str
    session_id: str
    # Declared before content: the content validator reads it.
    type: SuggestionType
    status: SuggestionStatus = "pending"
    content: SuggestionContent
    original_message: str
    related_suggestion_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @field_validator("content", mode="before")
    @classmethod
    def _content_matches_type(cls, value: Any, info: ValidationInfo) -> Any:
        suggestion_type = info.data.get("type")
        if suggestion_type is None:
            return value
        return parse_content(suggestion_type, value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_map(cls, value: Any) -> Any:
        return {} if value is None else value
