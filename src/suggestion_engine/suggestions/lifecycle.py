"""Suggestion lifecycle: creation, lookup and review transitions.

State machine::

    pending  --accept--> accepted   (terminal)
    pending  --reject--> rejected   (terminal)
    pending  --modify--> modified   (may still be accepted, rejected or modified)

``accept`` writes the ``accepted`` status first and then materializes. A
materialization failure is logged and raised to the caller while the status
stays ``accepted``; there is no rollback. The status check before a
transition is not atomic, so two concurrent accepts of the same suggestion
can both materialize.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel

from suggestion_engine.generation.adapter import GenerationAdapter
from suggestion_engine.storage.base import BoardStore, SuggestionStore
from suggestion_engine.storage.entities import Task
from suggestion_engine.storage.models import (
    CONTENT_MODELS,
    BoardSuggestion,
    Suggestion,
    SuggestionContent,
    TaskBreakdownSuggestion,
    TaskImprovementSuggestion,
    TaskSuggestion,
    parse_content,
)
from suggestion_engine.suggestions.errors import (
    GenerationFailure,
    GenerationUnavailable,
    InvalidContent,
    InvalidReference,
    InvalidTransition,
    MaterializationFailure,
    NotFound,
)
from suggestion_engine.suggestions.events import (
    SUGGESTION_MODIFIED,
    SUGGESTION_PREVIEW,
    SUGGESTION_STATUS_UPDATE,
    EventPublisher,
    MessageHistory,
)
from suggestion_engine.suggestions.materializer import EntityMaterializer

logger = logging.getLogger(__name__)

REVIEWABLE_STATUSES = frozenset({"pending", "modified"})

REVIEW_ACKNOWLEDGMENTS = {
    "accepted": "✅ The suggestion has been accepted and processed.",
    "rejected": "❌ The suggestion has been rejected.",
    "modified": "✏️ The suggestion has been modified.",
}


class TaskReference(BaseModel):
    """Where a task id points: into a reviewable board suggestion or at a persisted task."""

    source: Literal["suggestion", "task"]
    task_id: str
    title: str
    description: str = ""
    suggestion: Suggestion | None = None
    column_name: str | None = None
    task: Task | None = None


class SuggestionLifecycleService:
    def __init__(
        self,
        store: SuggestionStore,
        materializer: EntityMaterializer,
        *,
        board_store: BoardStore,
        events: EventPublisher,
        messages: MessageHistory,
        adapter: GenerationAdapter | None = None,
        pending_ttl: timedelta = timedelta(hours=24),
    ) -> None:
        self.store = store
        self.materializer = materializer
        self.board_store = board_store
        self.events = events
        self.messages = messages
        self.adapter = adapter
        self.pending_ttl = pending_ttl

    # -- creation and queries -------------------------------------------------

    def create(
        self,
        *,
        type: str,
        user_id: str,
        session_id: str,
        content: Any,
        original_message: str,
        related_suggestion_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Suggestion:
        try:
            parsed = parse_content(type, content)
        except ValueError as exc:
            raise InvalidContent(f"Content does not match suggestion type '{type}': {exc}") from exc

        suggestion = self.store.create_suggestion(
            user_id=user_id,
            session_id=session_id,
            type=type,
            content=parsed,
            original_message=original_message,
            related_suggestion_id=related_suggestion_id,
            metadata=metadata,
        )
        logger.info(
            "suggestion event=created suggestion_id=%s type=%s session_id=%s",
            suggestion.id,
            suggestion.type,
            suggestion.session_id,
        )
        self._publish(
            suggestion.session_id,
            SUGGESTION_PREVIEW,
            {
                "suggestionId": suggestion.id,
                "type": suggestion.type,
                "content": _content_payload(suggestion.content),
            },
        )
        return suggestion

    def get(self, suggestion_id: str) -> Suggestion:
        suggestion = self.store.get_suggestion(suggestion_id)
        if suggestion is None:
            raise NotFound(f"Suggestion {suggestion_id} not found")
        return suggestion

    def list_by_user(self, user_id: str) -> list[Suggestion]:
        return self.store.list_by_user(user_id)

    def list_by_session(self, session_id: str) -> list[Suggestion]:
        return self.store.list_by_session(session_id)

    def list_pending_by_session(self, session_id: str) -> list[Suggestion]:
        return self.store.list_by_session(session_id, status="pending")

    # -- transitions ----------------------------------------------------------

    def accept(self, suggestion_id: str, message: str | None = None) -> Suggestion:
        suggestion = self.get(suggestion_id)
        self._require_reviewable(suggestion, "accept")

        suggestion = self.store.update_suggestion(suggestion_id, status="accepted")
        logger.info(
            "suggestion event=accepted suggestion_id=%s type=%s",
            suggestion.id,
            suggestion.type,
        )
        try:
            metadata_update = self._materialize(suggestion)
            if metadata_update:
                suggestion = self.store.update_suggestion(
                    suggestion_id,
                    metadata={**suggestion.metadata, **metadata_update},
                )
        except MaterializationFailure:
            logger.error(
                "suggestion event=materialize_failed suggestion_id=%s status=accepted",
                suggestion_id,
            )
            raise
        finally:
            self._publish(
                suggestion.session_id,
                SUGGESTION_STATUS_UPDATE,
                {"suggestionId": suggestion.id, "status": "accepted"},
            )
            self._record_review(suggestion.session_id, "accepted", message)
        return suggestion

    def reject(self, suggestion_id: str, message: str | None = None) -> Suggestion:
        suggestion = self.get(suggestion_id)
        self._require_reviewable(suggestion, "reject")

        suggestion = self.store.update_suggestion(suggestion_id, status="rejected")
        logger.info("suggestion event=rejected suggestion_id=%s", suggestion.id)
        self._publish(
            suggestion.session_id,
            SUGGESTION_STATUS_UPDATE,
            {"suggestionId": suggestion.id, "status": "rejected"},
        )
        self._record_review(suggestion.session_id, "rejected", message)
        return suggestion

    def modify(
        self,
        suggestion_id: str,
        partial_content: dict[str, Any],
        message: str | None = None,
    ) -> Suggestion:
        """Shallow-merge ``partial_content`` into the content; ``type`` never changes."""
        suggestion = self.get(suggestion_id)
        self._require_reviewable(suggestion, "modify")

        merged = _merge_content(suggestion.type, suggestion.content, partial_content)
        suggestion = self.store.update_suggestion(
            suggestion_id,
            status="modified",
            content=merged,
        )
        logger.info(
            "suggestion event=modified suggestion_id=%s keys=%s",
            suggestion.id,
            ",".join(sorted(partial_content)),
        )
        self._publish(
            suggestion.session_id,
            SUGGESTION_MODIFIED,
            {
                "suggestionId": suggestion.id,
                "type": suggestion.type,
                "content": _content_payload(suggestion.content),
            },
        )
        self._record_review(suggestion.session_id, "modified", message)
        return suggestion

    # -- cross-suggestion lookup ----------------------------------------------

    @staticmethod
    def find_task_in_board_suggestion(
        board: BoardSuggestion, task_id: str
    ) -> tuple[TaskSuggestion | None, str | None]:
        """Linear scan over columns then tasks, matching the ephemeral ``id``."""
        for column in board.columns:
            for task in column.tasks:
                if task.id == task_id:
                    return task, column.name
        return None, None

    def find_board_suggestion_containing_task(self, session_id: str, task_id: str) -> Suggestion:
        for suggestion in self.store.list_by_session(session_id, type="board"):
            task, _ = self.find_task_in_board_suggestion(suggestion.content, task_id)
            if task is not None:
                return suggestion
        raise NotFound(f"Task {task_id} not found in any board suggestion of session {session_id}")

    def resolve_task_reference(self, session_id: str, task_id: str) -> TaskReference:
        """Resolve ``task_id`` against reviewable board suggestions, then persisted tasks."""
        for suggestion in self.store.list_by_session(session_id, type="board"):
            if suggestion.status not in REVIEWABLE_STATUSES:
                continue
            task, column_name = self.find_task_in_board_suggestion(suggestion.content, task_id)
            if task is not None:
                return TaskReference(
                    source="suggestion",
                    task_id=task_id,
                    title=task.title,
                    description=task.description,
                    suggestion=suggestion,
                    column_name=column_name,
                )

        persisted = self.board_store.get_task(task_id)
        if persisted is not None:
            return TaskReference(
                source="task",
                task_id=task_id,
                title=persisted.title,
                description=persisted.description,
                task=persisted,
            )

        logger.warning(
            "suggestion event=unknown_task_reference session_id=%s task_id=%s",
            session_id,
            task_id,
        )
        raise InvalidReference(f"Task {task_id} is not in a pending board suggestion or persisted")

    # -- generation -----------------------------------------------------------

    def propose_board(
        self,
        *,
        user_id: str,
        session_id: str,
        message: str,
        project_description: str | None = None,
    ) -> Suggestion:
        adapter = self._require_adapter()
        draft = adapter.generate_board_draft(project_description or message)
        if draft is None:
            raise GenerationFailure("board suggestion")
        return self.create(
            type="board",
            user_id=user_id,
            session_id=session_id,
            content=draft,
            original_message=message,
        )

    def propose_task_breakdown(
        self,
        *,
        user_id: str,
        session_id: str,
        message: str,
        title: str | None = None,
        description: str | None = None,
        column_id: str | None = None,
        task_id: str | None = None,
    ) -> Suggestion:
        adapter = self._require_adapter()
        metadata: dict[str, Any] = {}
        related_suggestion_id = None
        if task_id:
            reference = self.resolve_task_reference(session_id, task_id)
            title = title or reference.title
            description = description or reference.description
            metadata["taskId"] = task_id
            if reference.suggestion is not None:
                related_suggestion_id = reference.suggestion.id
        elif column_id:
            if self.board_store.get_column(column_id) is None:
                raise InvalidReference(f"Column {column_id} does not exist")
            metadata["columnId"] = column_id
        if not title:
            raise InvalidContent("A task title or task id is required")

        draft = adapter.generate_task_breakdown_draft(title, description)
        if draft is None:
            raise GenerationFailure("task breakdown")
        return self.create(
            type="task-breakdown",
            user_id=user_id,
            session_id=session_id,
            content=draft,
            original_message=message,
            related_suggestion_id=related_suggestion_id,
            metadata=metadata,
        )

    def propose_task_improvement(
        self,
        *,
        user_id: str,
        session_id: str,
        message: str,
        title: str | None = None,
        description: str | None = None,
        task_id: str | None = None,
    ) -> Suggestion:
        adapter = self._require_adapter()
        metadata: dict[str, Any] = {}
        related_suggestion_id = None
        if task_id:
            reference = self.resolve_task_reference(session_id, task_id)
            title = reference.title
            description = reference.description
            metadata["taskId"] = task_id
            if reference.suggestion is not None:
                related_suggestion_id = reference.suggestion.id
        if not title:
            raise InvalidContent("A task title or task id is required")

        draft = adapter.generate_task_improvement_draft(title, description)
        if draft is None:
            raise GenerationFailure("task improvement")
        return self.create(
            type="task-improvement",
            user_id=user_id,
            session_id=session_id,
            content=draft,
            original_message=message,
            related_suggestion_id=related_suggestion_id,
            metadata=metadata,
        )

    # -- housekeeping ---------------------------------------------------------

    def purge_expired(self, now: datetime | None = None) -> int:
        cutoff = (now or datetime.now(UTC)) - self.pending_ttl
        deleted = self.store.delete_pending_before(cutoff)
        logger.info("suggestion event=purged count=%d cutoff=%s", deleted, cutoff.isoformat())
        return deleted

    # -- internals ------------------------------------------------------------

    def _materialize(self, suggestion: Suggestion) -> dict[str, Any]:
        """Apply an accepted suggestion and return the metadata to record on it."""
        if suggestion.type == "board":
            board = self.materializer.materialize_board(suggestion.content, suggestion.user_id)
            return {"boardId": board.id}
        if suggestion.type == "task-breakdown":
            return self._materialize_breakdown(suggestion)
        if suggestion.type == "task-improvement":
            return self._apply_improvement(suggestion)
        return {}

    def _materialize_breakdown(self, suggestion: Suggestion) -> dict[str, Any]:
        content: TaskBreakdownSuggestion = suggestion.content
        column_id = suggestion.metadata.get("columnId")
        task_id = suggestion.metadata.get("taskId")

        if column_id:
            graph = self.materializer.build_breakdown_graph(content, column_id=column_id)
        elif task_id and self.board_store.get_task(task_id) is not None:
            graph = self.materializer.build_breakdown_graph(content, task_id=task_id)
        else:
            logger.info(
                "suggestion event=not_materialized suggestion_id=%s type=task-breakdown",
                suggestion.id,
            )
            return {}

        task = self.materializer.persist_breakdown_graph(graph)
        return {"taskId": task.id, "subtaskIds": [subtask.id for subtask in graph.subtasks]}

    def _apply_improvement(self, suggestion: Suggestion) -> dict[str, Any]:
        content: TaskImprovementSuggestion = suggestion.content
        task_id = suggestion.metadata.get("taskId")
        if not task_id:
            return {}
        improved = content.improved_task

        if suggestion.related_suggestion_id:
            related = self.store.get_suggestion(suggestion.related_suggestion_id)
            if (
                related is not None
                and related.type == "board"
                and related.status in REVIEWABLE_STATUSES
            ):
                board = related.content.model_copy(deep=True)
                task, _ = self.find_task_in_board_suggestion(board, task_id)
                if task is not None:
                    task.title = improved.title
                    task.description = improved.description
                    related = self.store.update_suggestion(related.id, content=board)
                    self._publish(
                        related.session_id,
                        SUGGESTION_MODIFIED,
                        {
                            "suggestionId": related.id,
                            "type": related.type,
                            "content": _content_payload(related.content),
                        },
                    )
                    return {"appliedTo": "suggestion"}

        existing = self.board_store.get_task(task_id)
        if existing is not None:
            update = self.materializer.build_task_update(
                existing,
                {"title": improved.title, "description": improved.description},
            )
            if update:
                try:
                    self.board_store.update_task(task_id, update)
                except Exception as exc:
                    logger.exception(
                        "materialize event=task_update_failed task_id=%s", task_id
                    )
                    raise MaterializationFailure(
                        f"Failed to update task {task_id}: {exc}"
                    ) from exc
            return {"appliedTo": "task"}

        logger.warning(
            "suggestion event=improvement_unapplied suggestion_id=%s task_id=%s",
            suggestion.id,
            task_id,
        )
        return {}

    @staticmethod
    def _require_reviewable(suggestion: Suggestion, action: str) -> None:
        if suggestion.status not in REVIEWABLE_STATUSES:
            raise InvalidTransition(suggestion.id, suggestion.status, action)

    def _require_adapter(self) -> GenerationAdapter:
        if self.adapter is None:
            raise GenerationUnavailable("Language model is not configured")
        return self.adapter

    def _publish(self, session_id: str, event: str, payload: dict[str, Any]) -> None:
        try:
            self.events.publish(session_id, event, payload)
        except Exception:  # noqa: BLE001
            logger.warning(
                "event_publish event=failed name=%s session_id=%s",
                event,
                session_id,
                exc_info=True,
            )

    def _record_review(self, session_id: str, status: str, message: str | None) -> None:
        if not message:
            return
        try:
            self.messages.append(session_id, "user", message)
            self.messages.append(session_id, "system", REVIEW_ACKNOWLEDGMENTS[status])
        except Exception:  # noqa: BLE001
            logger.warning(
                "message_history event=append_failed session_id=%s status=%s",
                session_id,
                status,
                exc_info=True,
            )


def _content_payload(content: SuggestionContent) -> dict[str, Any]:
    return content.model_dump(mode="json", by_alias=True)


def _merge_content(
    suggestion_type: str, content: SuggestionContent, partial: dict[str, Any]
) -> SuggestionContent:
    model = CONTENT_MODELS[suggestion_type]
    # Accept both field names and their camelCase aliases.
    aliases: dict[str, str] = {}
    for name, field in model.model_fields.items():
        alias = field.alias or name
        aliases[name] = alias
        aliases[alias] = alias

    merged = content.model_dump(by_alias=True)
    for key, value in partial.items():
        merged[aliases.get(key, key)] = value
    try:
        return parse_content(suggestion_type, merged)
    except ValueError as exc:
        raise InvalidContent(
            f"Modified content does not match suggestion type '{suggestion_type}': {exc}"
        ) from exc
