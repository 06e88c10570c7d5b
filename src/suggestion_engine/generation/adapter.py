"""Boundary to the language model: templated prompt in, typed draft out.

Every ``generate_*`` method returns ``None`` instead of raising when the
model gives nothing usable (timeout, transport error, no JSON object, or a
shape that does not validate). Callers map ``None`` to a generation failure.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError
from typing import Any

from pydantic import ValidationError

from suggestion_engine.generation.llm import LLMClient
from suggestion_engine.generation.parsing import extract_json_object
from suggestion_engine.generation.templates import (
    BOARD_SUGGESTION,
    TASK_BREAKDOWN,
    TASK_IMPROVEMENT,
    PromptTemplate,
    render,
)
from suggestion_engine.storage.models import (
    BoardSuggestion,
    TaskBreakdownSuggestion,
    TaskImprovementSuggestion,
)

logger = logging.getLogger(__name__)

DEFAULT_ORIGINAL_TITLE = "Original Task"
DEFAULT_IMPROVEMENT_THOUGHT = (
    "Analysis of the original task to make it clearer and more actionable."
)
DEFAULT_IMPROVEMENT_REASONING = (
    "AI-generated improvement to make the task clearer and more actionable."
)


class GenerationAdapter:
    def __init__(self, client: LLMClient, *, timeout_s: float = 20.0) -> None:
        self.client = client
        self.timeout_s = timeout_s

    def generate_board_draft(self, project_description: str) -> BoardSuggestion | None:
        payload = self._generate(
            BOARD_SUGGESTION, {"projectDescription": project_description}
        )
        if payload is None:
            return None
        columns = payload.get("columns")
        if isinstance(columns, list):
            payload["columns"] = [
                _with_default_position(column, index) for index, column in enumerate(columns)
            ]
            for column in payload["columns"]:
                tasks = column.get("tasks") if isinstance(column, dict) else None
                if isinstance(tasks, list):
                    column["tasks"] = [
                        _with_default_position(task, index) for index, task in enumerate(tasks)
                    ]
        return self._validate(BoardSuggestion, payload, BOARD_SUGGESTION.id)

    def generate_task_breakdown_draft(
        self, title: str, description: str | None = None
    ) -> TaskBreakdownSuggestion | None:
        payload = self._generate(
            TASK_BREAKDOWN, {"taskTitle": title, "taskDescription": description}
        )
        if payload is None:
            return None
        task = payload.get("task") if isinstance(payload.get("task"), dict) else {}
        draft = {
            "taskTitle": task.get("title") or payload.get("taskTitle") or title,
            "taskDescription": task.get("description")
            or payload.get("taskDescription")
            or description
            or "",
            "thoughtProcess": payload.get("thoughtProcess"),
            "subtasks": payload.get("subtasks"),
        }
        if not isinstance(draft["subtasks"], list):
            logger.warning("generation event=shape_mismatch template=%s", TASK_BREAKDOWN.id)
            return None
        return self._validate(TaskBreakdownSuggestion, draft, TASK_BREAKDOWN.id)

    def generate_task_improvement_draft(
        self, title: str, description: str | None = None
    ) -> TaskImprovementSuggestion | None:
        payload = self._generate(
            TASK_IMPROVEMENT,
            {"taskTitle": title or DEFAULT_ORIGINAL_TITLE, "taskDescription": description},
        )
        if payload is None:
            return None
        improved = payload.get("improvedTask")
        if not isinstance(improved, dict):
            improved = {"title": payload.get("title"), "description": payload.get("description")}
        draft = {
            "originalTask": {
                "title": title or DEFAULT_ORIGINAL_TITLE,
                "description": description or "",
            },
            "improvedTask": improved,
            "thoughtProcess": payload.get("thoughtProcess") or DEFAULT_IMPROVEMENT_THOUGHT,
            "reasoning": payload.get("reasoning") or DEFAULT_IMPROVEMENT_REASONING,
        }
        return self._validate(TaskImprovementSuggestion, draft, TASK_IMPROVEMENT.id)

    def _generate(
        self, template: PromptTemplate, variables: dict[str, Any]
    ) -> dict[str, Any] | None:
        try:
            messages = render(template, variables)
        except ValueError as exc:
            logger.warning("generation event=render_failed template=%s reason=%s", template.id, exc)
            return None

        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="llm")
        try:
            future = pool.submit(
                self.client.complete,
                messages,
                temperature=template.temperature,
                max_tokens=template.max_tokens,
                timeout_s=self.timeout_s,
            )
            raw = future.result(timeout=self.timeout_s)
        except TimeoutError:
            logger.warning(
                "generation event=timeout template=%s timeout_s=%.2f",
                template.id,
                self.timeout_s,
            )
            return None
        except Exception as exc:  # noqa: BLE001
            logger.warning("generation event=failed template=%s reason=%s", template.id, exc)
            return None
        finally:
            # Do not wait for a timed-out call; its result is discarded.
            pool.shutdown(wait=False, cancel_futures=True)

        payload = extract_json_object(raw)
        if payload is None:
            logger.warning("generation event=no_json template=%s", template.id)
        return payload

    @staticmethod
    def _validate(model: type, payload: dict[str, Any], template_id: str) -> Any:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            logger.warning(
                "generation event=shape_mismatch template=%s errors=%d",
                template_id,
                exc.error_count(),
            )
            return None


def _with_default_position(item: Any, index: int) -> Any:
    if isinstance(item, dict) and item.get("position") is None:
        return {**item, "position": index}
    return item

