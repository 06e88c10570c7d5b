"""Shallow, field-level diff between two entity snapshots for human review.

Nested values are compared as a whole: a field whose nested content differs
shows up once under ``modified``. Identity fields are never compared.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

IDENTITY_FIELDS = frozenset({"id", "_id"})


class FieldChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: Any = Field(alias="from")
    to: Any


class DiffResult(BaseModel):
    added: dict[str, Any] = Field(default_factory=dict)
    modified: dict[str, FieldChange] = Field(default_factory=dict)
    removed: dict[str, Any] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.removed)


def diff(
    original: Mapping[str, Any] | BaseModel,
    proposed: Mapping[str, Any] | BaseModel,
) -> DiffResult:
    original_fields = _as_fields(original)
    proposed_fields = _as_fields(proposed)
    result = DiffResult()

    for key, value in proposed_fields.items():
        if key in IDENTITY_FIELDS:
            continue
        if key not in original_fields:
            result.added[key] = value
        elif _canonical(original_fields[key]) != _canonical(value):
            result.modified[key] = FieldChange(from_=original_fields[key], to=value)

    for key, value in original_fields.items():
        if key in IDENTITY_FIELDS:
            continue
        if key not in proposed_fields:
            result.removed[key] = value

    return result


def format_diff(result: DiffResult) -> str:
    lines: list[str] = []
    if result.added:
        lines.append("Added:")
        lines.extend(f"+ {key}: {_render(value)}" for key, value in result.added.items())
        lines.append("")
    if result.modified:
        lines.append("Modified:")
        for key, change in result.modified.items():
            lines.append(f"~ {key}:")
            lines.append(f"  From: {_render(change.from_)}")
            lines.append(f"  To:   {_render(change.to)}")
        lines.append("")
    if result.removed:
        lines.append("Removed:")
        lines.extend(f"- {key}: {_render(value)}" for key, value in result.removed.items())
    return "\n".join(lines)


def diff_summary(result: DiffResult) -> str:
    return (
        f"{len(result.added)} added, "
        f"{len(result.modified)} modified, "
        f"{len(result.removed)} removed"
    )


def _as_fields(entity: Mapping[str, Any] | BaseModel) -> dict[str, Any]:
    if isinstance(entity, BaseModel):
        return entity.model_dump(mode="json")
    return dict(entity)


def _canonical(value: Any) -> str:
    # Object key order is irrelevant, list order is not.
    return json.dumps(value, sort_keys=True, default=str)


def _render(value: Any) -> str:
    return json.dumps(value, default=str, ensure_ascii=False)
