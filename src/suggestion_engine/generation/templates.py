"""Prompt templates for the three suggestion kinds."""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


class TemplateVariable(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    required: bool = True
    default: str | None = None


class PromptTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    system: str
    user: str
    variables: tuple[TemplateVariable, ...] = Field(default_factory=tuple)
    temperature: float = 0.7
    max_tokens: int = 1000


def render(template: PromptTemplate, variables: dict[str, Any]) -> list[dict[str, str]]:
    """Fill ``{{name}}`` placeholders and return chat messages.

    Blank values fall back to the variable default; a required variable
    without a value raises ``ValueError``.
    """
    values: dict[str, str] = {}
    for variable in template.variables:
        raw = variables.get(variable.name)
        text = str(raw).strip() if raw is not None else ""
        if not text:
            if variable.default is not None:
                text = variable.default
            elif variable.required:
                raise ValueError(
                    f"Template {template.id} requires variable '{variable.name}'"
                )
        values[variable.name] = text

    def substitute(match: re.Match[str]) -> str:
        return values.get(match.group(1), "")

    return [
        {"role": "system", "content": template.system},
        {"role": "user", "content": _PLACEHOLDER.sub(substitute, template.user)},
    ]


BOARD_SUGGESTION = PromptTemplate(
    id="board-suggestion",
    system="""You are a project planning assistant. Turn the user's project description
into a kanban board with columns, tasks and subtasks. Match the vocabulary to
the user's technical level.

Explain your reasoning in first person in "thoughtProcess".

Respond with valid JSON only, using this structure:
{
  "thoughtProcess": "string",
  "boardName": "string",
  "columns": [
    {
      "name": "string",
      "position": 0,
      "tasks": [
        {
          "title": "string",
          "description": "string",
          "position": 0,
          "subtasks": [
            {"title": "string", "description": "string", "completed": false}
          ]
        }
      ]
    }
  ]
}""",
    user="""I need a board for this project:

{{projectDescription}}

Please suggest a board structure with columns and tasks.""",
    variables=(TemplateVariable(name="projectDescription"),),
    temperature=0.7,
    max_tokens=2000,
)

TASK_BREAKDOWN = PromptTemplate(
    id="task-breakdown",
    system="""You are a task planning assistant. Break the user's task into clear,
actionable subtasks. Match the vocabulary to the user's technical level.

Explain your reasoning in first person in "thoughtProcess".

Respond with valid JSON only, using this structure:
{
  "task": {"title": "string", "description": "string"},
  "thoughtProcess": "string",
  "subtasks": [
    {"title": "string", "description": "string", "completed": false}
  ]
}""",
    user="""I need to break down this task:

Title: {{taskTitle}}
Description: {{taskDescription}}

Please break this down into smaller subtasks.""",
    variables=(
        TemplateVariable(name="taskTitle"),
        TemplateVariable(
            name="taskDescription",
            required=False,
            default="No detailed description provided.",
        ),
    ),
    temperature=0.7,
    max_tokens=1500,
)

TASK_IMPROVEMENT = PromptTemplate(
    id="task-improvement",
    system="""You are a task writing assistant. Rewrite the user's task so the title
is specific and the description says what done looks like.

Respond with valid JSON only, using this structure:
{
  "thoughtProcess": "string",
  "title": "string",
  "description": "string"
}""",
    user="""Please improve this task:

Title: {{taskTitle}}
Description: {{taskDescription}}""",
    variables=(
        TemplateVariable(name="taskTitle"),
        TemplateVariable(
            name="taskDescription",
            required=False,
            default="No description provided.",
        ),
    ),
    temperature=0.7,
    max_tokens=1000,
)

TEMPLATES: dict[str, PromptTemplate] = {
    template.id: template for template in (BOARD_SUGGESTION, TASK_BREAKDOWN, TASK_IMPROVEMENT)
}
