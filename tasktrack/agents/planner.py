"""
The Planner

Expands an approved free-text plan into the fields of a task document.
Never touches the repository. If the model is unavailable or returns
something unusable, the draft is built straight from the plan text.
"""

from __future__ import annotations

import re

from loguru import logger
from pydantic import BaseModel, Field, field_validator

from tasktrack.agents import AgentContext, BaseAgent
from tasktrack.parsing import extract_json_object
from tasktrack.router import GenerationResult
from tasktrack.tasks import one_line

DEFAULT_REQUIREMENT = "Implement the approved plan as described"


class TaskDraft(BaseModel):
    title: str = Field(min_length=1)
    purpose: str = ""
    requirements: list[str] = Field(min_length=1)
    success_criteria: list[str] = Field(default_factory=list)
    current_focus: str = ""
    open_questions: list[str] = Field(default_factory=list)
    generated: bool = True

    @field_validator("title")
    @classmethod
    def _single_line_title(cls, v: str) -> str:
        v = v.strip().lstrip("#").strip()
        if not v:
            raise ValueError("empty title")
        return v.splitlines()[0][:120]

    @field_validator("purpose")
    @classmethod
    def _single_line_purpose(cls, v: str) -> str:
        return one_line(v)

    @field_validator("requirements", "success_criteria", "open_questions")
    @classmethod
    def _clean_items(cls, items: list[str]) -> list[str]:
        return [one_line(i) for i in items if one_line(i)]


_HEADING = re.compile(r"^#{1,6}\s+(.*)$")
_LIST_ITEM = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(?:\[[ xX]\]\s+)?(.*\S)\s*$")


def draft_from_plan(plan_text: str) -> TaskDraft:
    """Templated draft built from the plan alone, no generation."""
    lines = [l.rstrip() for l in plan_text.strip().splitlines() if l.strip()]
    title = ""
    for line in lines:
        match = _HEADING.match(line.strip())
        if match and match.group(1).strip():
            title = match.group(1).strip()
            break
    if not title and lines:
        title = lines[0].strip().lstrip("#-*0123456789.) ").strip()
    title = (title or "Untitled task")[:120]

    requirements = []
    for line in lines:
        match = _LIST_ITEM.match(line)
        if match:
            requirements.append(match.group(1).strip())

    purpose = next(
        (l.strip() for l in lines if not _HEADING.match(l.strip()) and not _LIST_ITEM.match(l)),
        title,
    )

    return TaskDraft(
        title=title,
        purpose=purpose[:300],
        requirements=requirements or [DEFAULT_REQUIREMENT],
        success_criteria=["All requirements implemented", "Validation checks pass"],
        current_focus=requirements[0] if requirements else "",
        generated=False,
    )


class PlannerAgent(BaseAgent[TaskDraft]):
    name = "planner"
    tier = "sonnet"
    max_tokens = 2048

    prompt_template = """You are turning an approved implementation plan into a task document.

## Approved plan
{plan}

Task ID: {task_id}

You MUST respond with a valid JSON object ONLY. No markdown, no commentary.

Output schema:
{{
  "title": "Short imperative title",
  "purpose": "One or two sentences on why this task exists",
  "requirements": ["Concrete, checkable requirement", "..."],
  "success_criteria": ["Observable condition that proves the task is done"],
  "current_focus": "The first thing to work on",
  "open_questions": ["Anything the plan leaves undecided"]
}}

Rules:
- At least one requirement.
- Only include requirements that the plan actually states or directly implies.
- Do not invent scope."""

    def build_prompt(self, context: AgentContext) -> str:
        return self.prompt_template.format(plan=context.objective, task_id=context.task_id)

    def parse_response(self, result: GenerationResult, context: AgentContext) -> TaskDraft:
        data = extract_json_object(result.text)
        if data is None:
            raise ValueError("no JSON object in planner response")
        draft = TaskDraft(**{k: v for k, v in data.items() if k != "generated"})
        logger.info(f"[CAPTURE] Draft ready: {draft.title!r}, {len(draft.requirements)} requirements")
        return draft

    def fallback(self, context: AgentContext, result: GenerationResult) -> TaskDraft:
        return draft_from_plan(context.objective)
