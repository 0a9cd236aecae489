"""
The Archivist

Writes the completion record for a finished task: the message for the
squash commit and the Completion Summary body of the task document.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator

from tasktrack.agents import AgentContext, BaseAgent
from tasktrack.parsing import extract_json_object
from tasktrack.router import GenerationResult
from tasktrack.state import WIP_MARKER

_CONVENTIONAL = re.compile(r"^(feat|fix|docs|style|refactor|perf|test|build|ci|chore)(\([^)]*\))?!?:\s+\S")


class CompletionSummary(BaseModel):
    commit_message: str = Field(min_length=1)
    summary: str = ""
    generated: bool = True

    @field_validator("commit_message")
    @classmethod
    def _no_wip_marker(cls, v: str) -> str:
        # The squash commit must never look machine-authored to the next scan
        v = v.replace(WIP_MARKER, "").strip()
        if not v:
            raise ValueError("empty commit message")
        return v


def fallback_summary(context: AgentContext) -> CompletionSummary:
    count = context.extra.get("wip_count", 0)
    subject = f"feat: complete {context.task_id} {context.title}".strip()
    body = f"Squashed {count} WIP commits into final task completion" if count else ""
    done = "\n".join(f"- {r}" for r in context.requirements)
    summary = f"Completed {context.task_id}: {context.title}."
    if done:
        summary += f"\n\nRequirements addressed:\n{done}"
    return CompletionSummary(
        commit_message=f"{subject}\n\n{body}".strip(),
        summary=summary,
        generated=False,
    )


class ArchivistAgent(BaseAgent[CompletionSummary]):
    name = "archivist"
    tier = "haiku"
    max_tokens = 1024

    prompt_template = """Summarize a finished coding task for its final commit.

## Task: {task_id} {title}
### Requirements
{requirements}

### Work-in-progress commits being squashed
{commits}

Respond with ONLY a JSON object:
{{"commit_message": "conventional commit subject (feat|fix|refactor|docs|chore: ...), optional body after a blank line", "summary": "Two to four sentences describing what was delivered"}}"""

    def build_prompt(self, context: AgentContext) -> str:
        commits = context.extra.get("wip_subjects") or []
        return self.prompt_template.format(
            task_id=context.task_id,
            title=context.title,
            requirements="\n".join(f"- {r}" for r in context.requirements) or "- (none listed)",
            commits="\n".join(f"- {c}" for c in commits) or "- (none)",
        )

    def parse_response(self, result: GenerationResult, context: AgentContext) -> CompletionSummary:
        data = extract_json_object(result.text)
        if data is None:
            raise ValueError("no JSON object in archivist response")
        summary = CompletionSummary(
            commit_message=str(data.get("commit_message") or ""),
            summary=str(data.get("summary") or ""),
        )
        subject = summary.commit_message.splitlines()[0]
        if not _CONVENTIONAL.match(subject):
            raise ValueError(f"not a conventional commit subject: {subject!r}")
        if not summary.summary:
            summary.summary = fallback_summary(context).summary
        return summary

    def fallback(self, context: AgentContext, result: GenerationResult) -> CompletionSummary:
        return fallback_summary(context)
