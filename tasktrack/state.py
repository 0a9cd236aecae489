from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, Field

WIP_MARKER = "[wip]"

Outcome = Literal["done", "done_with_warnings", "blocked", "noop", "failed"]
Classification = Literal["on_track", "deviation", "needs_verification", "stuck"]

_EXISTING_PREFIX = re.compile(r"^\s*\[wip\]\s*(TASK_\d+\s*:\s*)?", re.IGNORECASE)


def is_wip_subject(subject: str) -> bool:
    """The literal marker in the subject is the only WIP signal."""
    return WIP_MARKER in subject


def format_wip_subject(task_label: str, message: str) -> str:
    """Build `[wip] TASK_NNN: <message>`, dropping any prefix the message already carries."""
    body = _EXISTING_PREFIX.sub("", message.strip().splitlines()[0] if message.strip() else "")
    body = body.strip() or "wip: session checkpoint"
    return f"{WIP_MARKER} {task_label}: {body}"


class CommitRef(BaseModel):
    sha: str
    subject: str

    @property
    def is_wip(self) -> bool:
        return is_wip_subject(self.subject)


class GitSessionState(BaseModel):
    """Derived view of the repository, recomputed on every invocation."""
    default_branch: str = "main"
    current_branch: str = ""
    head: str | None = None
    baseline_commit: str | None = None
    wip_commits: list[CommitRef] = Field(default_factory=list)
    has_uncommitted_changes: bool = False


class ReviewVerdict(BaseModel):
    classification: Classification = "needs_verification"
    summary: str = ""
    generated_commit_message: str = ""
    details: str = ""
