"""
Task Record Store

One markdown document per task under paths.tasks_dir, keyed by a
zero-padded id (TASK_007.md). The active task is named by a single
`@<tasks_dir>/TASK_NNN.md` reference in the project context file;
`@<no_active_task_file>` in its place means no task is active.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field, field_validator

from tasktrack.config_loader import TrackConfig

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M"
_TASK_FILE = re.compile(r"^TASK_(\d+)\.md$")


class TaskDocumentError(ValueError):
    pass


class InvalidTransition(ValueError):
    pass


class TaskStatus(str, Enum):
    PLANNING = "planning"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"


ALLOWED_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PLANNING: {TaskStatus.IN_PROGRESS},
    TaskStatus.IN_PROGRESS: {TaskStatus.BLOCKED, TaskStatus.COMPLETED},
    TaskStatus.BLOCKED: {TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED},
    TaskStatus.COMPLETED: set(),
}


def format_task_id(task_id: int | str) -> str:
    """7 -> '007', 'TASK_12' -> '012'."""
    digits = re.sub(r"\D", "", str(task_id))
    if not digits:
        raise ValueError(f"Not a task id: {task_id!r}")
    return f"{int(digits):03d}"


def one_line(text: str) -> str:
    """Collapse all whitespace runs, newlines included, to single spaces."""
    return " ".join(str(text).split())


class Requirement(BaseModel):
    text: str
    done: bool = False

    @field_validator("text")
    @classmethod
    def _single_line(cls, v: str) -> str:
        return one_line(v)


class IssueRef(BaseModel):
    number: int
    url: str = ""


class TaskRecord(BaseModel):
    id: int
    title: str
    purpose: str = ""
    status: TaskStatus = TaskStatus.PLANNING
    requirements: list[Requirement] = Field(default_factory=list)
    success_criteria: list[str] = Field(default_factory=list)
    current_focus: str = ""
    open_questions: list[str] = Field(default_factory=list)
    completion_summary: str = ""
    branch_name: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    external_issue: IssueRef | None = None

    # Rendered as a metadata line or list items, which hold a single line each.
    @field_validator("title", "purpose")
    @classmethod
    def _single_line(cls, v: str) -> str:
        return one_line(v)

    @field_validator("success_criteria", "open_questions")
    @classmethod
    def _single_line_items(cls, items: list[str]) -> list[str]:
        return [one_line(i) for i in items if one_line(i)]

    @property
    def padded_id(self) -> str:
        return format_task_id(self.id)

    @property
    def label(self) -> str:
        return f"TASK_{self.padded_id}"

    def transition(self, new_status: TaskStatus) -> None:
        new_status = TaskStatus(new_status)
        if new_status == self.status:
            return
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"{self.label}: cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def complete(self, summary: str, now: datetime | None = None) -> None:
        if self.status == TaskStatus.COMPLETED:
            raise InvalidTransition(f"{self.label} is already completed")
        self.transition(TaskStatus.COMPLETED)
        self.completed_at = now or datetime.now()
        self.completion_summary = summary.strip()


# ---------------------------------------------------------------------------
# Document format
# ---------------------------------------------------------------------------

def _bullets(items: list[str]) -> list[str]:
    return [f"- {one_line(item)}" for item in items] or ["- None"]


def render_task(record: TaskRecord) -> str:
    lines = [f"# {one_line(record.title)}", ""]
    lines += [f"**Purpose:** {one_line(record.purpose)}", ""]
    lines.append(f"**Status:** {record.status.value}")
    if record.started_at:
        lines.append(f"**Started:** {record.started_at.strftime(TIMESTAMP_FORMAT)}")
    if record.completed_at:
        lines.append(f"**Completed:** {record.completed_at.strftime(TIMESTAMP_FORMAT)}")
    lines.append(f"**Task ID:** {record.padded_id}")
    if record.branch_name:
        lines.append(f"**Branch:** {record.branch_name}")
    if record.external_issue:
        lines.append("")
        lines.append(f"<!-- github_issue: {record.external_issue.number} -->")
        if record.external_issue.url:
            lines.append(f"<!-- github_url: {record.external_issue.url} -->")

    lines += ["", "## Requirements"]
    lines += [f"- [{'x' if r.done else ' '}] {one_line(r.text)}" for r in record.requirements]
    lines += ["", "## Success Criteria"]
    lines += _bullets(record.success_criteria)
    lines += ["", "## Current Focus", record.current_focus or "Not started"]
    lines += ["", "## Open Questions"]
    lines += _bullets(record.open_questions)
    if record.status == TaskStatus.COMPLETED or record.completion_summary:
        lines += ["", "## Completion Summary", record.completion_summary or "Completed."]
    return "\n".join(lines).rstrip() + "\n"


_META = re.compile(r"^\*\*(Purpose|Status|Started|Completed|Task ID|Branch):\*\*\s*(.*)$")
_ISSUE = re.compile(r"<!--\s*github_issue:\s*(\d+)\s*-->")
_ISSUE_URL = re.compile(r"<!--\s*github_url:\s*(\S+)\s*-->")
_CHECKBOX = re.compile(r"^[-*]\s+\[( |x|X)\]\s+(.*)$")
_BULLET = re.compile(r"^[-*]\s+(.*)$")


def _parse_time(value: str) -> datetime | None:
    try:
        return datetime.strptime(value.strip(), TIMESTAMP_FORMAT)
    except ValueError:
        return None


def _list_items(lines: list[str]) -> list[str]:
    items = []
    for line in lines:
        match = _CHECKBOX.match(line) or _BULLET.match(line)
        if match:
            item = match.group(match.lastindex).strip()
            if item and item.lower() != "none":
                items.append(item)
    return items


def parse_task(text: str, task_id: int | None = None) -> TaskRecord:
    """Parse a task document. Raises TaskDocumentError when it has no title or id."""
    title = ""
    meta: dict[str, str] = {}
    sections: dict[str, list[str]] = {}
    current: str | None = None

    for raw in text.splitlines():
        line = raw.rstrip()
        if line.startswith("# ") and not title and current is None:
            title = line[2:].strip()
            continue
        if line.startswith("## "):
            current = line[3:].strip()
            sections[current] = []
            continue
        if current is not None:
            sections[current].append(line.strip())
            continue
        match = _META.match(line.strip())
        if match:
            meta[match.group(1)] = match.group(2).strip()

    if not title:
        raise TaskDocumentError("task document has no title")

    if "Task ID" in meta:
        try:
            task_id = int(format_task_id(meta["Task ID"]))
        except ValueError as e:
            raise TaskDocumentError(str(e)) from e
    if task_id is None:
        raise TaskDocumentError("task document has no Task ID")

    try:
        status = TaskStatus(meta.get("Status", "planning").strip().lower())
    except ValueError as e:
        raise TaskDocumentError(f"unknown status {meta.get('Status')!r}") from e

    requirements = []
    for line in sections.get("Requirements", []):
        match = _CHECKBOX.match(line)
        if match:
            requirements.append(Requirement(text=match.group(2).strip(), done=match.group(1) != " "))
        elif _BULLET.match(line):
            requirements.append(Requirement(text=_BULLET.match(line).group(1).strip()))

    issue = None
    issue_match = _ISSUE.search(text)
    if issue_match:
        url_match = _ISSUE_URL.search(text)
        issue = IssueRef(number=int(issue_match.group(1)), url=url_match.group(1) if url_match else "")

    focus = "\n".join(sections.get("Current Focus", [])).strip()
    return TaskRecord(
        id=task_id,
        title=title,
        purpose=meta.get("Purpose", ""),
        status=status,
        requirements=requirements,
        success_criteria=_list_items(sections.get("Success Criteria", [])),
        current_focus="" if focus == "Not started" else focus,
        open_questions=_list_items(sections.get("Open Questions", [])),
        completion_summary="\n".join(sections.get("Completion Summary", [])).strip(),
        branch_name=meta.get("Branch") or None,
        started_at=_parse_time(meta.get("Started", "")),
        completed_at=_parse_time(meta.get("Completed", "")),
        external_issue=issue,
    )


# ---------------------------------------------------------------------------
# Active task pointer
# ---------------------------------------------------------------------------

class ActiveTaskPointer:
    """The single `@...` reference in the context file that names the active task."""

    def __init__(self, context_file: Path, tasks_dir: str, no_active_task_file: str):
        self.context_file = context_file
        self.tasks_ref = tasks_dir.strip("/")
        self.no_active_ref = f"@{no_active_task_file}"
        self._pattern = re.compile(rf"@{re.escape(self.tasks_ref)}/TASK_(\d+)\.md")

    def _ref(self, task_id: int | str) -> str:
        return f"@{self.tasks_ref}/TASK_{format_task_id(task_id)}.md"

    def get(self) -> int | None:
        if not self.context_file.exists():
            return None
        match = self._pattern.search(self.context_file.read_text())
        return int(match.group(1)) if match else None

    def set(self, task_id: int | str) -> None:
        ref = self._ref(task_id)
        if not self.context_file.exists():
            self.context_file.parent.mkdir(parents=True, exist_ok=True)
            self.context_file.write_text(f"# Project Context\n\n## Active Task\n{ref}\n")
            return
        content = self.context_file.read_text()
        if self._pattern.search(content):
            content = self._pattern.sub(ref, content, count=1)
        elif self.no_active_ref in content:
            content = content.replace(self.no_active_ref, ref, 1)
        else:
            content = content.rstrip() + f"\n\n## Active Task\n{ref}\n"
        self.context_file.write_text(content)

    def clear(self) -> None:
        if not self.context_file.exists():
            return
        content = self.context_file.read_text()
        self.context_file.write_text(self._pattern.sub(self.no_active_ref, content))


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class TaskStore:

    def __init__(self, repo_path: Path, config: TrackConfig | None = None):
        self.repo_path = repo_path.resolve()
        self.config = config or TrackConfig()
        paths = self.config.paths
        self.tasks_dir = self.repo_path / paths.tasks_dir
        self.plans_dir = self.repo_path / paths.plans_dir
        self.no_active_file = self.repo_path / paths.no_active_task_file
        self.context_file = self.repo_path / paths.context_file
        self.pointer = ActiveTaskPointer(self.context_file, paths.tasks_dir, paths.no_active_task_file)

    def task_path(self, task_id: int | str) -> Path:
        return self.tasks_dir / f"TASK_{format_task_id(task_id)}.md"

    def relative(self, path: Path) -> str:
        return path.relative_to(self.repo_path).as_posix()

    def exists(self, task_id: int | str) -> bool:
        return self.task_path(task_id).exists()

    def load(self, task_id: int | str) -> TaskRecord:
        path = self.task_path(task_id)
        if not path.exists():
            raise FileNotFoundError(f"No task document at {path}")
        return parse_task(path.read_text(), task_id=int(format_task_id(task_id)))

    def save(self, record: TaskRecord) -> Path:
        path = self.task_path(record.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render_task(record))
        logger.debug(f"[TASKS] Saved {record.label} ({record.status.value})")
        return path

    def next_id(self) -> int:
        if not self.tasks_dir.exists():
            return 1
        ids = [
            int(m.group(1))
            for p in self.tasks_dir.iterdir()
            if (m := _TASK_FILE.match(p.name))
        ]
        return max(ids, default=0) + 1

    def active_task_id(self) -> int | None:
        return self.pointer.get()

    def save_plan(self, task_id: int | str, plan_text: str) -> Path:
        """Archive the raw approved plan next to the task documents."""
        path = self.plans_dir / f"TASK_{format_task_id(task_id)}_plan.md"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(plan_text.rstrip() + "\n")
        return path

    def append_no_active_entry(self, record: TaskRecord) -> Path:
        if not self.no_active_file.exists():
            self.no_active_file.parent.mkdir(parents=True, exist_ok=True)
            self.no_active_file.write_text(
                "# No Active Task\n\nNo task is currently in progress.\n\n## Recently Completed\n"
            )
        when = (record.completed_at or datetime.now()).strftime(TIMESTAMP_FORMAT)
        with open(self.no_active_file, "a") as f:
            f.write(f"- {record.label}: {record.title} (completed {when})\n")
        return self.no_active_file

    def set_status(self, task_id: int | str, status: TaskStatus) -> TaskRecord:
        """Move a task between in_progress and blocked (or out of planning)."""
        status = TaskStatus(status)
        if status == TaskStatus.COMPLETED:
            raise InvalidTransition("completion goes through the completion controller")
        record = self.load(task_id)
        record.transition(status)
        self.save(record)
        logger.info(f"[TASKS] {record.label} -> {status.value}")
        return record
