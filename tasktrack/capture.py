"""
Plan Capture

Turns an approved free-text plan into the active task document and,
when branching is enabled, a task branch. Capturing again for a task
that is not yet completed rewrites that same document.
"""

from __future__ import annotations

from datetime import datetime

from loguru import logger
from pydantic import BaseModel, Field

from tasktrack.agents import AgentContext
from tasktrack.agents.planner import PlannerAgent
from tasktrack.config_loader import TrackConfig
from tasktrack.github import GitHubClient
from tasktrack.state import Outcome
from tasktrack.tasks import (
    IssueRef,
    Requirement,
    TaskDocumentError,
    TaskRecord,
    TaskStatus,
    TaskStore,
    format_task_id,
)
from tasktrack.workspace.branches import BranchManager
from tasktrack.workspace.git import GitError


class CaptureReport(BaseModel):
    outcome: Outcome
    task_id: int | None = None
    task_path: str = ""
    branch_name: str | None = None
    issue: IssueRef | None = None
    generated: bool = False
    warnings: list[str] = Field(default_factory=list)
    message: str = ""


def _issue_body(record: TaskRecord) -> str:
    lines = [record.purpose, "", "## Requirements"]
    lines += [f"- [ ] {r.text}" for r in record.requirements]
    if record.success_criteria:
        lines += ["", "## Success Criteria"] + [f"- {c}" for c in record.success_criteria]
    return "\n".join(lines).strip()


class PlanCapture:
    """Turns an approved plan into the active task document."""

    def __init__(
        self,
        config: TrackConfig,
        store: TaskStore,
        planner: PlannerAgent,
        branches: BranchManager,
        github: GitHubClient | None = None,
    ):
        self.config = config
        self.store = store
        self.planner = planner
        self.branches = branches
        self.github = github

    def _resolve_task_id(self, task_id: int | str | None) -> int:
        if task_id is not None:
            return int(format_task_id(task_id))
        active = self.store.active_task_id()
        if active is not None and self.store.exists(active):
            try:
                if self.store.load(active).status != TaskStatus.COMPLETED:
                    return active
            except TaskDocumentError as e:
                logger.warning(f"[CAPTURE] Active task document unreadable: {e}")
        return self.store.next_id()

    def _load_existing(self, task_id: int, warnings: list[str]) -> TaskRecord | None:
        if not self.store.exists(task_id):
            return None
        try:
            return self.store.load(task_id)
        except TaskDocumentError as e:
            warnings.append(f"existing task document could not be parsed and was replaced: {e}")
            return None

    async def capture(self, plan_text: str, task_id: int | str | None = None) -> CaptureReport:
        if not self.config.hook_enabled("capture_plan"):
            return CaptureReport(outcome="noop", message="plan capture is disabled")
        if not plan_text or not plan_text.strip():
            return CaptureReport(outcome="blocked", message="plan text is empty")

        warnings: list[str] = []
        resolved = self._resolve_task_id(task_id)
        existing = self._load_existing(resolved, warnings)
        if existing and existing.status == TaskStatus.COMPLETED:
            return CaptureReport(
                outcome="blocked",
                task_id=resolved,
                task_path=str(self.store.task_path(resolved)),
                message=f"{existing.label} is already completed",
            )

        label = f"TASK_{format_task_id(resolved)}"
        logger.info(f"[CAPTURE] Capturing plan as {label}")
        self.store.save_plan(resolved, plan_text)

        draft = await self.planner.run(AgentContext(
            task_id=label,
            objective=plan_text,
            repo_path=str(self.store.repo_path),
        ))
        if not draft.generated:
            warnings.append("task document built from plan text (generation unavailable)")

        done_before = {r.text for r in existing.requirements if r.done} if existing else set()
        record = TaskRecord(
            id=resolved,
            title=draft.title,
            purpose=draft.purpose,
            status=existing.status if existing else TaskStatus.PLANNING,
            requirements=[Requirement(text=r, done=r in done_before) for r in draft.requirements],
            success_criteria=draft.success_criteria,
            current_focus=draft.current_focus,
            open_questions=draft.open_questions,
            branch_name=existing.branch_name if existing else None,
            started_at=(existing.started_at if existing else None) or datetime.now(),
            external_issue=existing.external_issue if existing else None,
        )
        if record.status == TaskStatus.PLANNING:
            record.transition(TaskStatus.IN_PROGRESS)

        path = self.store.save(record)
        self.store.pointer.set(resolved)

        self._maybe_create_issue(record, warnings)
        await self._maybe_create_branch(record, plan_text, warnings)
        path = self.store.save(record)

        outcome: Outcome = "done_with_warnings" if warnings else "done"
        for w in warnings:
            logger.warning(f"[CAPTURE] {w}")
        logger.info(f"[CAPTURE] {record.label} captured ({outcome})")
        return CaptureReport(
            outcome=outcome,
            task_id=resolved,
            task_path=str(path),
            branch_name=record.branch_name,
            issue=record.external_issue,
            generated=draft.generated,
            warnings=warnings,
            message=f"{record.label}: {record.title}",
        )

    def _maybe_create_issue(self, record: TaskRecord, warnings: list[str]) -> None:
        gh = self.config.features.github_integration
        if not (gh.enabled and gh.auto_create_issues) or record.external_issue or self.github is None:
            return
        problems = self.github.validation_errors()
        if problems:
            warnings.append(f"issue not created: {problems[0]}")
            return
        issue = self.github.create_issue(f"{record.label}: {record.title}", _issue_body(record))
        if issue is None:
            warnings.append("issue creation failed")
            return
        record.external_issue = issue

    async def _maybe_create_branch(self, record: TaskRecord, plan_text: str, warnings: list[str]) -> None:
        if not self.config.hook_enabled("git_branching") or record.branch_name:
            return

        gh = self.config.features.github_integration
        if gh.enabled and gh.use_issue_branches and record.external_issue and self.github is not None:
            name = self.github.create_issue_branch(record.external_issue.number)
            if name:
                record.branch_name = name
                return
            warnings.append("issue branch creation failed; falling back to a generated branch")

        name = await self.branches.generate_branch_name(plan_text, record.id)
        try:
            self.branches.create_task_branch(name)
        except GitError as e:
            warnings.append(f"branch creation failed: {e.stderr or e}")
            return
        record.branch_name = name
