"""
Completion Controller

Finishes the active task:

  validate → squash WIP history → update documents → integrate

Validation is a gate: a failing check stops everything before any git
mutation. Squashing is an optimization with a precondition; when the
precondition fails the squash is skipped and the reason noted. The
integration path (direct merge or pull-request push) is chosen once,
from configuration, before anything runs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Union

from loguru import logger
from pydantic import BaseModel, Field

from tasktrack.agents import AgentContext
from tasktrack.agents.archivist import ArchivistAgent, CompletionSummary
from tasktrack.config_loader import TrackConfig
from tasktrack.github import GitHubClient
from tasktrack.state import CommitRef, GitSessionState, Outcome
from tasktrack.tasks import TaskDocumentError, TaskRecord, TaskStatus, TaskStore, format_task_id
from tasktrack.validator import CheckResult, Validator
from tasktrack.workspace.branches import BranchManager
from tasktrack.workspace.git import GitError
from tasktrack.workspace.inspector import RepoInspector

SKIP_DIRTY = "uncommitted changes"
SKIP_HUMAN_COMMITS = "non-WIP commits after baseline"
SKIP_NO_BASELINE = "no baseline commit"
SKIP_NOTHING = "no WIP commits to squash"


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

class GitActions(BaseModel):
    squash_performed: bool = False
    squash_commit: str | None = None
    squash_skipped_reason: str | None = None
    documents_commit: str | None = None
    integration: str = ""
    merged: bool = False
    pushed: bool = False
    pr_url: str | None = None
    errors: list[str] = Field(default_factory=list)


class CompletionReport(BaseModel):
    task_id: int | None = None
    outcome: Outcome
    validation_results: list[CheckResult] = Field(default_factory=list)
    git_actions: GitActions = Field(default_factory=GitActions)
    document_updates: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    message: str = ""


# ---------------------------------------------------------------------------
# Squash planning
# ---------------------------------------------------------------------------

class SquashDecision(BaseModel):
    should_squash: bool
    reason: str = ""
    baseline: str | None = None
    wip_count: int = 0


def plan_squash(state: GitSessionState, range_commits: list[CommitRef]) -> SquashDecision:
    """Decide whether baseline..HEAD may be collapsed into one commit.

    Allowed only when every commit in the range carries the WIP marker,
    the tree is clean, and there is at least one commit to collapse.
    """
    if state.baseline_commit is None:
        return SquashDecision(should_squash=False, reason=SKIP_NO_BASELINE)
    if state.has_uncommitted_changes:
        return SquashDecision(should_squash=False, reason=SKIP_DIRTY, baseline=state.baseline_commit)
    if any(not c.is_wip for c in range_commits):
        return SquashDecision(should_squash=False, reason=SKIP_HUMAN_COMMITS, baseline=state.baseline_commit)
    if not range_commits:
        return SquashDecision(should_squash=False, reason=SKIP_NOTHING, baseline=state.baseline_commit)
    return SquashDecision(
        should_squash=True,
        baseline=state.baseline_commit,
        wip_count=len(range_commits),
    )


# ---------------------------------------------------------------------------
# Integration variants
# ---------------------------------------------------------------------------

class DirectMerge(BaseModel):
    kind: Literal["direct_merge"] = "direct_merge"

    def apply(self, controller: "CompletionController", record: TaskRecord,
              summary: CompletionSummary, report: CompletionReport) -> None:
        if not controller.config.hook_enabled("git_branching"):
            report.notes.append("branching disabled: no merge")
            return
        current = controller.inspector.current_branch()
        default = controller.inspector.default_branch()
        if not current or current == default:
            report.notes.append(f"already on {default}: no merge")
            return
        controller.branches.merge_task_branch(current, default)
        report.git_actions.merged = True


class PullRequestPush(BaseModel):
    kind: Literal["pull_request"] = "pull_request"

    def apply(self, controller: "CompletionController", record: TaskRecord,
              summary: CompletionSummary, report: CompletionReport) -> None:
        controller.branches.push_current_branch()
        report.git_actions.pushed = True

        if controller.github is None:
            report.warnings.append("pull request not created: GitHub client unavailable")
            return
        problems = controller.github.validation_errors()
        if problems:
            report.warnings.append(f"pull request not created: {problems[0]}")
            return
        body = record.completion_summary
        if record.external_issue:
            body += f"\n\nCloses #{record.external_issue.number}"
        url = controller.github.create_pull_request(
            title=f"{record.label}: {record.title}",
            body=body,
            base=controller.inspector.default_branch(),
        )
        if url is None:
            report.warnings.append("pull request creation failed")
            return
        report.git_actions.pr_url = url


Integration = Union[DirectMerge, PullRequestPush]


def select_integration(config: TrackConfig) -> Integration:
    if config.pull_request_workflow:
        return PullRequestPush()
    return DirectMerge()


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

class CompletionController:
    """Runs the validate-to-integrate sequence that finishes a task."""

    def __init__(
        self,
        config: TrackConfig,
        store: TaskStore,
        inspector: RepoInspector,
        branches: BranchManager,
        validator: Validator,
        archivist: ArchivistAgent,
        github: GitHubClient | None = None,
    ):
        self.config = config
        self.store = store
        self.inspector = inspector
        self.branches = branches
        self.validator = validator
        self.archivist = archivist
        self.github = github

    def _blocked(self, task_id: int | None, message: str, **extra) -> CompletionReport:
        logger.warning(f"[COMPLETE] Blocked: {message}")
        return CompletionReport(task_id=task_id, outcome="blocked", message=message, **extra)

    async def complete(self, task_id: int | str | None = None, now: datetime | None = None) -> CompletionReport:
        if not self.config.hook_enabled("complete_task"):
            return CompletionReport(outcome="noop", message="task completion is disabled")

        resolved = int(format_task_id(task_id)) if task_id is not None else self.store.active_task_id()
        if resolved is None:
            return self._blocked(None, "no active task")

        try:
            record = self.store.load(resolved)
        except FileNotFoundError:
            return self._blocked(resolved, f"no task document for TASK_{format_task_id(resolved)}")
        except TaskDocumentError as e:
            return self._blocked(resolved, f"task document unreadable: {e}")

        if record.status == TaskStatus.COMPLETED:
            return CompletionReport(
                task_id=resolved, outcome="noop", notes=["already completed"],
                message=f"{record.label} is already completed",
            )
        if record.status == TaskStatus.PLANNING:
            return self._blocked(resolved, f"{record.label} is still in planning; nothing to complete")

        integration = select_integration(self.config)
        logger.info(f"[COMPLETE] {record.label}: validating ({integration.kind})")

        # 1. Validate. Nothing below runs unless every check passes.
        results = await self.validator.run_all()
        failed = [r.name for r in results if not r.passed]
        if failed:
            return self._blocked(
                resolved,
                f"validation failed: {', '.join(failed)}",
                validation_results=results,
            )

        report = CompletionReport(task_id=resolved, outcome="done", validation_results=results)
        report.git_actions.integration = integration.kind

        # 2. Squash
        state = self.inspector.session_state()
        range_commits = self.inspector.commits_between(state.baseline_commit, "HEAD") if state.baseline_commit else []
        decision = plan_squash(state, range_commits)

        summary = await self.archivist.run(AgentContext(
            task_id=record.label,
            title=record.title,
            repo_path=str(self.store.repo_path),
            requirements=[r.text for r in record.requirements],
            extra={
                "wip_count": decision.wip_count,
                "wip_subjects": [c.subject for c in reversed(range_commits)],
            },
        ))

        if decision.should_squash:
            try:
                sha = self.branches.squash_onto(decision.baseline, summary.commit_message)
            except GitError as e:
                report.git_actions.errors.append(f"squash failed: {e.stderr or e}")
                report.outcome = "failed"
                report.message = "squash failed; history restored and task left open"
                logger.error(f"[COMPLETE] {report.message}: {e}")
                return report
            report.git_actions.squash_performed = True
            report.git_actions.squash_commit = sha
            logger.info(f"[COMPLETE] Squashed {decision.wip_count} WIP commits into {sha[:8]}")
        else:
            report.git_actions.squash_skipped_reason = decision.reason
            report.notes.append(f"squash skipped: {decision.reason}")
            if decision.reason != SKIP_NOTHING:
                report.warnings.append(f"squash skipped: {decision.reason}")
            logger.info(f"[COMPLETE] Squash skipped: {decision.reason}")

        # 3. Documents
        record.complete(summary.summary, now=now)
        updated = [self.store.save(record)]
        if self.store.context_file.exists():
            self.store.pointer.clear()
            updated.append(self.store.context_file)
        updated.append(self.store.append_no_active_entry(record))
        report.document_updates = [self.store.relative(p) for p in updated]

        if self.config.git.commit_documents:
            try:
                report.git_actions.documents_commit = self.branches.commit_paths(
                    f"docs: mark {record.label} as completed", report.document_updates,
                )
            except GitError as e:
                report.git_actions.errors.append(f"document commit failed: {e.stderr or e}")

        # 4. Integrate
        if not report.git_actions.errors:
            try:
                integration.apply(self, record, summary, report)
            except GitError as e:
                report.git_actions.errors.append(f"{integration.kind} failed: {e.stderr or e}")

        if report.git_actions.errors:
            report.outcome = "failed"
        elif report.warnings:
            report.outcome = "done_with_warnings"
        report.message = report.message or f"{record.label} completed"
        logger.info(f"[COMPLETE] {record.label}: {report.outcome}")
        return report
