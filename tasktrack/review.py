"""
Session Reviewer

Runs at every session pause. Stages the working tree, asks the review
agent whether the diff still serves the active task, then records the
diff as one WIP commit. It never reverts or discards work: a deviation
verdict is only reported.
"""

from __future__ import annotations

from loguru import logger
from pydantic import BaseModel, Field

from tasktrack.agents import AgentContext
from tasktrack.agents.reviewer import ReviewAgent
from tasktrack.config_loader import TrackConfig
from tasktrack.diffing import filter_doc_changes, fit_diff_to_budget
from tasktrack.state import Outcome, ReviewVerdict, format_wip_subject
from tasktrack.tasks import TaskDocumentError, TaskStore
from tasktrack.workspace.branches import BranchManager
from tasktrack.workspace.git import GitError
from tasktrack.workspace.inspector import RepoInspector

FALLBACK_COMMIT_MESSAGE = "wip: session checkpoint"


class ReviewReport(BaseModel):
    outcome: Outcome
    task_id: int | None = None
    verdict: ReviewVerdict | None = None
    commit_sha: str | None = None
    diff_summarized: bool = False
    warnings: list[str] = Field(default_factory=list)
    message: str = ""


class SessionReviewer:
    """Reviews the session's changes against the active task and records a WIP commit."""

    def __init__(
        self,
        config: TrackConfig,
        store: TaskStore,
        inspector: RepoInspector,
        branches: BranchManager,
        agent: ReviewAgent,
    ):
        self.config = config
        self.store = store
        self.inspector = inspector
        self.branches = branches
        self.agent = agent

    async def review(self, force: bool = False) -> ReviewReport:
        """Review the current session.

        With force=True a clean tree is still reviewed, using the
        committed range baseline..HEAD; nothing is committed then.
        """
        if not self.config.hook_enabled("stop_review"):
            return ReviewReport(outcome="noop", message="session review is disabled")

        task_id = self.store.active_task_id()
        if task_id is None:
            return ReviewReport(outcome="noop", message="no active task")
        try:
            record = self.store.load(task_id)
        except (FileNotFoundError, TaskDocumentError) as e:
            logger.warning(f"[REVIEW] Active task unreadable: {e}")
            return ReviewReport(outcome="noop", task_id=task_id, message=f"active task unreadable: {e}")

        state = self.inspector.session_state()
        if not state.has_uncommitted_changes and not force:
            logger.debug("[REVIEW] Nothing to review")
            return ReviewReport(outcome="noop", task_id=task_id, message="no changes since last review")

        if state.has_uncommitted_changes:
            self.branches.stage_all()
            diff = self.inspector.staged_diff()
        else:
            diff = self.inspector.diff_range(state.baseline_commit, "HEAD")

        if not diff.strip():
            return ReviewReport(outcome="noop", task_id=task_id, message="no changes since last review")

        filtered = filter_doc_changes(diff)
        summarized = False
        if filtered.doc_only:
            logger.info(f"[REVIEW] {record.label}: documentation-only changes")
            verdict = ReviewVerdict(
                classification="on_track",
                summary="Documentation-only changes",
                generated_commit_message=f"docs: update {record.label} documentation",
            )
        else:
            text, summarized = fit_diff_to_budget(filtered.code, self.config.limits.review_diff_budget)
            if summarized:
                logger.info(f"[REVIEW] Diff of {len(filtered.code)} chars summarized per file")
            verdict = await self.agent.run(AgentContext(
                task_id=record.label,
                title=record.title,
                repo_path=str(self.store.repo_path),
                requirements=[r.text for r in record.requirements],
                diff=text,
                diff_summarized=summarized,
            ))

        warnings: list[str] = []
        commit_sha = None
        if state.has_uncommitted_changes:
            subject = format_wip_subject(record.label, verdict.generated_commit_message or FALLBACK_COMMIT_MESSAGE)
            try:
                commit_sha = self.branches.commit(subject)
                logger.info(f"[REVIEW] Recorded {commit_sha[:8]}: {subject}")
            except GitError as e:
                warnings.append(f"WIP commit failed: {e.stderr or e}")
                logger.warning(f"[REVIEW] WIP commit failed, reporting verdict only: {e}")

        if verdict.classification != "on_track":
            logger.warning(f"[REVIEW] {record.label}: {verdict.classification}: {verdict.summary}")

        return ReviewReport(
            outcome="done_with_warnings" if warnings else "done",
            task_id=task_id,
            verdict=verdict,
            commit_sha=commit_sha,
            diff_summarized=summarized,
            warnings=warnings,
            message=verdict.summary,
        )
