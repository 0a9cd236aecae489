"""
Composition root.

Each event (plan approved, session paused, task done) is one short-lived
invocation: build a TrackProject for the repo, await one operation,
hand the report back to whatever surface dispatched the event.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from tasktrack.agents.archivist import ArchivistAgent
from tasktrack.agents.planner import PlannerAgent
from tasktrack.agents.reviewer import ReviewAgent
from tasktrack.capture import CaptureReport, PlanCapture
from tasktrack.completion import CompletionController, CompletionReport
from tasktrack.config_loader import TrackConfig, load_config
from tasktrack.github import GitHubClient
from tasktrack.log_setup import configure_logging
from tasktrack.review import ReviewReport, SessionReviewer
from tasktrack.router import Router
from tasktrack.tasks import TaskRecord, TaskStatus, TaskStore
from tasktrack.validator import Validator
from tasktrack.workspace.branches import BranchManager
from tasktrack.workspace.inspector import RepoInspector


class TrackProject:
    """Wires every component for one repository."""

    def __init__(
        self,
        repo_path: Path,
        config: TrackConfig | None = None,
        router: Router | None = None,
        verbose: bool = False,
        setup_logging: bool = True,
    ):
        self.repo_path = Path(repo_path).resolve()
        self.config = config or load_config(self.repo_path)
        if setup_logging:
            configure_logging(self.config, self.repo_path, verbose=verbose)

        limits = self.config.limits
        self.router = router or Router(self.config)
        self.store = TaskStore(self.repo_path, self.config)
        self.inspector = RepoInspector(self.repo_path, self.config)
        self.branches = BranchManager(self.repo_path, self.inspector, self.router, self.config)
        self.validator = Validator(self.repo_path, self.config)

        gh = self.config.features.github_integration
        self.github = GitHubClient(self.repo_path, gh) if gh.enabled else None

        self.capture = PlanCapture(
            self.config,
            self.store,
            PlannerAgent(self.router, timeout=limits.generation_timeout),
            self.branches,
            self.github,
        )
        self.reviewer = SessionReviewer(
            self.config,
            self.store,
            self.inspector,
            self.branches,
            ReviewAgent(self.router, timeout=limits.review_timeout),
        )
        self.completion = CompletionController(
            self.config,
            self.store,
            self.inspector,
            self.branches,
            self.validator,
            ArchivistAgent(self.router, timeout=limits.generation_timeout),
            self.github,
        )

        if not self.inspector.is_repository():
            logger.warning(f"[TASKS] {self.repo_path} is not a git repository")

    async def capture_plan(self, plan_text: str, task_id: int | str | None = None) -> CaptureReport:
        return await self.capture.capture(plan_text, task_id)

    async def review_session(self, force: bool = False) -> ReviewReport:
        return await self.reviewer.review(force=force)

    async def complete_task(self, task_id: int | str | None = None) -> CompletionReport:
        return await self.completion.complete(task_id)

    def active_task(self) -> TaskRecord | None:
        task_id = self.store.active_task_id()
        if task_id is None or not self.store.exists(task_id):
            return None
        return self.store.load(task_id)

    def set_task_status(self, status: TaskStatus, task_id: int | str | None = None) -> TaskRecord:
        """Block or unblock a task (the active one by default)."""
        target = task_id if task_id is not None else self.store.active_task_id()
        if target is None:
            raise ValueError("no active task")
        return self.store.set_status(target, status)
