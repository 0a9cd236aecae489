"""
Branch Manager: the write side of the workspace.

Naming is cosmetic and degrades to a deterministic fallback. Every
mutation (checkout, merge, commit, reset, push) raises GitError on
failure so callers never believe a mutation happened when it did not.
"""

from __future__ import annotations

import re
from pathlib import Path

from loguru import logger

from tasktrack.config_loader import TrackConfig
from tasktrack.router import Router
from tasktrack.tasks import format_task_id
from tasktrack.workspace.git import GitError, run_git
from tasktrack.workspace.inspector import RepoInspector

BRANCH_NAME_PATTERN = re.compile(r"^(feature|bug)/[a-z0-9]+(?:-[a-z0-9]+)*$")
MAX_BRANCH_WORDS = 4

BRANCH_PROMPT = """CRITICAL: Return ONLY a git branch name, nothing else. No explanation, no markdown, just the name.
Based on this plan, generate a git branch name:

{plan}

Task ID: {task_id}

Format: feature/short-description OR bug/short-description
Use lowercase, hyphens, max 4 words after type
Examples: feature/add-auth, bug/fix-login, feature/user-dashboard
RETURN ONLY THE BRANCH NAME"""


def fallback_branch_name(task_id: int | str) -> str:
    return f"feature/task-{format_task_id(task_id)}"


def clean_branch_candidate(text: str) -> str | None:
    """Pick the first line that is a well-formed branch name."""
    for raw in text.splitlines():
        line = raw.strip().strip("`'\"").strip().lower()
        if not BRANCH_NAME_PATTERN.match(line):
            continue
        words = line.split("/", 1)[1].split("-")
        if len(words) > MAX_BRANCH_WORDS:
            continue
        return line
    return None


class BranchManager:
    """Branch naming and every git mutation the controllers perform."""

    def __init__(
        self,
        repo_path: Path,
        inspector: RepoInspector,
        router: Router | None = None,
        config: TrackConfig | None = None,
    ):
        self.repo_path = repo_path.resolve()
        self.inspector = inspector
        self.router = router
        self.config = config or inspector.config

    def _git(self, *args: str) -> str:
        return run_git(self.repo_path, *args)

    # -- naming ------------------------------------------------------------

    async def generate_branch_name(self, plan_text: str, task_id: int | str) -> str:
        """Ask the model for a short branch name; the task id is always appended."""
        padded = format_task_id(task_id)
        if self.router is None:
            return fallback_branch_name(padded)

        excerpt = plan_text[: self.config.limits.plan_excerpt_chars]
        result = await self.router.prompt(
            BRANCH_PROMPT.format(plan=excerpt, task_id=padded),
            tier="haiku",
            timeout=self.config.limits.generation_timeout,
            max_tokens=64,
        )
        if not result.success:
            logger.warning(f"[BRANCH] Name generation failed ({result.error}); using fallback")
            return fallback_branch_name(padded)

        candidate = clean_branch_candidate(result.text)
        if candidate is None:
            logger.warning(f"[BRANCH] Unusable branch name {result.text[:80]!r}; using fallback")
            return fallback_branch_name(padded)
        return f"{candidate}-{padded}"

    # -- branches ----------------------------------------------------------

    def create_task_branch(self, name: str) -> None:
        self._git("checkout", "-b", name)
        logger.info(f"[BRANCH] Created and switched to {name}")

    def merge_task_branch(self, name: str, into: str | None = None) -> None:
        """Switch to the default branch and merge `name` with --no-ff."""
        target = into or self.inspector.default_branch()
        self._git("checkout", target)
        self._git("merge", name, "--no-ff", "-m", f"Merge branch '{name}'")
        logger.info(f"[BRANCH] Merged {name} into {target}")

    def push_current_branch(self) -> None:
        self._git("push", "-u", "origin", "HEAD")
        logger.info("[BRANCH] Pushed current branch to origin")

    # -- commits -----------------------------------------------------------

    def stage_all(self) -> None:
        self._git("add", "-A")

    def commit(self, message: str) -> str:
        """Commit whatever is staged and return the new HEAD sha."""
        self._git("commit", "-m", message)
        return self._git("rev-parse", "HEAD").strip()

    def commit_paths(self, message: str, paths: list[str]) -> str:
        """Commit only the given paths."""
        self._git("add", "--", *paths)
        self._git("commit", "-m", message, "--", *paths)
        return self._git("rev-parse", "HEAD").strip()

    def soft_reset(self, rev: str) -> None:
        self._git("reset", "--soft", rev)

    def squash_onto(self, baseline: str, message: str) -> str:
        """Collapse everything after `baseline` into one commit.

        Implemented as soft-reset then commit. If the commit fails the
        branch is put back on its previous tip before the error propagates.
        """
        if not baseline:
            raise ValueError("squash requires a baseline commit")
        old_tip = self._git("rev-parse", "HEAD").strip()
        self.soft_reset(baseline)
        try:
            sha = self.commit(message)
        except GitError:
            logger.error(f"[BRANCH] Squash commit failed; restoring {old_tip[:8]}")
            self.soft_reset(old_tip)
            raise
        logger.info(f"[BRANCH] Squashed {old_tip[:8]} onto {baseline[:8]} as {sha[:8]}")
        return sha
