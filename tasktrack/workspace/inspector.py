"""
Repository Inspector: read-only queries against git history.

None of these methods raise. A failed git call is logged and degrades
to an empty or default answer.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from tasktrack.config_loader import TrackConfig
from tasktrack.state import (
    WIP_MARKER,
    CommitRef,
    GitSessionState,
    format_wip_subject,
    is_wip_subject,
)
from tasktrack.workspace.git import GitError, run_git

__all__ = [
    "RepoInspector",
    "WIP_MARKER",
    "is_wip_subject",
    "format_wip_subject",
]

EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"


class RepoInspector:
    """Read-only git queries. Failures degrade to defaults, never exceptions."""

    def __init__(self, repo_path: Path, config: TrackConfig | None = None):
        self.repo_path = repo_path.resolve()
        self.config = config or TrackConfig()

    # -- plumbing ----------------------------------------------------------

    def _git(self, *args: str, default: str = "") -> str:
        try:
            return run_git(self.repo_path, *args)
        except GitError as e:
            logger.debug(f"[INSPECT] {e}")
            return default

    def _succeeds(self, *args: str) -> bool:
        try:
            run_git(self.repo_path, *args)
            return True
        except GitError:
            return False

    @staticmethod
    def _parse_log(output: str) -> list[CommitRef]:
        commits = []
        for line in output.splitlines():
            if "\x00" not in line:
                continue
            sha, subject = line.split("\x00", 1)
            commits.append(CommitRef(sha=sha.strip(), subject=subject))
        return commits

    # -- branch queries ----------------------------------------------------

    def is_repository(self) -> bool:
        return self._git("rev-parse", "--is-inside-work-tree").strip() == "true"

    def default_branch(self) -> str:
        """Configured override, then origin's HEAD, then local main, then master."""
        if self.config.git.default_branch:
            return self.config.git.default_branch

        ref = self._git("symbolic-ref", "--quiet", "refs/remotes/origin/HEAD").strip()
        if ref:
            return ref.replace("refs/remotes/origin/", "", 1)

        for candidate in ("main", "master"):
            if self._succeeds("show-ref", "--verify", "--quiet", f"refs/heads/{candidate}"):
                return candidate
        return "main"

    def current_branch(self) -> str:
        branch = self._git("symbolic-ref", "--short", "HEAD").strip()
        if branch:
            return branch
        # Detached HEAD
        return self._git("rev-parse", "--short", "HEAD").strip()

    def has_uncommitted_changes(self) -> bool:
        return bool(self._git("status", "--porcelain").strip())

    def head(self) -> str | None:
        sha = self._git("rev-parse", "--verify", "--quiet", "HEAD").strip()
        return sha or None

    # -- history -----------------------------------------------------------

    def recent_commits(self, limit: int | None = None) -> list[CommitRef]:
        """Newest first, at most `limit` (default limits.history_scan_window)."""
        limit = limit or self.config.limits.history_scan_window
        output = self._git("log", "--format=%H%x00%s", "-n", str(limit))
        return self._parse_log(output)

    def commits_between(self, base: str | None, tip: str = "HEAD") -> list[CommitRef]:
        """Commits reachable from tip but not from base, newest first."""
        rev = f"{base}..{tip}" if base else tip
        return self._parse_log(self._git("log", "--format=%H%x00%s", rev))

    def find_baseline_commit(self) -> str | None:
        """First non-WIP commit scanning back from HEAD.

        If every scanned commit is WIP, the oldest scanned commit is the
        baseline. An empty history has no baseline.
        """
        commits = self.recent_commits()
        if not commits:
            return None
        for commit in commits:
            if not commit.is_wip:
                return commit.sha
        logger.debug(f"[INSPECT] No non-WIP commit in last {len(commits)}; using oldest scanned")
        return commits[-1].sha

    def list_wip_commits(self) -> list[CommitRef]:
        """The unbroken run of WIP commits at the tip, oldest first."""
        run: list[CommitRef] = []
        for commit in self.recent_commits():
            if not commit.is_wip:
                break
            run.append(commit)
        run.reverse()
        return run

    def session_state(self) -> GitSessionState:
        baseline = self.find_baseline_commit()
        wip = [c for c in self.list_wip_commits() if c.sha != baseline]
        state = GitSessionState(
            default_branch=self.default_branch(),
            current_branch=self.current_branch(),
            head=self.head(),
            baseline_commit=baseline,
            wip_commits=wip,
            has_uncommitted_changes=self.has_uncommitted_changes(),
        )
        logger.debug(
            f"[INSPECT] branch={state.current_branch} baseline={(baseline or '-')[:8]} "
            f"wip={len(wip)} dirty={state.has_uncommitted_changes}"
        )
        return state

    # -- diffs -------------------------------------------------------------

    def staged_diff(self) -> str:
        return self._git("diff", "--cached", "--no-color")

    def diff_range(self, base: str | None, tip: str = "HEAD") -> str:
        return self._git("diff", "--no-color", base or EMPTY_TREE, tip)
