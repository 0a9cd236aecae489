"""
GitHub integration through the `gh` CLI.

Issue and pull-request creation are enhancements: every method returns
None (or False) on failure and logs why, the caller decides whether
that is worth a warning.
"""

from __future__ import annotations

import re
import subprocess
from pathlib import Path

from loguru import logger

from tasktrack.config_loader import GitHubConfig
from tasktrack.tasks import IssueRef
from tasktrack.workspace.git import GitError, run_git

_ISSUE_URL = re.compile(r"https?://\S+/issues/(\d+)")
_PR_URL = re.compile(r"https?://\S+/pull/(\d+)")


class GitHubClient:
    """Wraps the gh CLI for issues and pull requests."""

    def __init__(self, repo_path: Path, config: GitHubConfig):
        self.repo_path = repo_path.resolve()
        self.config = config

    def _repo_args(self) -> list[str]:
        return ["--repo", self.config.repository_url] if self.config.repository_url else []

    def _gh(self, *args: str, timeout: int = 60) -> subprocess.CompletedProcess:
        return subprocess.run(
            ["gh", *args],
            cwd=self.repo_path,
            capture_output=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )

    def _ok(self, *args: str) -> subprocess.CompletedProcess | None:
        try:
            result = self._gh(*args)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"[GITHUB] gh {args[0]} failed: {e}")
            return None
        if result.returncode != 0:
            logger.warning(f"[GITHUB] gh {' '.join(args[:2])} failed: {result.stderr.strip()[:300]}")
            return None
        return result

    def validation_errors(self) -> list[str]:
        """Reasons the gh workflow cannot run here; empty when usable."""
        errors = []
        if self._ok("--version") is None:
            return ["GitHub CLI (gh) is not installed"]
        if self._ok("auth", "status") is None:
            errors.append("GitHub CLI is not authenticated. Run: gh auth login")
        if self._ok("repo", "view", *self._repo_args()) is None:
            errors.append("No GitHub repository is associated with this checkout")
        return errors

    def create_issue(self, title: str, body: str) -> IssueRef | None:
        result = self._ok("issue", "create", "--title", title, "--body", body, *self._repo_args())
        if result is None:
            return None
        match = _ISSUE_URL.search(result.stdout)
        if not match:
            logger.warning(f"[GITHUB] Could not find issue URL in: {result.stdout.strip()[:200]}")
            return None
        issue = IssueRef(number=int(match.group(1)), url=match.group(0))
        logger.info(f"[GITHUB] Created issue #{issue.number}")
        return issue

    def create_issue_branch(self, issue_number: int) -> str | None:
        """`gh issue develop --checkout`; returns the branch now checked out."""
        if self._ok("issue", "develop", str(issue_number), "--checkout", *self._repo_args()) is None:
            return None
        try:
            branch = run_git(self.repo_path, "symbolic-ref", "--short", "HEAD").strip()
        except GitError:
            return None
        return branch or None

    def create_pull_request(self, title: str, body: str, base: str | None = None) -> str | None:
        args = ["pr", "create", "--title", title, "--body", body]
        if base:
            args += ["--base", base]
        result = self._ok(*args, *self._repo_args())
        if result is None:
            return None
        match = _PR_URL.search(result.stdout)
        if not match:
            logger.warning(f"[GITHUB] Could not find PR URL in: {result.stdout.strip()[:200]}")
            return None
        logger.info(f"[GITHUB] Opened pull request {match.group(0)}")
        return match.group(0)
