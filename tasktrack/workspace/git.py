"""Thin subprocess wrapper around the git binary."""

from __future__ import annotations

import subprocess
from pathlib import Path


class GitError(Exception):
    def __init__(self, cmd: list[str], returncode: int, stderr: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr.strip()
        super().__init__(f"Git failed ({returncode}): {' '.join(cmd)}\n{self.stderr}")


def run_git(repo_path: Path, *args: str, check: bool = True, timeout: int = 60) -> str:
    """Run `git <args>` in repo_path and return stdout, decoded as UTF-8
    with undecodable bytes replaced.

    Raises GitError on a non-zero exit when check is set, and also when
    the binary is missing or the command times out.
    """
    cmd = ["git", *args]
    try:
        result = subprocess.run(
            cmd, cwd=repo_path, capture_output=True,
            encoding="utf-8", errors="replace", timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise GitError(cmd, -1, f"timed out after {timeout}s") from e
    except OSError as e:
        raise GitError(cmd, -1, str(e)) from e
    if check and result.returncode != 0:
        raise GitError(cmd, result.returncode, result.stderr)
    return result.stdout
