"""
tasktrack workspace: git queries and mutations.

RepoInspector only reads and never raises. BranchManager writes and
propagates GitError.
"""

from tasktrack.workspace.branches import BranchManager
from tasktrack.workspace.git import GitError, run_git
from tasktrack.workspace.inspector import RepoInspector

__all__ = ["BranchManager", "GitError", "RepoInspector", "run_git"]
