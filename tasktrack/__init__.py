"""
tasktrack: task and session lifecycle guardrails for AI-assisted coding.

Captures approved plans as task documents, records work-in-progress
commits with a drift review at each session pause, and finishes a task
by validating, squashing WIP history and integrating the branch.
"""

__version__ = "0.1.0"

from tasktrack.project import TrackProject

__all__ = ["TrackProject", "__version__"]
