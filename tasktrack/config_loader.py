"""
Configuration loader for tasktrack.
Merges defaults with per-repo .tasktrack/config.yaml overrides.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class RoutingConfig(BaseModel):
    haiku: str = "anthropic/claude-3-5-haiku-20241022"
    sonnet: str = "anthropic/claude-sonnet-4-20250514"
    opus: str = "anthropic/claude-opus-4-20250514"


class LimitsConfig(BaseModel):
    generation_timeout: float = 30.0
    review_timeout: float = 60.0
    validation_timeout: float = 300.0
    history_scan_window: int = Field(default=50, ge=1)
    review_diff_budget: int = Field(default=10_000, ge=500)
    plan_excerpt_chars: int = 1500


class HookConfig(BaseModel):
    enabled: bool = True
    description: str = ""


class HooksConfig(BaseModel):
    capture_plan: HookConfig = Field(default_factory=HookConfig)
    stop_review: HookConfig = Field(default_factory=HookConfig)
    complete_task: HookConfig = Field(default_factory=HookConfig)


class CheckConfig(BaseModel):
    enabled: bool = True
    command: str = ""


class ValidationConfig(BaseModel):
    typecheck: CheckConfig = Field(default_factory=lambda: CheckConfig(command="mypy ."))
    lint: CheckConfig = Field(default_factory=lambda: CheckConfig(command="ruff check ."))
    test: CheckConfig = Field(default_factory=lambda: CheckConfig(command="pytest -q"))

    def checks(self) -> dict[str, CheckConfig]:
        return {"typecheck": self.typecheck, "lint": self.lint, "test": self.test}


class GitConfig(BaseModel):
    default_branch: str = ""
    commit_documents: bool = True


class BranchingConfig(BaseModel):
    enabled: bool = False
    description: str = ""


class GitHubConfig(BaseModel):
    enabled: bool = False
    description: str = ""
    auto_create_issues: bool = True
    auto_create_prs: bool = True
    use_issue_branches: bool = False
    repository_url: str = ""


class FeaturesConfig(BaseModel):
    git_branching: BranchingConfig = Field(default_factory=BranchingConfig)
    github_integration: GitHubConfig = Field(default_factory=GitHubConfig)


class PathsConfig(BaseModel):
    context_file: str = "CLAUDE.md"
    tasks_dir: str = ".claude/tasks"
    plans_dir: str = ".claude/plans"
    no_active_task_file: str = ".claude/no_active_task.md"


class LoggingConfig(BaseModel):
    enabled: bool = True
    level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    retention_days: int = Field(default=7, ge=1)
    directory: str = ".tasktrack/logs"


class TrackConfig(BaseModel):
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    hooks: HooksConfig = Field(default_factory=HooksConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    features: FeaturesConfig = Field(default_factory=FeaturesConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def hook_enabled(self, name: str) -> bool:
        """Hooks first, then features. Unknown names count as enabled."""
        hook = getattr(self.hooks, name, None)
        if isinstance(hook, HookConfig):
            return hook.enabled
        feature = getattr(self.features, name, None)
        if feature is not None and hasattr(feature, "enabled"):
            return feature.enabled
        return True

    @property
    def pull_request_workflow(self) -> bool:
        gh = self.features.github_integration
        return gh.enabled and gh.auto_create_prs


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"
REPO_CONFIG_NAME = Path(".tasktrack") / "config.yaml"


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(repo_path: Path | None = None) -> TrackConfig:
    """
    Load config by merging:
      1. Built-in defaults (tasktrack/config.yaml)
      2. Repo-level overrides (<repo>/.tasktrack/config.yaml)
    """
    with open(_DEFAULT_CONFIG_PATH, "r") as f:
        base: dict[str, Any] = yaml.safe_load(f) or {}

    if repo_path:
        repo_config = repo_path / REPO_CONFIG_NAME
        if repo_config.exists():
            with open(repo_config, "r") as f:
                overrides: dict[str, Any] = yaml.safe_load(f) or {}
            base = _deep_merge(base, overrides)

    return TrackConfig(**base)
