import subprocess
from pathlib import Path

import pytest

from tasktrack.config_loader import TrackConfig
from tasktrack.project import TrackProject
from tasktrack.router import GenerationResult


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=repo, capture_output=True, text=True, check=True)
    return result.stdout


def commit_file(repo: Path, name: str, content: str, message: str) -> str:
    path = repo / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", message)
    return git(repo, "rev-parse", "HEAD").strip()


def subjects(repo: Path) -> list[str]:
    """Commit subjects, newest first."""
    return git(repo, "log", "--format=%s").splitlines()


class FakeRouter:
    """Scripted stand-in for Router.prompt. Strings become successful results."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.prompts: list[tuple[str, str]] = []

    async def prompt(self, text, tier="haiku", *, timeout=None, max_tokens=1024, temperature=0.2):
        self.prompts.append((tier, text))
        if not self.responses:
            return GenerationResult(success=False, error="no scripted response")
        response = self.responses.pop(0)
        if isinstance(response, str):
            return GenerationResult(text=response, success=True, model="fake/model")
        return response


TIMEOUT = GenerationResult(success=False, error="generation timed out after 30s", timed_out=True)


@pytest.fixture
def repo(tmp_path):
    path = tmp_path / "repo"
    path.mkdir()
    git(path, "init", "-q")
    git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    git(path, "config", "user.email", "dev@example.com")
    git(path, "config", "user.name", "Dev")
    git(path, "config", "commit.gpgsign", "false")
    commit_file(path, "README.md", "# demo\n", "initial commit")
    return path


@pytest.fixture
def config():
    cfg = TrackConfig()
    cfg.logging.enabled = False
    cfg.validation.typecheck.command = "true"
    cfg.validation.lint.command = "true"
    cfg.validation.test.command = "true"
    return cfg


@pytest.fixture
def make_project(repo, config):
    def _make(responses=None):
        router = FakeRouter(responses)
        project = TrackProject(repo, config=config, router=router, setup_logging=False)
        return project, router
    return _make
