import asyncio
import json
from datetime import datetime

from conftest import commit_file, git, subjects

from tasktrack.completion import (
    DirectMerge,
    PullRequestPush,
    plan_squash,
    select_integration,
)
from tasktrack.config_loader import TrackConfig
from tasktrack.state import CommitRef, GitSessionState
from tasktrack.tasks import IssueRef, Requirement, TaskRecord, TaskStatus

PLAN = "# Rate limiting\n\n- Add limiter\n"
DRAFT = json.dumps({"title": "Rate limiting", "requirements": ["Add limiter"]})


def _head(repo):
    return git(repo, "rev-parse", "HEAD").strip()


def _tree(repo, rev="HEAD"):
    return git(repo, "rev-parse", f"{rev}^{{tree}}").strip()


def _active_task(make_project, repo, responses=()):
    """Task 007 captured, one human commit H, two WIP commits on top."""
    project, router = make_project([DRAFT, *responses])
    asyncio.run(project.capture_plan(PLAN, task_id=7))
    human = commit_file(repo, "app.py", "v = 0\n", "feat: human work")
    commit_file(repo, "app.py", "v = 1\n", "[wip] TASK_007: first step")
    commit_file(repo, "limiter.py", "LIMIT = 5\n", "[wip] TASK_007: second step")
    return project, router, human


# -- pure pieces -------------------------------------------------------------

def _ref(subject):
    return CommitRef(sha=subject.replace(" ", "")[:12], subject=subject)


def test_plan_squash_requires_all_wip_and_clean_tree():
    state = GitSessionState(baseline_commit="abc", has_uncommitted_changes=False)
    wip = [_ref("[wip] TASK_001: b"), _ref("[wip] TASK_001: a")]

    ok = plan_squash(state, wip)
    assert ok.should_squash and ok.wip_count == 2 and ok.baseline == "abc"

    mixed = plan_squash(state, [wip[0], _ref("fix: by hand")])
    assert not mixed.should_squash
    assert mixed.reason == "non-WIP commits after baseline"

    dirty = plan_squash(state.model_copy(update={"has_uncommitted_changes": True}), wip)
    assert not dirty.should_squash
    assert dirty.reason == "uncommitted changes"

    assert plan_squash(state, []).reason == "no WIP commits to squash"
    assert plan_squash(GitSessionState(), wip).reason == "no baseline commit"


def test_select_integration_once_from_config():
    cfg = TrackConfig()
    assert isinstance(select_integration(cfg), DirectMerge)
    cfg.features.github_integration.enabled = True
    assert isinstance(select_integration(cfg), PullRequestPush)
    cfg.features.github_integration.auto_create_prs = False
    assert isinstance(select_integration(cfg), DirectMerge)


# -- squash scenarios ----------------------------------------------------------

def test_wip_commits_squash_into_one(make_project, repo):
    project, _, human = _active_task(make_project, repo)
    tip_tree = _tree(repo)

    report = asyncio.run(project.complete_task())

    assert report.outcome == "done"
    assert report.git_actions.squash_performed
    assert subjects(repo) == [
        "docs: mark TASK_007 as completed",
        "feat: complete TASK_007 Rate limiting",
        "feat: human work",
        "initial commit",
    ]
    squash = git(repo, "rev-parse", "HEAD~1").strip()
    assert report.git_actions.squash_commit == squash
    assert _tree(repo, squash) == tip_tree
    assert git(repo, "rev-parse", "HEAD~2").strip() == human
    assert git(repo, "status", "--porcelain").strip() == ""

    record = project.store.load(7)
    assert record.status == TaskStatus.COMPLETED
    assert record.completed_at is not None
    assert record.completion_summary
    assert project.store.active_task_id() is None
    assert "TASK_007: Rate limiting" in project.store.no_active_file.read_text()
    assert set(report.document_updates) == {
        ".claude/tasks/TASK_007.md",
        "CLAUDE.md",
        ".claude/no_active_task.md",
    }


def test_squash_without_document_commit(make_project, repo, config):
    config.git.commit_documents = False
    project, _, human = _active_task(make_project, repo)
    tip_tree = _tree(repo)

    report = asyncio.run(project.complete_task())

    assert report.git_actions.squash_performed
    assert subjects(repo)[1:] == ["feat: human work", "initial commit"]
    assert git(repo, "rev-parse", "HEAD~1").strip() == human
    assert _tree(repo) == tip_tree
    assert report.git_actions.documents_commit is None


def test_generated_summary_is_used_for_squash(make_project, repo):
    summary = json.dumps({"commit_message": "feat: add login rate limiting", "summary": "Limiter shipped."})
    project, router, _ = _active_task(make_project, repo, [summary])

    asyncio.run(project.complete_task())

    assert subjects(repo)[1] == "feat: add login rate limiting"
    assert project.store.load(7).completion_summary == "Limiter shipped."
    assert "[wip] TASK_007: first step" in router.prompts[-1][1]


def test_uncommitted_changes_skip_squash(make_project, repo):
    project, _, _ = _active_task(make_project, repo)
    (repo / "app.py").write_text("v = 2  # unsaved idea\n")

    report = asyncio.run(project.complete_task())

    assert report.outcome == "done_with_warnings"
    assert not report.git_actions.squash_performed
    assert report.git_actions.squash_skipped_reason == "uncommitted changes"
    assert "squash skipped: uncommitted changes" in report.notes
    assert subjects(repo)[:3] == [
        "docs: mark TASK_007 as completed",
        "[wip] TASK_007: second step",
        "[wip] TASK_007: first step",
    ]
    assert project.store.load(7).status == TaskStatus.COMPLETED
    assert "app.py" in git(repo, "status", "--porcelain")


def test_squash_failure_restores_history_and_leaves_task_open(make_project, repo):
    project, _, _ = _active_task(make_project, repo)
    tip = _head(repo)
    hook = repo / ".git" / "hooks" / "pre-commit"
    hook.parent.mkdir(parents=True, exist_ok=True)
    hook.write_text("#!/bin/sh\nexit 1\n")
    hook.chmod(0o755)

    report = asyncio.run(project.complete_task())

    assert report.outcome == "failed"
    assert report.git_actions.errors
    assert _head(repo) == tip
    assert project.store.load(7).status == TaskStatus.IN_PROGRESS
    assert project.store.active_task_id() == 7


# -- gates ---------------------------------------------------------------------

def test_validation_failure_blocks_before_any_mutation(make_project, repo, config):
    config.validation.typecheck.command = "echo 'error: Incompatible types' && exit 1"
    project, _, _ = _active_task(make_project, repo)
    tip = _head(repo)
    task_doc = project.store.task_path(7).read_text()

    report = asyncio.run(project.complete_task())

    assert report.outcome == "blocked"
    typecheck = report.validation_results[0]
    assert typecheck.name == "typecheck" and not typecheck.passed
    assert "Incompatible types" in typecheck.raw_output
    assert not report.git_actions.squash_performed
    assert _head(repo) == tip
    assert git(repo, "status", "--porcelain").strip() == ""
    assert project.store.task_path(7).read_text() == task_doc
    assert project.store.load(7).status == TaskStatus.IN_PROGRESS
    assert project.store.active_task_id() == 7


def test_no_active_task_is_blocked(make_project):
    project, _ = make_project()
    report = asyncio.run(project.complete_task())
    assert report.outcome == "blocked"
    assert report.message == "no active task"


def test_planning_task_cannot_complete(make_project, repo):
    project, _ = make_project()
    project.store.save(TaskRecord(id=4, title="Draft", requirements=[Requirement(text="x")]))
    project.store.pointer.set(4)

    report = asyncio.run(project.complete_task())

    assert report.outcome == "blocked"
    assert project.store.load(4).status == TaskStatus.PLANNING


def test_completing_twice_reports_already_completed(make_project, repo):
    project, _, _ = _active_task(make_project, repo)
    asyncio.run(project.complete_task())
    head = _head(repo)

    report = asyncio.run(project.complete_task(task_id=7))

    assert report.outcome == "noop"
    assert "already completed" in report.notes
    assert _head(repo) == head


def test_blocked_task_can_complete(make_project, repo):
    project, _, _ = _active_task(make_project, repo)
    project.set_task_status(TaskStatus.BLOCKED)
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", "[wip] TASK_007: blocked on review")

    report = asyncio.run(project.complete_task())

    assert report.outcome == "done"
    assert project.store.load(7).status == TaskStatus.COMPLETED


# -- integration ---------------------------------------------------------------

def test_direct_merge_into_default_branch(make_project, repo, config):
    project, _ = make_project([DRAFT])
    asyncio.run(project.capture_plan(PLAN, task_id=7))
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", "chore: start TASK_007")
    git(repo, "checkout", "-q", "-b", "feature/rate-limit-007")
    commit_file(repo, "limiter.py", "LIMIT = 5\n", "[wip] TASK_007: limiter")
    config.features.git_branching.enabled = True

    report = asyncio.run(project.complete_task())

    assert report.outcome == "done"
    assert report.git_actions.merged
    assert git(repo, "symbolic-ref", "--short", "HEAD").strip() == "main"
    assert subjects(repo)[0] == "Merge branch 'feature/rate-limit-007'"
    assert (repo / "limiter.py").exists()


def test_no_merge_when_already_on_default_branch(make_project, repo, config):
    project, _, _ = _active_task(make_project, repo)
    config.features.git_branching.enabled = True

    report = asyncio.run(project.complete_task())

    assert not report.git_actions.merged
    assert any(n.startswith("already on main") for n in report.notes)


class FakeGitHub:
    def __init__(self, url="https://github.com/acme/app/pull/12", problems=()):
        self.url = url
        self.problems = list(problems)
        self.calls = []

    def validation_errors(self):
        return self.problems

    def create_pull_request(self, title, body, base=None):
        self.calls.append((title, body, base))
        return self.url


def _with_remote(repo, tmp_path):
    remote = tmp_path / "remote.git"
    git(tmp_path, "init", "-q", "--bare", str(remote))
    git(repo, "remote", "add", "origin", str(remote))
    return remote


def test_pull_request_workflow_pushes_and_links_issue(make_project, repo, config, tmp_path):
    config.features.github_integration.enabled = True
    config.features.github_integration.auto_create_issues = False
    project, _, _ = _active_task(make_project, repo)
    record = project.store.load(7)
    record.external_issue = IssueRef(number=42, url="https://github.com/acme/app/issues/42")
    project.store.save(record)
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", "[wip] TASK_007: link issue")
    remote = _with_remote(repo, tmp_path)
    fake = FakeGitHub()
    project.completion.github = fake

    report = asyncio.run(project.complete_task())

    assert report.outcome == "done"
    assert report.git_actions.integration == "pull_request"
    assert report.git_actions.pushed
    assert report.git_actions.pr_url == fake.url
    title, body, base = fake.calls[0]
    assert title == "TASK_007: Rate limiting"
    assert "Closes #42" in body
    assert base == "main"
    assert git(remote, "rev-parse", "main").strip() == _head(repo)


def test_pull_request_failure_is_a_warning(make_project, repo, config, tmp_path):
    config.features.github_integration.enabled = True
    config.features.github_integration.auto_create_issues = False
    project, _, _ = _active_task(make_project, repo)
    _with_remote(repo, tmp_path)
    project.completion.github = FakeGitHub(url=None)

    report = asyncio.run(project.complete_task())

    assert report.outcome == "done_with_warnings"
    assert report.git_actions.pushed
    assert "pull request creation failed" in report.warnings


def test_push_failure_is_reported_as_failed(make_project, repo, config):
    config.features.github_integration.enabled = True
    config.features.github_integration.auto_create_issues = False
    project, _, _ = _active_task(make_project, repo)
    project.completion.github = FakeGitHub()

    report = asyncio.run(project.complete_task())

    assert report.outcome == "failed"
    assert not report.git_actions.pushed
    assert any("pull_request failed" in e for e in report.git_actions.errors)


def test_completion_timestamp_is_recorded(make_project, repo):
    project, _, _ = _active_task(make_project, repo)
    when = datetime(2026, 10, 16, 12, 30)

    asyncio.run(project.completion.complete(now=when))

    assert project.store.load(7).completed_at == when


def test_unusable_gh_skips_pull_request_with_one_warning(make_project, repo, config, tmp_path):
    config.features.github_integration.enabled = True
    config.features.github_integration.auto_create_issues = False
    project, _, _ = _active_task(make_project, repo)
    _with_remote(repo, tmp_path)
    fake = FakeGitHub(problems=["GitHub CLI is not authenticated. Run: gh auth login"])
    project.completion.github = fake

    report = asyncio.run(project.complete_task())

    assert report.outcome == "done_with_warnings"
    assert report.git_actions.pushed
    assert report.warnings == ["pull request not created: GitHub CLI is not authenticated. Run: gh auth login"]
    assert fake.calls == []
