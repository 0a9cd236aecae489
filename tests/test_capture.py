import asyncio
import json

from conftest import TIMEOUT, git

from tasktrack.tasks import TaskStatus

PLAN = "# Add rate limiting\n\n- Add limiter middleware\n- Return 429\n"


def _draft(title, *requirements):
    return json.dumps({"title": title, "purpose": "p", "requirements": list(requirements)})


def test_capture_writes_task_and_sets_pointer(make_project, repo):
    project, _ = make_project([_draft("Rate limit login", "Add limiter", "Return 429")])

    report = asyncio.run(project.capture_plan(PLAN))

    assert report.outcome == "done"
    assert report.task_id == 1
    assert report.generated
    record = project.store.load(1)
    assert record.status == TaskStatus.IN_PROGRESS
    assert [r.text for r in record.requirements] == ["Add limiter", "Return 429"]
    assert record.started_at is not None
    assert project.store.active_task_id() == 1
    assert (repo / ".claude/plans/TASK_001_plan.md").read_text().startswith("# Add rate limiting")


def test_capture_falls_back_when_generation_times_out(make_project):
    project, _ = make_project([TIMEOUT])

    report = asyncio.run(project.capture_plan(PLAN))

    assert report.outcome == "done_with_warnings"
    assert not report.generated
    record = project.store.load(report.task_id)
    assert record.title == "Add rate limiting"
    assert [r.text for r in record.requirements] == ["Add limiter middleware", "Return 429"]


def test_recapture_same_id_overwrites(make_project):
    project, _ = make_project([_draft("First", "one"), _draft("Second", "two", "three")])

    first = asyncio.run(project.capture_plan("plan v1", task_id=7))
    second = asyncio.run(project.capture_plan("plan v2", task_id=7))

    assert first.task_id == second.task_id == 7
    files = sorted(p.name for p in project.store.tasks_dir.iterdir())
    assert files == ["TASK_007.md"]
    record = project.store.load(7)
    assert record.title == "Second"
    assert [r.text for r in record.requirements] == ["two", "three"]
    assert project.store.active_task_id() == 7


def test_recapture_without_id_reuses_active_task(make_project):
    project, _ = make_project([_draft("First", "one"), _draft("Second", "two")])

    asyncio.run(project.capture_plan("plan v1"))
    report = asyncio.run(project.capture_plan("plan v2"))

    assert report.task_id == 1
    assert project.store.next_id() == 2


def test_recapture_keeps_started_at_and_done_flags(make_project):
    project, _ = make_project([_draft("T", "one", "two"), _draft("T", "one", "three")])
    asyncio.run(project.capture_plan("v1", task_id=3))
    record = project.store.load(3)
    record.requirements[0].done = True
    project.store.save(record)

    asyncio.run(project.capture_plan("v2", task_id=3))

    again = project.store.load(3)
    assert again.started_at == record.started_at
    assert [(r.text, r.done) for r in again.requirements] == [("one", True), ("three", False)]


def test_capture_of_completed_task_is_blocked(make_project):
    project, _ = make_project([_draft("T", "one")])
    asyncio.run(project.capture_plan("v1", task_id=2))
    record = project.store.load(2)
    record.complete("done")
    project.store.save(record)

    report = asyncio.run(project.capture_plan("v2", task_id=2))

    assert report.outcome == "blocked"
    assert project.store.load(2).status == TaskStatus.COMPLETED


def test_empty_plan_is_blocked(make_project):
    project, router = make_project()
    assert asyncio.run(project.capture_plan("   ")).outcome == "blocked"
    assert router.prompts == []


def test_disabled_hook_is_noop(make_project, config):
    config.hooks.capture_plan.enabled = False
    project, _ = make_project()
    assert asyncio.run(project.capture_plan(PLAN)).outcome == "noop"


def test_capture_creates_branch_when_enabled(make_project, config, repo):
    config.features.git_branching.enabled = True
    project, _ = make_project([_draft("T", "one"), "feature/rate-limit"])

    report = asyncio.run(project.capture_plan(PLAN, task_id=7))

    assert report.branch_name == "feature/rate-limit-007"
    assert git(repo, "symbolic-ref", "--short", "HEAD").strip() == "feature/rate-limit-007"
    assert project.store.load(7).branch_name == "feature/rate-limit-007"


def test_branch_name_timeout_uses_fallback(make_project, config, repo):
    config.features.git_branching.enabled = True
    project, _ = make_project([_draft("T", "one"), TIMEOUT])

    report = asyncio.run(project.capture_plan(PLAN, task_id=7))

    assert report.branch_name == "feature/task-007"


def test_branch_failure_still_persists_task(make_project, config, repo):
    config.features.git_branching.enabled = True
    git(repo, "branch", "feature/task-007")
    project, _ = make_project([_draft("T", "one"), TIMEOUT])

    report = asyncio.run(project.capture_plan(PLAN, task_id=7))

    assert report.outcome == "done_with_warnings"
    assert any("branch creation failed" in w for w in report.warnings)
    assert project.store.load(7).branch_name is None
    assert project.store.active_task_id() == 7
    assert git(repo, "symbolic-ref", "--short", "HEAD").strip() == "main"


def test_multiline_purpose_from_model_is_kept_whole(make_project):
    draft = json.dumps({
        "title": "Login",
        "purpose": "Users need to log in.\nSessions must persist across restarts.",
        "requirements": ["Add login form\nwith CSRF token"],
    })
    project, _ = make_project([draft])

    asyncio.run(project.capture_plan("# Login\n- Add login form\n", task_id=2))

    record = project.active_task()
    assert record.purpose == "Users need to log in. Sessions must persist across restarts."
    assert record.requirements[0].text == "Add login form with CSRF token"
