import asyncio
import json

import pytest

from deployhook.errors import InvalidRequest, ProjectConflict, ProjectNotFound
from deployhook.models import CommandResult, Job, JobStatus, Project
from deployhook.storage import DocumentStore, JobLogStore, init_storage


def _project(name="p1", url="https://example.com/org/repo.git"):
    return Project(name=name, repository_url=url, secret="s", commands=["echo hi"], working_directory=name)


def _job(n):
    return Job(project_name="p1", repository_url="https://example.com/org/repo", commit_message=f"commit {n}")


# DocumentStore -----------------------------------------------------------


def test_document_store_returns_fallback_for_missing_and_corrupt(tmp_path):
    documents = DocumentStore(tmp_path)
    assert documents.load("projects", {}) == {}

    documents.path_for("logs").write_text("{not json", encoding="utf-8")
    assert documents.load("logs", []) == []


def test_document_store_swallows_write_failure(tmp_path, caplog):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory")
    documents = DocumentStore(blocker)

    documents.save("projects", {"a": 1})

    assert "Error saving" in caplog.text


def test_document_store_round_trips_json(tmp_path):
    documents = DocumentStore(tmp_path)
    documents.save("projects", {"p1": {"secret": "ünïcode"}})
    assert json.loads(documents.path_for("projects").read_text(encoding="utf-8")) == {"p1": {"secret": "ünïcode"}}
    assert not documents.path_for("projects").with_suffix(".json.tmp").exists()


# ProjectRegistry ---------------------------------------------------------


def test_register_rejects_duplicate_name(storage):
    storage.projects.register(_project())
    with pytest.raises(ProjectConflict):
        storage.projects.register(_project(url="https://example.com/other"))


def test_register_rejects_url_that_normalizes_to_existing(storage):
    storage.projects.register(_project())
    with pytest.raises(ProjectConflict):
        storage.projects.register(_project(name="p2", url="https://example.com/org/repo"))


def test_replace_and_delete_require_existing_project(storage):
    with pytest.raises(ProjectNotFound):
        storage.projects.replace("ghost", _project(name="ghost"))
    with pytest.raises(ProjectNotFound):
        storage.projects.delete("ghost")


def test_replace_overwrites_all_fields(storage):
    storage.projects.register(_project())
    storage.projects.replace(
        "p1",
        Project(name="ignored", repository_url="https://example.com/org/repo", secret="new", commands=["make"], working_directory="/srv/p1"),
    )

    project = storage.projects.get("p1")
    assert project.name == "p1"
    assert project.secret == "new"
    assert project.commands == ["make"]
    assert project.working_directory == "/srv/p1"


def test_delete_removes_project(storage):
    storage.projects.register(_project())
    storage.projects.delete("p1")
    assert storage.projects.list_projects() == []


def test_resolve_strips_git_suffix_on_both_sides(storage):
    storage.projects.register(_project())
    assert storage.projects.resolve("https://example.com/org/repo").name == "p1"
    assert storage.projects.resolve("https://example.com/org/repo.git").name == "p1"


@pytest.mark.parametrize("url", [None, "", "https://example.com/org/other", "https://EXAMPLE.com/org/repo"])
def test_resolve_unknown_or_missing_url(storage, url):
    storage.projects.register(_project())
    with pytest.raises(ProjectNotFound):
        storage.projects.resolve(url)


def test_resolve_picks_first_of_legacy_duplicates_and_warns(storage, caplog):
    storage.documents.save(
        "projects",
        {
            "first": {"repository_url": "https://example.com/org/repo.git", "secret": "a", "commands": [], "working_directory": "a"},
            "second": {"repository_url": "https://example.com/org/repo", "secret": "b", "commands": [], "working_directory": "b"},
        },
    )
    assert storage.projects.resolve("https://example.com/org/repo").name == "first"
    assert "matches 2 projects" in caplog.text


def test_stored_commands_are_normalized(storage):
    storage.documents.save(
        "projects",
        {"p1": {"repository_url": "u", "secret": "s", "commands": "  npm   ci ,, npm run  build ,", "working_directory": "w"}},
    )
    assert storage.projects.get("p1").commands == ["npm ci", "npm run build"]


# JobLogStore -------------------------------------------------------------


async def test_history_keeps_newest_hundred(storage):
    jobs = [_job(n) for n in range(105)]
    for job in jobs:
        await storage.jobs.record_new_job(job)

    history = storage.jobs.list_jobs()
    assert len(history) == 100
    assert [entry["job_id"] for entry in history] == [job.job_id for job in reversed(jobs[5:])]
    evicted = {job.job_id for job in jobs[:5]}
    assert not evicted & {entry["job_id"] for entry in history}
    assert len(storage.documents.load("logs", [])) == 100


async def test_update_job_persists_whole_history(storage, tmp_path):
    job = _job(1)
    await storage.jobs.record_new_job(job)

    await storage.jobs.update_job(job.job_id, lambda j: j.record_result(0, CommandResult("echo hi", stdout="hi\n", exit_code=0)))

    reloaded = init_storage(tmp_path / "data")
    entry = reloaded.jobs.get_job(job.job_id)
    assert entry["command_results"] == [
        {"command": "echo hi", "stdout": "hi\n", "stderr": "", "error": None, "exit_code": 0}
    ]
    assert entry["status"] == "started"


async def test_update_unknown_job_is_dropped(storage):
    assert await storage.jobs.update_job("missing", lambda j: j.finish()) is None


async def test_concurrent_jobs_do_not_lose_updates(storage):
    jobs = [_job(n) for n in range(10)]
    for job in jobs:
        await storage.jobs.record_new_job(job)

    async def _progress(job):
        for index in range(5):
            await storage.jobs.update_job(job.job_id, lambda j, i=index: j.record_result(i, CommandResult(f"step {i}", exit_code=0)))
            await asyncio.sleep(0)
        await storage.jobs.update_job(job.job_id, Job.finish)

    await asyncio.gather(*(_progress(job) for job in jobs))

    persisted = storage.documents.load("logs", [])
    assert len(persisted) == 10
    for entry in persisted:
        assert entry["status"] == "completed"
        assert [r["command"] for r in entry["command_results"]] == [f"step {i}" for i in range(5)]


def test_history_limit_must_be_positive(tmp_path):
    with pytest.raises(ValueError):
        JobLogStore(DocumentStore(tmp_path), limit=0)


def test_unreadable_history_entries_are_skipped(tmp_path):
    documents = DocumentStore(tmp_path)
    documents.save("logs", [{"time": "2024-01-01T00:00:00Z", "status": "completed"}, {"job_id": "ok", "status": "failed"}])

    store = JobLogStore(documents)

    assert [entry["job_id"] for entry in store.list_jobs()] == ["ok"]
    assert store.list_jobs()[0]["status"] == JobStatus.FAILED.value


# CredentialStore ---------------------------------------------------------


def test_credentials_setup_once_and_verify(storage):
    assert not storage.credentials.is_initialized()
    storage.credentials.setup("admin", "hunter2")

    assert storage.credentials.is_initialized()
    assert storage.credentials.verify("admin", "hunter2")
    assert not storage.credentials.verify("admin", "wrong")
    assert not storage.credentials.verify("root", "hunter2")
    assert "hunter2" not in storage.documents.path_for("users").read_text()

    with pytest.raises(InvalidRequest, match="already initialized"):
        storage.credentials.setup("admin", "again")


def test_credentials_require_setup(storage):
    with pytest.raises(InvalidRequest, match="not set up"):
        storage.credentials.verify("admin", "pw")
    with pytest.raises(InvalidRequest, match="required"):
        storage.credentials.setup("admin", "")
