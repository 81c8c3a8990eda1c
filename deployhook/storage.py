"""JSON 파일 기반 영속 스토리지 헬퍼."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import os
import secrets
from pathlib import Path
from typing import Any, Callable

from .errors import InvalidRequest, PersistenceFailure, ProjectConflict, ProjectNotFound
from .models import CommandResult, Job, JobStatus, Project, normalize_commands, strip_git_suffix

LOGGER = logging.getLogger(__name__)

PROJECTS_KEY = "projects"
LOGS_KEY = "logs"
USERS_KEY = "users"
DEFAULT_HISTORY_LIMIT = 100
_PBKDF2_ITERATIONS = 240_000


class DocumentStore:
    """키 하나당 JSON 파일 하나를 두는 단순 문서 저장소.

    읽기 실패는 fallback 값으로, 쓰기 실패는 로그만 남기고 무시한다.
    """

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        return self._root / f"{key}.json"

    def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    def load(self, key: str, fallback: Any) -> Any:
        try:
            return self._read(key, fallback)
        except PersistenceFailure as exc:
            LOGGER.error("Error loading %s: %s", self.path_for(key), exc)
            return fallback

    def save(self, key: str, document: Any) -> None:
        try:
            self._write(key, document)
        except PersistenceFailure:
            LOGGER.exception("Error saving %s", self.path_for(key))

    def _read(self, key: str, fallback: Any) -> Any:
        path = self.path_for(key)
        if not path.exists():
            return fallback
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise PersistenceFailure(str(exc)) from exc

    def _write(self, key: str, document: Any) -> None:
        path = self.path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(document, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceFailure(str(exc)) from exc


# Serialization -----------------------------------------------------------


def project_to_dict(project: Project) -> dict[str, Any]:
    return {
        "repository_url": project.repository_url,
        "secret": project.secret,
        "commands": list(project.commands),
        "working_directory": project.working_directory,
    }


def project_from_dict(name: str, data: dict[str, Any]) -> Project:
    return Project(
        name=name,
        repository_url=str(data.get("repository_url", "")),
        secret=str(data.get("secret", "")),
        commands=normalize_commands(data.get("commands")),
        working_directory=str(data.get("working_directory", "")),
    )


def job_to_dict(job: Job) -> dict[str, Any]:
    return {
        "job_id": job.job_id,
        "project_name": job.project_name,
        "started_at": job.started_at,
        "finished_at": job.finished_at,
        "repository_url": job.repository_url,
        "branch_ref": job.branch_ref,
        "commit_message": job.commit_message,
        "author_name": job.author_name,
        "status": job.status.value,
        "command_results": [
            {
                "command": result.command,
                "stdout": result.stdout,
                "stderr": result.stderr,
                "error": result.error,
                "exit_code": result.exit_code,
            }
            for result in job.command_results
        ],
    }


def job_from_dict(data: dict[str, Any]) -> Job:
    results = [
        CommandResult(
            command=str(item.get("command", "")),
            stdout=item.get("stdout") or "",
            stderr=item.get("stderr") or "",
            error=item.get("error"),
            exit_code=item.get("exit_code"),
        )
        for item in data.get("command_results") or []
    ]
    return Job(
        job_id=str(data["job_id"]),
        project_name=str(data.get("project_name", "")),
        started_at=str(data.get("started_at", "")),
        finished_at=data.get("finished_at"),
        repository_url=str(data.get("repository_url", "")),
        branch_ref=data.get("branch_ref"),
        commit_message=data.get("commit_message"),
        author_name=data.get("author_name"),
        status=JobStatus(data.get("status", JobStatus.STARTED.value)),
        command_results=results,
    )


# Projects ----------------------------------------------------------------


class ProjectRegistry:
    """이름을 키로 하는 프로젝트 등록부. 요청마다 문서를 새로 읽는다."""

    def __init__(self, documents: DocumentStore, key: str = PROJECTS_KEY) -> None:
        self._documents = documents
        self._key = key

    def list_projects(self) -> list[Project]:
        return list(self._load().values())

    def get(self, name: str) -> Project:
        projects = self._load()
        if name not in projects:
            raise ProjectNotFound(f"Project '{name}' not found.")
        return projects[name]

    def register(self, project: Project) -> None:
        projects = self._load()
        if project.name in projects:
            raise ProjectConflict(f"Project with name '{project.name}' already exists.")
        self._ensure_unique_url(projects, project)
        projects[project.name] = project
        self._save(projects)
        LOGGER.info("Registered project %s (%s)", project.name, project.repository_url)

    def replace(self, name: str, project: Project) -> None:
        projects = self._load()
        if name not in projects:
            raise ProjectNotFound(f"Project '{name}' not found.")
        project.name = name
        self._ensure_unique_url(projects, project)
        projects[name] = project
        self._save(projects)
        LOGGER.info("Updated project %s", name)

    def delete(self, name: str) -> None:
        projects = self._load()
        if name not in projects:
            raise ProjectNotFound(f"Project '{name}' not found.")
        del projects[name]
        self._save(projects)
        LOGGER.info("Deleted project %s", name)

    def resolve(self, repository_url: str | None) -> Project:
        """웹훅 payload의 저장소 URL로 프로젝트를 찾는다(`.git` 접미사 무시)."""
        if not repository_url:
            raise ProjectNotFound("payload has no repository url")
        wanted = strip_git_suffix(repository_url)
        matches = [project for project in self._load().values() if project.normalized_url == wanted]
        if not matches:
            raise ProjectNotFound(f"no project registered for {wanted}")
        if len(matches) > 1:
            LOGGER.warning(
                "Repository %s matches %d projects (%s); using %s",
                wanted,
                len(matches),
                ", ".join(project.name for project in matches),
                matches[0].name,
            )
        return matches[0]

    def _ensure_unique_url(self, projects: dict[str, Project], candidate: Project) -> None:
        for other in projects.values():
            if other.name != candidate.name and other.normalized_url == candidate.normalized_url:
                raise ProjectConflict(
                    f"Repository '{candidate.normalized_url}' is already registered by project '{other.name}'."
                )

    def _load(self) -> dict[str, Project]:
        raw = self._documents.load(self._key, {})
        if not isinstance(raw, dict):
            LOGGER.error("Ignoring malformed project registry (%s)", type(raw).__name__)
            return {}
        return {name: project_from_dict(name, data) for name, data in raw.items() if isinstance(data, dict)}

    def _save(self, projects: dict[str, Project]) -> None:
        self._documents.save(self._key, {name: project_to_dict(project) for name, project in projects.items()})


# Job history -------------------------------------------------------------


class JobLogStore:
    """최신 작업이 앞에 오는, 용량이 제한된 작업 이력.

    메모리상의 이력은 이 객체만 소유하며 모든 변경은 하나의 lock 아래에서
    전체 이력을 다시 기록한다.
    """

    def __init__(self, documents: DocumentStore, key: str = LOGS_KEY, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if limit < 1:
            raise ValueError("history limit must be positive")
        self._documents = documents
        self._key = key
        self._limit = limit
        self._lock = asyncio.Lock()
        self._history: list[Job] = self._load()

    @property
    def limit(self) -> int:
        return self._limit

    async def record_new_job(self, job: Job) -> None:
        async with self._lock:
            self._history.insert(0, job)
            evicted = self._history[self._limit :]
            del self._history[self._limit :]
            if evicted:
                LOGGER.debug("Evicted %d job(s) from history", len(evicted))
            await self._persist()

    async def update_job(self, job_id: str, mutator: Callable[[Job], None]) -> Job | None:
        async with self._lock:
            job = self._find(job_id)
            if job is None:
                LOGGER.warning("Job %s is no longer in history; update dropped", job_id)
                return None
            mutator(job)
            await self._persist()
            return job

    def list_jobs(self) -> list[dict[str, Any]]:
        return [job_to_dict(job) for job in self._history]

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        job = self._find(job_id)
        return job_to_dict(job) if job else None

    def __len__(self) -> int:
        return len(self._history)

    def _find(self, job_id: str) -> Job | None:
        for job in self._history:
            if job.job_id == job_id:
                return job
        return None

    async def _persist(self) -> None:
        snapshot = [job_to_dict(job) for job in self._history]
        await asyncio.to_thread(self._documents.save, self._key, snapshot)

    def _load(self) -> list[Job]:
        raw = self._documents.load(self._key, [])
        if not isinstance(raw, list):
            LOGGER.error("Ignoring malformed job history (%s)", type(raw).__name__)
            return []
        history = []
        for item in raw[: self._limit]:
            try:
                history.append(job_from_dict(item))
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                LOGGER.warning("Skipping unreadable job history entry: %s", exc)
        return history


# Credentials -------------------------------------------------------------


class CredentialStore:
    """단일 관리자 계정. 비밀번호는 PBKDF2 해시로만 저장한다."""

    def __init__(self, documents: DocumentStore, key: str = USERS_KEY) -> None:
        self._documents = documents
        self._key = key

    def is_initialized(self) -> bool:
        return self._documents.exists(self._key)

    def setup(self, username: str, password: str) -> None:
        if self.is_initialized():
            raise InvalidRequest("Server already initialized.")
        if not username or not password:
            raise InvalidRequest("Username and password are required.")
        salt = secrets.token_hex(16)
        self._documents.save(
            self._key,
            {
                "username": username,
                "salt": salt,
                "iterations": _PBKDF2_ITERATIONS,
                "password_hash": _hash_password(password, salt, _PBKDF2_ITERATIONS),
            },
        )
        LOGGER.info("Administrator account %s created", username)

    def verify(self, username: str, password: str) -> bool:
        record = self._documents.load(self._key, {})
        if not isinstance(record, dict) or not record.get("username") or not record.get("password_hash"):
            raise InvalidRequest("Server not set up. Please run setup first.")
        iterations = int(record.get("iterations", _PBKDF2_ITERATIONS))
        candidate = _hash_password(password or "", str(record.get("salt", "")), iterations)
        user_ok = hmac.compare_digest(str(record["username"]).encode(), (username or "").encode())
        password_ok = hmac.compare_digest(str(record["password_hash"]), candidate)
        return user_ok and password_ok


def _hash_password(password: str, salt: str, iterations: int) -> str:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations).hex()


class Storage:
    """세 문서(프로젝트, 작업 이력, 계정)를 묶은 핸들."""

    def __init__(self, data_dir: Path, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self.documents = DocumentStore(data_dir)
        self.projects = ProjectRegistry(self.documents)
        self.jobs = JobLogStore(self.documents, limit=history_limit)
        self.credentials = CredentialStore(self.documents)


def init_storage(data_dir: str | Path, *, history_limit: int = DEFAULT_HISTORY_LIMIT) -> Storage:
    path = Path(data_dir)
    path.mkdir(parents=True, exist_ok=True)
    return Storage(path, history_limit=history_limit)
