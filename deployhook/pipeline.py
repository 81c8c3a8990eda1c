"""웹훅 수신부터 백그라운드 배포 작업 시작까지의 흐름."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from .errors import AuthenticationFailed, InvalidRequest, ProjectNotFound
from .executor import JobExecutor
from .models import CommandResult, Job
from .sequencer import CommandPlan, build_command_plan, resolve_working_directory
from .signature import verify_signature
from .storage import Storage

LOGGER = logging.getLogger(__name__)


def _nested(payload: dict[str, Any], *keys: str) -> Any:
    value: Any = payload
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


class DeploymentPipeline:
    """프로젝트 확인 → 서명 검증 → 작업 기록 → 명령 구성 → 비동기 실행."""

    def __init__(self, storage: Storage, workspace_root: Path, *, git_binary: str = "git") -> None:
        self._storage = storage
        self._workspace_root = workspace_root
        self._git_binary = git_binary
        self._executor = JobExecutor(storage.jobs)
        self._tasks: set[asyncio.Task] = set()

    @property
    def running(self) -> int:
        return len(self._tasks)

    async def accept(self, raw_body: bytes, signature: str | None) -> Job:
        """웹훅 하나를 받아 작업을 만들고 실행을 예약한 뒤 바로 반환한다.

        서명은 파싱 결과가 아닌 수신한 바이트 그대로에 대해 검증한다.
        """
        try:
            payload = json.loads(raw_body) if raw_body else {}
        except ValueError as exc:
            raise InvalidRequest("invalid json") from exc
        if not isinstance(payload, dict):
            payload = {}

        repository_url = _nested(payload, "repository", "html_url")
        try:
            project = self._storage.projects.resolve(repository_url if isinstance(repository_url, str) else None)
        except ProjectNotFound:
            LOGGER.warning("Webhook received for unknown repository: %s", repository_url)
            raise

        try:
            verify_signature(project.secret, raw_body, signature)
        except AuthenticationFailed:
            LOGGER.warning("Invalid signature for project %s", project.name)
            raise

        job = Job(
            project_name=project.name,
            repository_url=project.repository_url,
            branch_ref=_nested(payload, "ref"),
            commit_message=_nested(payload, "head_commit", "message"),
            author_name=_nested(payload, "pusher", "name"),
        )
        working_directory = resolve_working_directory(project, self._workspace_root)
        try:
            plan = build_command_plan(project, working_directory, git_binary=self._git_binary)
        except OSError as exc:
            LOGGER.error("Cannot prepare %s for project %s: %s", working_directory, project.name, exc)
            job.record_result(0, CommandResult(command=f"mkdir -p {working_directory}", error=str(exc)))
            job.finish()
            await self._storage.jobs.record_new_job(job)
            return job

        job.command_results.append(CommandResult(command=plan.init_command.command))
        await self._storage.jobs.record_new_job(job)
        LOGGER.info("Webhook received for %s. Running %d command(s) as job %s", project.name, len(plan), job.job_id)
        self._dispatch(job, plan)
        return job

    async def join(self, timeout: float | None = None) -> set[asyncio.Task]:
        """실행 중인 작업이 끝날 때까지 기다리고 남은 작업을 돌려준다."""
        if not self._tasks:
            return set()
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        return pending

    def _dispatch(self, job: Job, plan: CommandPlan) -> None:
        task = asyncio.create_task(self._run(job, plan), name=f"deploy-{job.job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, job: Job, plan: CommandPlan) -> None:
        try:
            await self._executor.run(job, plan.commands)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Job %s aborted by an unexpected error", job.job_id)
            await self._storage.jobs.update_job(job.job_id, _abort)


def _abort(job: Job) -> None:
    job.mark_failed()
    job.finish()
