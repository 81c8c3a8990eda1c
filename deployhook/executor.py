"""명령 순서를 하위 프로세스로 하나씩 실행하는 작업 실행기."""

from __future__ import annotations

import asyncio
import asyncio.subprocess
import functools
import logging
from typing import Sequence

from .errors import CommandFailed
from .models import CommandResult, Job
from .sequencer import PlannedCommand
from .storage import JobLogStore

LOGGER = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024


class JobExecutor:
    """명령을 엄격히 순서대로 실행한다. 실패해도 나머지 명령은 계속 실행한다."""

    def __init__(self, job_log: JobLogStore) -> None:
        self._job_log = job_log

    async def run(self, job: Job, commands: Sequence[PlannedCommand]) -> None:
        for index, planned in enumerate(commands):
            try:
                result = await run_command(planned)
            except CommandFailed as exc:
                result = exc.result
                LOGGER.warning("[job %s] %s failed: %s", job.job_id, planned.command, result.error)
            else:
                LOGGER.info("[job %s] %s succeeded", job.job_id, planned.command)
            await self._job_log.update_job(job.job_id, functools.partial(Job.record_result, index=index, result=result))

        await self._job_log.update_job(job.job_id, Job.finish)
        LOGGER.info("[job %s] All %d command(s) executed (%s)", job.job_id, len(commands), job.status.value)


async def run_command(planned: PlannedCommand) -> CommandResult:
    """셸 명령 하나를 실행하고 stdout/stderr 전체를 모은다.

    종료 코드가 0이 아니거나 프로세스를 띄우지 못하면 결과를 담은
    CommandFailed를 던진다.
    """
    LOGGER.info("Running: %s in %s", planned.command, planned.cwd)
    try:
        process = await asyncio.create_subprocess_shell(
            planned.command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(planned.cwd),
        )
    except OSError as exc:
        raise CommandFailed(CommandResult(command=planned.command, error=f"failed to start: {exc}")) from exc

    async def _pipe(stream: asyncio.StreamReader, label: str) -> str:
        # readline()은 긴 줄에서 한도를 넘기므로 청크 단위로 읽는다
        chunks: list[bytes] = []
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            chunks.append(chunk)
            LOGGER.debug("[%s %s]: %s", planned.command, label, chunk.decode(errors="replace").rstrip())
        return b"".join(chunks).decode(errors="replace")

    stdout, stderr = await asyncio.gather(_pipe(process.stdout, "stdout"), _pipe(process.stderr, "stderr"))
    return_code = await process.wait()
    result = CommandResult(command=planned.command, stdout=stdout, stderr=stderr, exit_code=return_code)
    if return_code != 0:
        result.error = f"Command failed with exit code {return_code}: {planned.command}"
        raise CommandFailed(result)
    return result
