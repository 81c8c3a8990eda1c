"""deployhook 도메인 모델."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable

_WHITESPACE = re.compile(r"\s+")


class JobStatus(str, Enum):
    """배포 작업 상태. FAILED는 종료 상태이며 되돌아가지 않는다."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


def normalize_commands(raw: str | Iterable[str] | None) -> list[str]:
    """콤마 구분 문자열 또는 리스트를 정규화된 명령 목록으로 변환."""
    if raw is None:
        return []
    items = raw.split(",") if isinstance(raw, str) else [str(item) for item in raw]
    commands = []
    for item in items:
        command = _WHITESPACE.sub(" ", item.strip())
        if command:
            commands.append(command)
    return commands


def strip_git_suffix(url: str) -> str:
    return url[:-4] if url.endswith(".git") else url


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


@dataclass(slots=True)
class Project:
    """등록된 배포 대상."""

    name: str
    repository_url: str
    secret: str
    commands: list[str] = field(default_factory=list)
    working_directory: str = ""

    @property
    def normalized_url(self) -> str:
        return strip_git_suffix(self.repository_url)


@dataclass(slots=True)
class CommandResult:
    """명령 하나의 실행 결과. exit_code가 None이면 아직 끝나지 않은 자리표시자."""

    command: str
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    exit_code: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.exit_code == 0


@dataclass(slots=True)
class Job:
    """웹훅 하나로 시작된 배포 작업 기록."""

    project_name: str
    repository_url: str
    branch_ref: str | None = None
    commit_message: str | None = None
    author_name: str | None = None
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: str = field(default_factory=utcnow_iso)
    status: JobStatus = JobStatus.STARTED
    command_results: list[CommandResult] = field(default_factory=list)
    finished_at: str | None = None

    def record_result(self, index: int, result: CommandResult) -> None:
        # 자리표시자가 있는 위치는 덮어쓰고 나머지는 순서대로 추가
        if index < len(self.command_results):
            self.command_results[index] = result
        elif index == len(self.command_results):
            self.command_results.append(result)
        else:
            raise IndexError(f"result index {index} skips ahead of {len(self.command_results)} recorded results")
        if not result.succeeded:
            self.mark_failed()

    def mark_failed(self) -> None:
        self.status = JobStatus.FAILED

    def finish(self) -> None:
        if self.status == JobStatus.STARTED:
            self.status = JobStatus.COMPLETED
        self.finished_at = utcnow_iso()
