"""deployhook 예외 계층."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import CommandResult


class DeployHookError(RuntimeError):
    """deployhook 동작 중 발생한 예외의 기반 클래스."""


class AuthenticationFailed(DeployHookError):
    """웹훅 서명이 프로젝트 secret으로 계산한 값과 다름."""


class ProjectNotFound(DeployHookError):
    """요청한 저장소 URL 또는 이름에 해당하는 프로젝트가 없음."""


class ProjectConflict(DeployHookError):
    """같은 이름 또는 같은 저장소 URL의 프로젝트가 이미 있음."""


class InvalidRequest(DeployHookError):
    """필수 필드 누락 등 잘못된 입력."""


class PersistenceFailure(DeployHookError):
    """문서 저장소 읽기/쓰기 실패."""


class CommandFailed(DeployHookError):
    """명령이 0이 아닌 코드로 종료했거나 실행되지 못함."""

    def __init__(self, result: CommandResult) -> None:
        super().__init__(result.error or f"command failed: {result.command}")
        self.result = result
