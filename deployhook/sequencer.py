"""작업별 명령 순서(clone/pull + 프로젝트 명령) 구성."""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from .models import Project

LOGGER = logging.getLogger(__name__)

VCS_MARKER = ".git"


@dataclass(slots=True, frozen=True)
class PlannedCommand:
    command: str
    cwd: Path


@dataclass(slots=True)
class CommandPlan:
    """실행할 명령 목록. 첫 항목은 항상 clone 또는 pull."""

    working_directory: Path
    commands: list[PlannedCommand] = field(default_factory=list)
    cloning: bool = False

    @property
    def init_command(self) -> PlannedCommand:
        return self.commands[0]

    def __len__(self) -> int:
        return len(self.commands)


def resolve_working_directory(project: Project, base_dir: Path) -> Path:
    path = Path(project.working_directory).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return Path(path.resolve())


def build_command_plan(project: Project, working_directory: Path, *, git_binary: str = "git") -> CommandPlan:
    """작업 디렉터리 상태를 보고 clone/pull 여부를 결정한다.

    디렉터리가 없으면 먼저 만든다. `.git`이 없으면 부모 디렉터리에서
    `git clone <url> <basename>`을, 있으면 작업 디렉터리에서 `git pull`을 실행한다.
    """
    if not working_directory.exists():
        LOGGER.info("Creating working directory: %s", working_directory)
        working_directory.mkdir(parents=True, exist_ok=True)

    git = shlex.quote(git_binary)
    cloning = not (working_directory / VCS_MARKER).exists()
    if cloning:
        LOGGER.info("Repository not found in %s. Cloning...", working_directory)
        init = PlannedCommand(
            command=f"{git} clone {shlex.quote(project.repository_url)} {shlex.quote(working_directory.name)}",
            cwd=working_directory.parent,
        )
    else:
        LOGGER.info("Repository found in %s. Pulling latest changes...", working_directory)
        init = PlannedCommand(command=f"{git} pull", cwd=working_directory)

    commands = [init]
    commands.extend(PlannedCommand(command=command, cwd=working_directory) for command in project.commands)
    return CommandPlan(working_directory=working_directory, commands=commands, cloning=cloning)
