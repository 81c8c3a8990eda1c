"""웹훅으로 트리거되는 자체 호스팅 배포 서버."""

from .errors import (
    AuthenticationFailed,
    CommandFailed,
    DeployHookError,
    InvalidRequest,
    PersistenceFailure,
    ProjectConflict,
    ProjectNotFound,
)
from .models import CommandResult, Job, JobStatus, Project
from .pipeline import DeploymentPipeline
from .storage import Storage, init_storage

__version__ = "0.1.0"

__all__ = [
    "AuthenticationFailed",
    "CommandFailed",
    "CommandResult",
    "DeployHookError",
    "DeploymentPipeline",
    "InvalidRequest",
    "Job",
    "JobStatus",
    "PersistenceFailure",
    "Project",
    "ProjectConflict",
    "ProjectNotFound",
    "Storage",
    "init_storage",
]
