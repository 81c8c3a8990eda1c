from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

# Ensure tests always import the local tree, not an older installed wheel.
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from deployhook.models import Project  # noqa: E402
from deployhook.pipeline import DeploymentPipeline  # noqa: E402
from deployhook.signature import compute_signature  # noqa: E402
from deployhook.storage import init_storage  # noqa: E402

REPO_URL = "https://example.com/org/repo.git"
SECRET = "s3cr3t"


@pytest.fixture()
def storage(tmp_path):
    return init_storage(tmp_path / "data")


@pytest.fixture()
def workspace(tmp_path):
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture()
def project(storage):
    project = Project(
        name="p1",
        repository_url=REPO_URL,
        secret=SECRET,
        commands=["echo hi", "echo bye"],
        working_directory="./work/p1",
    )
    storage.projects.register(project)
    return project


@pytest.fixture()
def pipeline(storage, workspace):
    # `true` stands in for git so clone/pull succeed without network access.
    return DeploymentPipeline(storage, workspace, git_binary="true")


def push_payload(html_url: str = "https://example.com/org/repo") -> bytes:
    payload = {
        "ref": "refs/heads/main",
        "repository": {"html_url": html_url},
        "head_commit": {"message": "Fix deploy script"},
        "pusher": {"name": "octocat"},
    }
    # Deliberately not json.dumps defaults: the signature must cover these exact bytes.
    return json.dumps(payload, indent=1).encode() + b"\n"


def sign(body: bytes, secret: str = SECRET) -> str:
    return compute_signature(secret, body)
