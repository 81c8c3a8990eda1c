"""REST API 라우트."""

from __future__ import annotations

import json
import logging
from typing import Any

from aiohttp import web

from .errors import AuthenticationFailed, InvalidRequest, ProjectConflict, ProjectNotFound
from .models import Project, normalize_commands
from .pipeline import DeploymentPipeline
from .signature import SIGNATURE_HEADER
from .storage import Storage, project_to_dict

LOGGER = logging.getLogger(__name__)

EVENT_HEADER = "X-GitHub-Event"


def _message(exc_cls: type[web.HTTPException], message: str) -> web.HTTPException:
    return exc_cls(text=json.dumps({"message": message}), content_type="application/json")


class ApiHandler:
    def __init__(self, storage: Storage, pipeline: DeploymentPipeline) -> None:
        self._storage = storage
        self._pipeline = pipeline

    def routes(self) -> tuple[web.RouteDef, ...]:
        return (
            web.get("/api/status", self.status),
            web.post("/api/setup", self.setup),
            web.post("/api/login", self.login),
            web.post("/api/project", self.create_project),
            web.put("/api/project/{name}", self.replace_project),
            web.delete("/api/project/{name}", self.delete_project),
            web.get("/api/projects", self.list_projects),
            web.get("/api/logs", self.list_logs),
            web.get("/api/logs/{job_id}", self.get_log),
            web.post("/webhook", self.webhook),
        )

    async def status(self, _: web.Request) -> web.Response:
        return web.json_response({"initialized": self._storage.credentials.is_initialized()})

    async def setup(self, request: web.Request) -> web.Response:
        data = await self._read_body(request)
        try:
            self._storage.credentials.setup(str(data.get("username") or ""), str(data.get("password") or ""))
        except InvalidRequest as exc:
            raise _message(web.HTTPBadRequest, str(exc)) from None
        return web.json_response({"message": "Setup complete."})

    async def login(self, request: web.Request) -> web.Response:
        data = await self._read_body(request)
        try:
            ok = self._storage.credentials.verify(str(data.get("username") or ""), str(data.get("password") or ""))
        except InvalidRequest as exc:
            raise _message(web.HTTPBadRequest, str(exc)) from None
        if not ok:
            raise _message(web.HTTPUnauthorized, "Invalid username or password.")
        return web.json_response({"message": "Login successful."})

    async def create_project(self, request: web.Request) -> web.Response:
        data = await self._read_body(request)
        name = str(data.get("name") or "").strip()
        project = self._project_from_body(name, data, require_commands=False)
        if not name:
            raise _message(
                web.HTTPBadRequest,
                "Project name, repository, secret, and working directory are required.",
            )
        try:
            self._storage.projects.register(project)
        except ProjectConflict as exc:
            raise _message(web.HTTPConflict, str(exc)) from None
        return web.json_response({"message": "Project saved successfully."})

    async def replace_project(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        data = await self._read_body(request)
        project = self._project_from_body(name, data, require_commands=True)
        try:
            self._storage.projects.replace(name, project)
        except ProjectNotFound as exc:
            raise _message(web.HTTPNotFound, str(exc)) from None
        except ProjectConflict as exc:
            raise _message(web.HTTPConflict, str(exc)) from None
        return web.json_response({"message": f"Project '{name}' updated successfully."})

    async def delete_project(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        try:
            self._storage.projects.delete(name)
        except ProjectNotFound as exc:
            raise _message(web.HTTPNotFound, str(exc)) from None
        return web.json_response({"message": f"Project '{name}' deleted successfully."})

    async def list_projects(self, _: web.Request) -> web.Response:
        payload = {project.name: project_to_dict(project) for project in self._storage.projects.list_projects()}
        return web.json_response(payload)

    async def list_logs(self, _: web.Request) -> web.Response:
        return web.json_response(self._storage.jobs.list_jobs())

    async def get_log(self, request: web.Request) -> web.Response:
        job = self._storage.jobs.get_job(request.match_info["job_id"])
        if job is None:
            raise web.HTTPNotFound(text="job not found")
        return web.json_response(job)

    async def webhook(self, request: web.Request) -> web.Response:
        raw_body = await request.read()
        LOGGER.info("Webhook event: %s", request.headers.get(EVENT_HEADER, "unknown"))
        try:
            await self._pipeline.accept(raw_body, request.headers.get(SIGNATURE_HEADER))
        except ProjectNotFound:
            raise web.HTTPBadRequest(text="Project not found") from None
        except AuthenticationFailed:
            raise web.HTTPForbidden(text="Invalid signature") from None
        except InvalidRequest as exc:
            raise web.HTTPBadRequest(text=str(exc)) from None
        return web.Response(text="OK")

    async def _read_body(self, request: web.Request) -> dict[str, Any]:
        if request.content_type in {"application/x-www-form-urlencoded", "multipart/form-data"}:
            form = await request.post()
            return {key: value for key, value in form.items() if isinstance(value, str)}
        try:
            data = await request.json()
        except Exception:  # noqa: BLE001
            raise _message(web.HTTPBadRequest, "invalid json") from None
        if not isinstance(data, dict):
            raise _message(web.HTTPBadRequest, "JSON object expected")
        return data

    def _project_from_body(self, name: str, data: dict[str, Any], *, require_commands: bool) -> Project:
        repository_url = str(data.get("repository_url") or "").strip()
        secret = str(data.get("secret") or "")
        working_directory = str(data.get("working_directory") or "").strip()
        raw_commands = data.get("commands")
        if not isinstance(raw_commands, (str, list)):
            raw_commands = None
        if not repository_url or not secret or not working_directory or (require_commands and not raw_commands):
            if require_commands:
                text = "Repository, secret, commands, and working directory are required."
            else:
                text = "Project name, repository, secret, and working directory are required."
            raise _message(web.HTTPBadRequest, text)
        return Project(
            name=name,
            repository_url=repository_url,
            secret=secret,
            commands=normalize_commands(raw_commands),
            working_directory=working_directory,
        )
