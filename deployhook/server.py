"""deployhook HTTP 서버와 진입점."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from contextlib import suppress
from pathlib import Path
from typing import Sequence

from aiohttp import web

from .api import ApiHandler
from .pipeline import DeploymentPipeline
from .storage import DEFAULT_HISTORY_LIMIT, Storage, init_storage

LOGGER = logging.getLogger(__name__)

_PLACEHOLDER_PAGE = """
<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <title>deployhook</title>
    <style>
      body {
        margin: 0;
        padding: 3rem;
        font-family: 'Segoe UI', sans-serif;
        background: #0f172a;
        color: #e2e8f0;
      }
      main {
        max-width: 640px;
        margin: 0 auto;
        background: #111c32;
        padding: 2rem 2.5rem;
        border-radius: 20px;
      }
      code {
        background: rgba(148, 163, 184, 0.15);
        padding: 0.15rem 0.4rem;
        border-radius: 6px;
      }
    </style>
  </head>
  <body>
    <main>
      <h1>deployhook is running</h1>
      <p>
        No UI bundle was found. Put an <code>index.html</code> into the public
        directory, or use the JSON API: <code>GET /api/projects</code>,
        <code>GET /api/logs</code>, and point repository webhooks at <code>POST /webhook</code>.
      </p>
    </main>
  </body>
</html>
"""


class DeployServer:
    """웹훅과 관리 API를 제공하는 aiohttp 서버."""

    def __init__(
        self,
        host: str,
        port: int,
        storage: Storage,
        pipeline: DeploymentPipeline,
        *,
        public_dir: Path | None = None,
        shutdown_grace: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._storage = storage
        self._pipeline = pipeline
        self._public_dir = public_dir
        self._shutdown_grace = max(shutdown_grace, 0.0)
        self._api_handler = ApiHandler(storage, pipeline)
        self._web_app = web.Application()
        self._web_app.add_routes([web.get("/", self._handle_index)])
        self._web_app.add_routes(self._api_handler.routes())
        if public_dir is not None and (public_dir / "assets").is_dir():
            self._web_app.router.add_static("/assets", public_dir / "assets", show_index=False)
        self._web_app.router.add_get("/{tail:.*}", self._handle_index)
        self._web_runner: web.AppRunner | None = None
        self._web_site: web.TCPSite | None = None

    @property
    def web_app(self) -> web.Application:
        return self._web_app

    async def start(self) -> None:
        if self._web_runner is not None:
            return
        self._web_runner = web.AppRunner(self._web_app)
        await self._web_runner.setup()
        self._web_site = web.TCPSite(self._web_runner, self._host, self._port)
        await self._web_site.start()
        LOGGER.info("deployhook running at http://%s:%s", self._host, self._port)

    async def stop(self) -> None:
        """새 요청을 막고 실행 중인 작업을 grace 시간 동안 기다린다."""
        LOGGER.info("Stopping deployhook server")
        if self._web_site is not None:
            await self._web_site.stop()
            self._web_site = None
        pending = await self._pipeline.join(timeout=self._shutdown_grace)
        if pending:
            LOGGER.warning("%d job(s) still running at shutdown; their history may stay 'started'", len(pending))
        if self._web_runner is not None:
            await self._web_runner.cleanup()
            self._web_runner = None

    async def _handle_index(self, request: web.Request) -> web.StreamResponse:
        if request.path.startswith("/api/"):
            raise web.HTTPNotFound()
        if self._public_dir is not None:
            index_path = self._public_dir / "index.html"
            if index_path.exists():
                return web.FileResponse(index_path)
        return web.Response(text=_PLACEHOLDER_PAGE, content_type="text/html")


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(asctime)s] %(levelname)s: %(message)s")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Self-hosted webhook deployment server")
    parser.add_argument("--host", default=os.getenv("DEPLOYHOOK_HOST", "0.0.0.0"), help="바인딩할 호스트 주소")
    parser.add_argument("--port", type=int, default=int(os.getenv("DEPLOYHOOK_PORT", "1000")), help="바인딩할 포트")
    parser.add_argument("--verbose", action="store_true", help="디버그 로그 활성화 (명령 출력 포함)")
    parser.add_argument(
        "--data-dir",
        default=os.getenv("DEPLOYHOOK_DATA_DIR", "var"),
        help="projects.json, logs.json, users.json 저장 경로",
    )
    parser.add_argument(
        "--workspace-root",
        default=os.getenv("DEPLOYHOOK_WORKSPACE_ROOT", "."),
        help="상대 경로로 등록된 작업 디렉터리의 기준 경로",
    )
    parser.add_argument("--public-dir", default=os.getenv("DEPLOYHOOK_PUBLIC_DIR", "public"), help="정적 UI 디렉터리")
    parser.add_argument("--git-binary", default=os.getenv("DEPLOYHOOK_GIT", "git"), help="clone/pull에 사용할 git 실행 파일")
    parser.add_argument(
        "--history-limit",
        type=int,
        default=int(os.getenv("DEPLOYHOOK_HISTORY_LIMIT", str(DEFAULT_HISTORY_LIMIT))),
        help="보관할 작업 이력 개수",
    )
    parser.add_argument(
        "--shutdown-grace",
        type=float,
        default=float(os.getenv("DEPLOYHOOK_SHUTDOWN_GRACE", "30")),
        help="종료 시 실행 중인 작업을 기다릴 시간(초)",
    )
    return parser.parse_args(argv)


async def _run_server(args: argparse.Namespace) -> None:
    storage = init_storage(args.data_dir, history_limit=args.history_limit)
    pipeline = DeploymentPipeline(
        storage,
        Path(args.workspace_root).expanduser().resolve(),
        git_binary=args.git_binary,
    )
    server = DeployServer(
        args.host,
        args.port,
        storage,
        pipeline,
        public_dir=Path(args.public_dir),
        shutdown_grace=args.shutdown_grace,
    )
    await server.start()

    stop_event = asyncio.Event()

    def _handle_signal(*_: signal.Signals) -> None:
        LOGGER.info("Received shutdown signal")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, _handle_signal)

    try:
        await stop_event.wait()
    finally:
        await server.stop()


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    try:
        asyncio.run(_run_server(args))
    except KeyboardInterrupt:
        LOGGER.info("Keyboard interrupt received")


if __name__ == "__main__":
    main(sys.argv[1:])
