"""
Preview Server Module
======================

Static file server for previewing a site while developing it and after
building it.

Features:
    - Several base directories, searched in order
    - URL prefix routes to extra directories (e.g. /node_modules)
    - Live reload: HTML pages get a small client script, and `reload()`
      tells every connected browser to refresh over a WebSocket
    - Runs under uvicorn on a background thread; `start()` returns a
      Future that is done when the server stops
    - Optional browser launch

Example Usage:
    >>> server = PreviewServer(["temp", "src", "public"], port=8080, live_reload=True)
    >>> finished = server.start()
    >>> server.url
    'http://127.0.0.1:8080/'
    >>> server.reload()
    >>> server.stop()
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import os
import threading
import time
import webbrowser
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, Response
from fastapi.staticfiles import StaticFiles

from siteflow.utils.logging import get_logger
from siteflow.utils.exceptions import ConfigurationError

# Module logger
logger = get_logger(__name__)

PathLike = Union[str, Path]

RELOAD_PATH = "/__siteflow__/reload"

RELOAD_SCRIPT = (
    "<script>(function () {"
    "var scheme = location.protocol === 'https:' ? 'wss://' : 'ws://';"
    f"var socket = new WebSocket(scheme + location.host + '{RELOAD_PATH}');"
    "socket.onmessage = function () { location.reload(); };"
    "})();</script>"
)


def inject_script(html: str, script: str) -> str:
    """Insert `script` before </body>, or append it when there is none."""
    index = html.lower().rfind("</body>")
    if index == -1:
        return html + script
    return html[:index] + script + html[index:]


# =============================================================================
# Static Files
# =============================================================================

class PreviewStaticFiles(StaticFiles):
    """
    StaticFiles over several directories; the first one holding a path wins.

    Directories that do not exist are skipped, so a preview can start
    before the first build has created temp or dist.
    """

    def __init__(
        self,
        directories: Sequence[Path],
        reload_script: Optional[str] = None,
    ) -> None:
        super().__init__(html=True, check_dir=False)
        self.all_directories = [str(d) for d in directories]
        self.reload_script = reload_script

    def file_response(
        self,
        full_path: PathLike,
        stat_result: os.stat_result,
        scope: Dict[str, Any],
        status_code: int = 200,
    ) -> Response:
        if self.reload_script and str(full_path).endswith(".html"):
            html = Path(full_path).read_text(encoding="utf-8", errors="replace")
            return HTMLResponse(
                inject_script(html, self.reload_script), status_code=status_code
            )
        return super().file_response(full_path, stat_result, scope, status_code)


# =============================================================================
# Live Reload
# =============================================================================

class ReloadHub:
    """Browsers connected to the reload socket, with the loop each one lives on."""

    def __init__(self) -> None:
        self._clients: Dict[WebSocket, asyncio.AbstractEventLoop] = {}
        self._lock = threading.Lock()

    @property
    def clients(self) -> int:
        with self._lock:
            return len(self._clients)

    async def listen(self, websocket: WebSocket) -> None:
        await websocket.accept()
        with self._lock:
            self._clients[websocket] = asyncio.get_running_loop()
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.debug("Reload client disconnected")
        finally:
            with self._lock:
                self._clients.pop(websocket, None)

    def broadcast(self, message: str) -> int:
        """
        Send `message` to every client. Safe to call from any thread.

        Returns:
            Number of clients the message was sent to.
        """
        with self._lock:
            clients = list(self._clients.items())
        for websocket, loop in clients:
            sent = asyncio.run_coroutine_threadsafe(websocket.send_text(message), loop)
            sent.add_done_callback(self._log_send_error)
        return len(clients)

    @staticmethod
    def _log_send_error(sent: concurrent.futures.Future) -> None:
        if not sent.cancelled() and sent.exception() is not None:
            logger.debug(f"Reload message not delivered: {sent.exception()}")


def create_app(
    directories: List[Path],
    routes: Optional[Dict[str, Path]] = None,
    hub: Optional[ReloadHub] = None,
) -> FastAPI:
    """
    Build the ASGI app: the reload socket, one mount per route prefix, then
    the base directories for everything else.
    """
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    if hub is not None:
        @app.websocket(RELOAD_PATH)
        async def reload_socket(websocket: WebSocket) -> None:
            await hub.listen(websocket)

    for prefix, directory in (routes or {}).items():
        app.mount(
            prefix.rstrip("/") or "/",
            PreviewStaticFiles([directory]),
            name=f"route{prefix}",
        )

    app.mount(
        "/",
        PreviewStaticFiles(
            directories, reload_script=RELOAD_SCRIPT if hub is not None else None
        ),
        name="site",
    )
    return app


# =============================================================================
# Server
# =============================================================================

class PreviewServer:
    """
    Background static file server.

    Attributes:
        directories: Base directories, first match wins.
        routes: URL prefix -> directory.
        host: Bind address.
        port: Bind port (0 picks a free one).
        open_browser: Open the site in a browser once started.
        hub: Reload socket clients, or None without live reload.
        app: The FastAPI app being served.
    """

    def __init__(
        self,
        directories: Sequence[PathLike],
        routes: Optional[Dict[str, PathLike]] = None,
        host: str = "127.0.0.1",
        port: int = 8080,
        open_browser: bool = False,
        live_reload: bool = False,
    ) -> None:
        if not directories:
            raise ConfigurationError("PreviewServer needs at least one directory")
        self.directories = [Path(d).resolve() for d in directories]
        self.routes = {
            prefix: Path(directory).resolve()
            for prefix, directory in (routes or {}).items()
        }
        self.host = host
        self.port = port
        self.open_browser = open_browser
        self.hub: Optional[ReloadHub] = ReloadHub() if live_reload else None
        self.app = create_app(self.directories, self.routes, self.hub)

        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._finished: Future = Future()

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/"

    @property
    def is_running(self) -> bool:
        return self._server is not None and not self._finished.done()

    def start(self) -> Future:
        """
        Bind and start serving on a daemon thread.

        Returns:
            Future that completes when the server stops.

        Raises:
            ConfigurationError: If the server could not bind.
        """
        if self._server is not None:
            raise RuntimeError("Server already started")

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_config=None,
            log_level="warning",
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=1,
        )
        self._server = uvicorn.Server(config)
        self._finished.set_running_or_notify_cancel()

        self._thread = threading.Thread(
            target=self._serve,
            name=f"siteflow-server-{self.port}",
            daemon=True,
        )
        self._thread.start()

        while not self._server.started and self._thread.is_alive():
            time.sleep(0.01)
        if not self._server.started:
            self._thread.join()
            raise ConfigurationError(
                f"Could not start preview server on {self.host}:{self.port}",
                cause=self._finished.exception(),
            )

        self.port = self._server.servers[0].sockets[0].getsockname()[1]
        logger.info(
            f"Serving {', '.join(str(d) for d in self.directories)} at {self.url}"
        )
        if self.open_browser:
            webbrowser.open(self.url)
        return self._finished

    def _serve(self) -> None:
        try:
            self._server.run()
        except (Exception, SystemExit) as e:
            # uvicorn exits with SystemExit when it cannot bind
            logger.error(f"Preview server failed: {e!r}")
            self._finished.set_exception(e)
            return
        self._finished.set_result(None)

    def reload(self) -> int:
        """
        Tell connected browsers to reload.

        Returns:
            Number of browsers notified (0 without live reload).
        """
        if self.hub is None:
            return 0
        count = self.hub.broadcast("reload")
        logger.info(f"Reloading {count} browser(s)")
        return count

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop serving and wait for the server thread."""
        if self._server is None:
            return
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout)
        logger.info(f"Stopped server at {self.url}")

    def __enter__(self) -> "PreviewServer":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
