"""Development server for Quill.

Serves the built blog locally while you write:
- Injects a live-reload script into HTML responses.
- Answers directory listings and missing paths with a 404 (using 404.html
  when the site has one).
- Watches the source folders, rebuilds into a staging directory, swaps it
  into place and tells connected browsers to reload.

Key classes:
- DevServer: Runs the HTTP server, websocket server and file watcher.
- _ReloadHandler: HTTP handler that injects the reload script.
- _ChangeHandler: watchdog handler that triggers rebuilds.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import os
import shutil
import threading
import time
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import websockets
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .build import BuildError, build_site
from .config import CONFIG_FILENAME, ConfigError, load_config

logger = logging.getLogger(__name__)

_NOT_BUILT = object()

WATCHED_FOLDERS = ("site", "assets", "data")

RELOAD_SCRIPT_TEMPLATE = """
<script>
(() => {{
  const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
  ws.onmessage = (event) => {{
    const data = JSON.parse(event.data || '{{}}');
    if (data.type === 'reload') location.reload();
  }};
}})();
</script>
"""


def inject_script(html: str, script: str) -> str:
    """Insert ``script`` before ``</body>``, or append it."""
    if "</body>" in html:
        return html.replace("</body>", f"{script}</body>", 1)
    return html + script


class _ReloadHandler(SimpleHTTPRequestHandler):
    """HTTP request handler that injects the live reload script into HTML pages."""

    reload_script = RELOAD_SCRIPT_TEMPLATE.format(ws_port=4001)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        return self._serve_404()

    def _send_html(self, status: int, html: str) -> None:
        encoded = inject_script(html, self.reload_script).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)

    def _serve_404(self):
        error_page = Path(self.directory) / "404" / "index.html"
        if not error_page.exists():
            error_page = Path(self.directory) / "404.html"
        if error_page.exists():
            self._send_html(404, error_page.read_text(encoding="utf-8"))
            return None
        self.send_error(404, "File not found")
        return None

    def send_head(self):
        path_obj = Path(self.translate_path(self.path))
        if path_obj.is_dir():
            path_obj = path_obj / "index.html"
        if not path_obj.is_file():
            return self._serve_404()
        if path_obj.suffix == ".html":
            self._send_html(200, path_obj.read_text(encoding="utf-8"))
            return None
        return super().send_head()


class DevServer:
    """Development server with live reload.

    Attributes:
        project_root: Root directory of the project.
        config: Site configuration.
        output_dir: Directory where the built site is served from.
        http_port: Port for the HTTP server.
        ws_port: Port for websocket reload notifications.
    """

    def __init__(
        self,
        project_root: Path,
        http_port: int | None = None,
        ws_port: int | None = None,
    ):
        self.project_root = project_root
        self.config = load_config(project_root)
        self.output_dir = project_root / self.config.get("output_dir", "output")
        self._staging_dir = self.output_dir.with_name(self.output_dir.name + ".staging")
        self._previous_dir = self.output_dir.with_name(self.output_dir.name + ".previous")
        self.http_port = int(http_port or self.config.get("port", 4000))
        if ws_port is not None:
            self.ws_port = ws_port
        elif http_port is not None:
            self.ws_port = self.http_port + 1
        else:
            self.ws_port = int(self.config.get("ws_port", self.http_port + 1))
        self._reload_script = RELOAD_SCRIPT_TEMPLATE.format(ws_port=self.ws_port)
        self._root_url = f"http://localhost:{self.http_port}"
        self._observer: Observer | None = None
        self._ws_clients: set = set()
        self._loop = asyncio.new_event_loop()
        self._lock = threading.Lock()
        self._last_signature: tuple | None = None
        self._debounce_seconds = 0.05
        self._last_rebuild_at = 0.0
        self._pending = False
        self._retry_timer: threading.Timer | None = None

    def start(self, include_drafts: bool = False) -> None:  # pragma: no cover - integration path
        self._build(include_drafts)
        self._last_signature = self._compute_signature()
        threading.Thread(target=self._start_http, daemon=True).start()
        threading.Thread(target=self._start_ws, daemon=True).start()
        self._start_watcher(include_drafts)
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def stop(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
        if self._observer:
            self._observer.stop()
            self._observer.join()
        self._loop.call_soon_threadsafe(self._loop.stop)

    def _start_http(self) -> None:  # pragma: no cover - integration path
        handler_cls = type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": self._reload_script},
        )
        handler = functools.partial(handler_cls, directory=str(self.output_dir))
        httpd = ThreadingHTTPServer(("", self.http_port), handler)
        logger.info("Serving %s at %s", self.output_dir, self._root_url)
        httpd.serve_forever()

    def _start_ws(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_ws_server())
        except OSError as exc:
            logger.error("Live reload server failed on port %s: %s", self.ws_port, exc)

    async def _run_ws_server(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self._ws_handler, "0.0.0.0", self.ws_port):
            await asyncio.Future()

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def _broadcast_reload(self) -> None:
        message = json.dumps({"type": "reload"})
        asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    async def _async_broadcast(self, message: str) -> None:
        stale = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send(message)
            except websockets.ConnectionClosed:
                stale.add(ws)
        self._ws_clients -= stale

    def _start_watcher(self, include_drafts: bool) -> None:  # pragma: no cover
        handler = _ChangeHandler(self, include_drafts)
        observer = Observer()
        for folder in WATCHED_FOLDERS:
            watch_path = self.project_root / folder
            if watch_path.exists():
                observer.schedule(handler, str(watch_path), recursive=True)
        observer.schedule(handler, str(self.project_root), recursive=False)
        observer.start()
        self._observer = observer

    def _build(self, include_drafts: bool) -> None:
        staging = self._prepare_staging_dir()
        build_site(
            self.project_root,
            include_drafts=include_drafts,
            root_url=self._root_url,
            clean_output=True,
            output_dir_override=staging,
        )
        self._activate_staging(staging)

    def rebuild(self, include_drafts: bool) -> bool:
        """Rebuild after a change; returns True when browsers were told to reload.

        Changes that arrive while a build is running are picked up by another
        pass once it finishes. Calls inside the debounce window are retried
        when the window closes. Errors are logged and the previously built
        output keeps being served.
        """
        wait = self._debounce_seconds - (time.time() - self._last_rebuild_at)
        if wait > 0:
            self._schedule_retry(include_drafts, wait)
            return False
        if not self._lock.acquire(blocking=False):
            self._pending = True
            return False
        reloaded = False
        attempted: object = _NOT_BUILT
        try:
            while True:
                pending, self._pending = self._pending, False
                signature = self._compute_signature()
                if signature is not None and signature == self._last_signature:
                    break
                if signature == attempted and not pending:
                    break
                attempted = signature
                logger.info("Change detected; rebuilding...")
                if self._try_build(include_drafts):
                    self._last_signature = signature
                    self._broadcast_reload()
                    reloaded = True
            return reloaded
        finally:
            self._last_rebuild_at = time.time()
            self._lock.release()

    def _try_build(self, include_drafts: bool) -> bool:
        try:
            self._build(include_drafts)
        except BuildError as exc:
            logger.error("Build failed: %s", exc)
            return False
        except ConfigError as exc:
            logger.error("Configuration error: %s", exc)
            return False
        except OSError as exc:
            logger.error("Could not write the site: %s", exc)
            return False
        return True

    def _schedule_retry(self, include_drafts: bool, delay: float) -> None:
        current = self._retry_timer
        if (
            current is not None
            and current.is_alive()
            and current is not threading.current_thread()
        ):
            return
        timer = threading.Timer(delay, self.rebuild, args=(include_drafts,))
        timer.daemon = True
        self._retry_timer = timer
        timer.start()

    def _compute_signature(self) -> tuple | None:
        entries: list[tuple] = []
        roots = [self.project_root / folder for folder in WATCHED_FOLDERS]
        config_file = self.project_root / CONFIG_FILENAME
        paths = [config_file] if config_file.exists() else []
        for root in roots:
            if root.exists():
                paths.extend(p for p in sorted(root.rglob("*")) if p.is_file())
        for path in paths:
            try:
                stat = path.stat()
            except OSError:
                continue
            rel = path.relative_to(self.project_root)
            entries.append((str(rel), stat.st_mtime_ns, stat.st_size))
        return tuple(entries) if entries else None

    def _prepare_staging_dir(self) -> Path:
        staging = self._staging_dir
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True, exist_ok=True)
        return staging

    def _activate_staging(self, staging: Path) -> None:
        """Move the staged build into place, then delete the previous output."""
        previous = self._previous_dir
        if previous.exists():
            shutil.rmtree(previous)
        if self.output_dir.exists():
            os.replace(self.output_dir, previous)
        os.replace(staging, self.output_dir)
        if previous.exists():
            shutil.rmtree(previous)


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, server: DevServer, include_drafts: bool):
        super().__init__()
        self.server = server
        self.include_drafts = include_drafts

    def on_any_event(self, event):
        if event.is_directory:
            return
        path = Path(event.src_path)
        for ignored in (
            self.server.output_dir,
            self.server._staging_dir,
            self.server._previous_dir,
        ):
            if path == ignored or ignored in path.parents:
                return
        if "node_modules" in path.parts or ".git" in path.parts:
            return
        self.server.rebuild(self.include_drafts)
