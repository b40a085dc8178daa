import asyncio
import io
import logging
import time
from pathlib import Path

import websockets

from quill.build import BuildError
from quill.config import ConfigError
from quill.server import DevServer, _ChangeHandler, _ReloadHandler, inject_script


class DummyEvent:
    def __init__(self, path, is_directory=False):
        self.src_path = path
        self.is_directory = is_directory


def make_handler(directory: Path, path: str) -> _ReloadHandler:
    handler = _ReloadHandler.__new__(_ReloadHandler)
    handler.path = path
    handler.directory = str(directory)
    handler.command = "GET"
    handler.request_version = "HTTP/1.1"
    handler.server_version = ""
    handler.sys_version = ""
    handler._headers_buffer = []
    handler.headers = {}
    handler.rfile = io.BytesIO(b"")
    handler.wfile = io.BytesIO()
    handler.codes = []
    handler.send_response = lambda code, message=None: handler.codes.append(code)
    handler.send_header = lambda *args, **kwargs: None
    handler.end_headers = lambda: None
    handler.send_error = lambda code, *args, **kwargs: handler.codes.append(("error", code))
    return handler


def test_inject_script():
    assert inject_script("<body>x</body>", "<s/>") == "<body>x<s/></body>"
    assert inject_script("plain", "<s/>") == "plain<s/>"


def test_change_handler_skips_output_and_staging(tmp_path):
    server = DevServer(tmp_path)
    called = []
    server.rebuild = lambda include_drafts: called.append(include_drafts)
    handler = _ChangeHandler(server, include_drafts=True)

    handler.on_any_event(DummyEvent(str(server.output_dir / "index.html")))
    handler.on_any_event(DummyEvent(str(server._staging_dir / "posts" / "index.html")))
    handler.on_any_event(DummyEvent(str(server._previous_dir / "index.html")))
    handler.on_any_event(DummyEvent(str(tmp_path / ".git" / "HEAD")))
    handler.on_any_event(DummyEvent(str(tmp_path / "node_modules" / "x.js")))
    handler.on_any_event(DummyEvent(str(tmp_path / "site"), is_directory=True))
    assert called == []

    handler.on_any_event(DummyEvent(str(tmp_path / "site" / "posts" / "a.md")))
    assert called == [True]


def test_ports_from_config_and_overrides(tmp_path):
    (tmp_path / "quill.yaml").write_text("port: 4100\nws_port: 4200\n", encoding="utf-8")
    server = DevServer(tmp_path)
    assert server.http_port == 4100
    assert server.ws_port == 4200

    override = DevServer(tmp_path, http_port=5055)
    assert override.http_port == 5055
    assert override.ws_port == 5056

    explicit = DevServer(tmp_path, http_port=5055, ws_port=6000)
    assert explicit.ws_port == 6000
    assert ":6000" in explicit._reload_script


def test_default_ports(tmp_path):
    server = DevServer(tmp_path)
    assert server.http_port == 4000
    assert server.ws_port == 4001
    assert server.output_dir == tmp_path / "output"
    assert server._staging_dir == tmp_path / "output.staging"


def test_async_broadcast_drops_closed_clients(tmp_path):
    server = DevServer(tmp_path)

    class GoodWS:
        def __init__(self):
            self.messages = []

        async def send(self, msg):
            self.messages.append(msg)

    class ClosedWS:
        async def send(self, msg):
            raise websockets.ConnectionClosed(None, None)

    good, closed = GoodWS(), ClosedWS()
    server._ws_clients = {good, closed}
    asyncio.run(server._async_broadcast('{"type": "reload"}'))
    assert good.messages == ['{"type": "reload"}']
    assert server._ws_clients == {good}


def test_rebuild_swaps_staging_into_place(monkeypatch, tmp_path):
    server = DevServer(tmp_path)
    server._compute_signature = lambda: ("sig",)
    reloads = []
    server._broadcast_reload = lambda: reloads.append(True)
    server.output_dir.mkdir()
    (server.output_dir / "stale.html").write_text("old", encoding="utf-8")
    called = {}

    def fake_build(root, include_drafts=False, root_url=None, clean_output=True,
                   output_dir_override=None):
        called.update(
            root_url=root_url,
            clean_output=clean_output,
            output_dir_override=output_dir_override,
        )
        (output_dir_override / "index.html").write_text("new", encoding="utf-8")

    monkeypatch.setattr("quill.server.build_site", fake_build)
    assert server.rebuild(include_drafts=False) is True
    assert called["output_dir_override"] == server._staging_dir
    assert called["root_url"] == "http://localhost:4000"
    assert (server.output_dir / "index.html").read_text(encoding="utf-8") == "new"
    assert not (server.output_dir / "stale.html").exists()
    assert not server._staging_dir.exists()
    assert reloads == [True]


def test_rebuild_skips_unchanged_signature(monkeypatch, tmp_path):
    server = DevServer(tmp_path)
    server._debounce_seconds = 0.0
    calls = []
    monkeypatch.setattr("quill.server.build_site", lambda *a, **k: calls.append("built"))
    server._activate_staging = lambda staging: None
    server._broadcast_reload = lambda: calls.append("reloaded")
    state = {"sig": ("a",)}
    server._compute_signature = lambda: state["sig"]

    assert server.rebuild(include_drafts=False) is True
    assert server.rebuild(include_drafts=False) is False
    state["sig"] = ("b",)
    assert server.rebuild(include_drafts=False) is True
    assert calls == ["built", "reloaded", "built", "reloaded"]


def test_rebuild_is_debounced(monkeypatch, tmp_path):
    server = DevServer(tmp_path)
    server._debounce_seconds = 60
    server._last_rebuild_at = time.time()
    calls = []
    monkeypatch.setattr("quill.server.build_site", lambda *a, **k: calls.append("built"))
    assert server.rebuild(include_drafts=False) is False
    assert calls == []
    timer = server._retry_timer
    assert timer is not None and timer.is_alive()

    assert server.rebuild(include_drafts=False) is False
    assert server._retry_timer is timer
    server.stop()
    timer.join(1)
    assert not timer.is_alive()
    assert calls == []


def test_debounced_change_is_rebuilt_when_window_closes(monkeypatch, tmp_path):
    server = DevServer(tmp_path)
    server._debounce_seconds = 0.05
    server._last_rebuild_at = time.time()
    server._compute_signature = lambda: ("changed",)
    server._activate_staging = lambda staging: None
    reloads = []
    server._broadcast_reload = lambda: reloads.append(True)
    monkeypatch.setattr("quill.server.build_site", lambda *a, **k: None)

    assert server.rebuild(include_drafts=False) is False
    deadline = time.time() + 5
    while not reloads and time.time() < deadline:
        time.sleep(0.01)
    assert reloads == [True]
    assert server._last_signature == ("changed",)


def test_rebuild_keeps_serving_after_errors(monkeypatch, tmp_path, caplog):
    server = DevServer(tmp_path)
    server._debounce_seconds = 0.0
    reloads = []
    server._broadcast_reload = lambda: reloads.append(True)
    server.output_dir.mkdir()
    (server.output_dir / "index.html").write_text("good", encoding="utf-8")
    errors = iter(
        [
            BuildError(tmp_path / "site" / "bad.md", "Undefined variable: x"),
            ConfigError("search is missing required keys: api_key"),
            PermissionError(13, "Permission denied"),
        ]
    )

    def failing_build(*args, **kwargs):
        raise next(errors)

    monkeypatch.setattr("quill.server.build_site", failing_build)
    server._compute_signature = lambda: ("one",)
    with caplog.at_level(logging.ERROR, logger="quill.server"):
        assert server.rebuild(include_drafts=False) is False
        server._compute_signature = lambda: ("two",)
        assert server.rebuild(include_drafts=False) is False
        server._compute_signature = lambda: ("three",)
        assert server.rebuild(include_drafts=False) is False
    assert "Undefined variable: x" in caplog.text
    assert "api_key" in caplog.text
    assert "Permission denied" in caplog.text
    assert reloads == []
    assert (server.output_dir / "index.html").read_text(encoding="utf-8") == "good"


def write_post(tmp_path, text):
    post = tmp_path / "site" / "posts" / "a.md"
    post.parent.mkdir(parents=True, exist_ok=True)
    post.write_text(text, encoding="utf-8")
    return post


def test_change_during_rebuild_is_not_lost(tmp_path):
    post = write_post(tmp_path, "first\n")
    server = DevServer(tmp_path)
    server._debounce_seconds = 0.0
    server._broadcast_reload = lambda: None
    write_post(tmp_path, "second\n")

    build = server._build
    nested = []

    def build_then_edit(include_drafts):
        build(include_drafts)
        if not nested:
            post.write_text("third edit\n", encoding="utf-8")
            nested.append(server.rebuild(include_drafts))

    server._build = build_then_edit
    assert server.rebuild(include_drafts=False) is True
    assert nested == [False]
    page = (server.output_dir / "posts" / "a" / "index.html").read_text(encoding="utf-8")
    assert "<p>third edit</p>" in page
    assert server._last_signature == server._compute_signature()


def test_rebuild_logs_undecodable_source(tmp_path, caplog):
    server = DevServer(tmp_path)
    server._debounce_seconds = 0.0
    reloads = []
    server._broadcast_reload = lambda: reloads.append(True)
    server.output_dir.mkdir()
    (server.output_dir / "index.html").write_text("good", encoding="utf-8")
    post = tmp_path / "site" / "posts" / "cafe.md"
    post.parent.mkdir(parents=True)
    post.write_bytes(b"# Caf\xe9\n")

    with caplog.at_level(logging.ERROR, logger="quill.server"):
        assert server.rebuild(include_drafts=False) is False
    assert "cafe.md" in caplog.text
    assert "UTF-8" in caplog.text
    assert reloads == []
    assert (server.output_dir / "index.html").read_text(encoding="utf-8") == "good"


def test_activate_staging_replaces_output(tmp_path):
    server = DevServer(tmp_path)
    server.output_dir.mkdir()
    (server.output_dir / "old.html").write_text("old", encoding="utf-8")
    server._previous_dir.mkdir()
    staging = server._prepare_staging_dir()
    (staging / "index.html").write_text("new", encoding="utf-8")

    server._activate_staging(staging)
    assert sorted(p.name for p in server.output_dir.iterdir()) == ["index.html"]
    assert not staging.exists()
    assert not server._previous_dir.exists()

    staging = server._prepare_staging_dir()
    server.output_dir.rename(tmp_path / "gone")
    server._activate_staging(staging)
    assert server.output_dir.is_dir()


def test_compute_signature(tmp_path):
    server = DevServer(tmp_path)
    assert server._compute_signature() is None

    (tmp_path / "site").mkdir()
    (tmp_path / "site" / "index.md").write_text("# Hi", encoding="utf-8")
    (tmp_path / "quill.yaml").write_text("port: 4000\n", encoding="utf-8")
    first = server._compute_signature()
    assert [entry[0] for entry in first] == ["quill.yaml", str(Path("site") / "index.md")]

    (tmp_path / "site" / "index.md").write_text("# Hello again", encoding="utf-8")
    assert server._compute_signature() != first


def test_stop_and_ws_handler(tmp_path):
    server = DevServer(tmp_path)
    server.stop()

    class DummyObserver:
        def __init__(self):
            self.calls = []

        def stop(self):
            self.calls.append("stop")

        def join(self):
            self.calls.append("join")

    server._observer = DummyObserver()
    server.stop()
    assert server._observer.calls == ["stop", "join"]

    class DummyWS:
        async def wait_closed(self):
            assert ws in server._ws_clients

    ws = DummyWS()
    asyncio.run(server._ws_handler(ws))
    assert ws not in server._ws_clients


def test_broadcast_reload_schedules_on_loop(monkeypatch, tmp_path):
    server = DevServer(tmp_path)
    scheduled = []

    def fake_runner(coro, loop):
        scheduled.append(loop)
        coro.close()

    monkeypatch.setattr("quill.server.asyncio.run_coroutine_threadsafe", fake_runner)
    server._broadcast_reload()
    assert scheduled == [server._loop]


def test_reload_handler_injects_script(tmp_path):
    (tmp_path / "index.html").write_text(
        "<html><body>Hello</body></html>", encoding="utf-8"
    )
    handler = make_handler(tmp_path, "/index.html")
    assert _ReloadHandler.send_head(handler) is None
    body = handler.wfile.getvalue().decode()
    assert handler.codes == [200]
    assert body.startswith("<html><body>Hello")
    assert "WebSocket" in body
    assert body.endswith("</body></html>")


def test_send_head_serves_directory_index(tmp_path):
    (tmp_path / "posts").mkdir()
    (tmp_path / "posts" / "index.html").write_text("<body>posts</body>", encoding="utf-8")
    handler = make_handler(tmp_path, "/posts/")
    assert _ReloadHandler.send_head(handler) is None
    assert "posts" in handler.wfile.getvalue().decode()


def test_send_head_static_file(tmp_path):
    (tmp_path / "style.css").write_text("body{}", encoding="utf-8")
    handler = make_handler(tmp_path, "/style.css")
    result = _ReloadHandler.send_head(handler)
    assert result is not None
    assert result.read() == b"body{}"
    result.close()


def test_missing_page_uses_custom_404(tmp_path):
    (tmp_path / "404").mkdir()
    (tmp_path / "404" / "index.html").write_text("<body>oops</body>", encoding="utf-8")
    handler = make_handler(tmp_path, "/missing/")
    assert _ReloadHandler.send_head(handler) is None
    assert handler.codes == [404]
    body = handler.wfile.getvalue().decode()
    assert "oops" in body
    assert "WebSocket" in body


def test_directory_without_index_returns_404(tmp_path):
    (tmp_path / "drafts").mkdir()
    handler = make_handler(tmp_path, "/drafts/")
    assert _ReloadHandler.send_head(handler) is None
    assert handler.codes == [("error", 404)]
