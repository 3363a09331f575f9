"""Shared test fixtures for copilot_auth.

Provides an isolated home directory (so tests never read a developer's
real Copilot credentials), a recording :class:`httpx.MockTransport`
handler, a no-op sleep for device-flow polling, and automatic reset of the
global output and logging state between tests.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Union

import httpx
import pytest

from copilot_auth.output import reset_output

Reply = Union[httpx.Response, dict[str, Any], Exception]


# ---------------------------------------------------------------------------
# Global state resets
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches sys.stdout/sys.stderr at creation time; after
    a CliRunner invocation those streams are closed.
    """
    yield
    reset_output()


@pytest.fixture(autouse=True)
def _restore_package_logger() -> None:
    """Undo any handler/level changes made by ``configure_logging``."""
    logger = logging.getLogger("copilot_auth")
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate


# ---------------------------------------------------------------------------
# Filesystem isolation
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point ``Path.home()`` at an empty temporary directory.

    Forces the non-Windows path layout and clears the environment variables
    the CLI reads, so the host machine's credentials never leak in.

    Returns:
        The temporary home directory.
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.delenv("APPDATA", raising=False)
    monkeypatch.delenv("GITHUB_COPILOT_OAUTH_TOKEN", raising=False)
    monkeypatch.delenv("GITHUB_COPILOT_ENTERPRISE_URL", raising=False)
    monkeypatch.setattr("copilot_auth.config._is_windows", lambda: False)
    return home


@pytest.fixture
def copilot_config_dir(isolated_home: Path) -> Path:
    """The (created) ``~/.config/github-copilot`` directory inside the isolated home."""
    path = isolated_home / ".config" / "github-copilot"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def write_json() -> Callable[[Path, Any], Path]:
    """Return a helper that writes *data* as JSON to *path*, creating parents."""

    def _write(path: Path, data: Any) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return path

    return _write


# ---------------------------------------------------------------------------
# HTTP mocking
# ---------------------------------------------------------------------------


class Recorder:
    """MockTransport handler that records requests and replays canned replies.

    Replies are consumed in order per URL path; the last reply for a path
    is repeated once the queue is exhausted. A reply may be an
    :class:`httpx.Response`, a dict (sent as a 200 JSON body), or an
    exception instance (raised).
    """

    def __init__(self, routes: dict[str, list[Reply]]) -> None:
        self.routes = {path: list(replies) for path, replies in routes.items()}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get(request.url.path)
        if not queue:
            return httpx.Response(404, text=f"no route for {request.url.path}")
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            return httpx.Response(200, json=reply)
        return reply

    def calls_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def recorder() -> Callable[[dict[str, list[Reply]]], Recorder]:
    """Factory fixture: ``recorder({"/path": [reply, ...]})``."""
    return Recorder


class FakeSleep:
    """Awaitable stand-in for :func:`asyncio.sleep` that records durations."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()
