"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, and test doubles for
the GitHub REST surface. Fixtures marked autouse apply to every test.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
import json
import logging
import os
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from repochain.github.client import GitHubClient

if TYPE_CHECKING:
    from collections.abc import Callable

# =============================================================================
# Test Doubles
# =============================================================================


def _response_factory(spec: httpx.Response | dict[str, Any] | int) -> Callable[[], httpx.Response]:
    # Responses are single-use once read; rebuild one per call.
    if isinstance(spec, httpx.Response):
        status, headers, content = spec.status_code, dict(spec.headers), spec.read()
        return lambda: httpx.Response(status, headers=headers, content=content)
    if isinstance(spec, int):
        return lambda: httpx.Response(spec, json={"message": f"status {spec}"})
    return lambda: httpx.Response(200, json=spec)


@dataclass
class FakeGitHub:
    """Route-keyed responder for ``httpx.MockTransport``.

    Register responses with ``on("GET", "/repos/o/r", ...)``. Each route can
    hold a queue of responses; the last one repeats once the queue drains.
    Every request is captured in ``calls`` for assertions.
    """

    routes: dict[tuple[str, str], list[Callable[[], httpx.Response]]] = field(
        default_factory=dict
    )
    calls: list[httpx.Request] = field(default_factory=list)

    def on(
        self,
        method: str,
        path: str,
        *responses: httpx.Response | dict[str, Any] | int,
    ) -> None:
        """Queue responses: a status code, a JSON body (200), or a ``Response``."""
        queue = self.routes.setdefault((method.upper(), path), [])
        for r in responses:
            queue.append(_response_factory(r))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = (request.method, request.url.path)
        queue = self.routes.get(key)
        if not queue:
            return httpx.Response(404, json={"message": "Not Found"})
        factory = queue.pop(0) if len(queue) > 1 else queue[0]
        return factory()

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls_to(self, method: str, path: str) -> list[httpx.Request]:
        return [c for c in self.calls if c.method == method and c.url.path == path]

    @staticmethod
    def body(request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def make_client(fake_github: FakeGitHub) -> Callable[..., GitHubClient]:
    """Build a ``GitHubClient`` wired to the ``fake_github`` transport."""

    def _make(token: str | None = "test-token", **kwargs: Any) -> GitHubClient:
        return GitHubClient(token, transport=fake_github.transport, **kwargs)

    return _make


class RecordingSleep:
    """Injected sleep that records requested delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_github_env(request, monkeypatch):
    """Ensure a clean credential environment for each test.

    Clears GITHUB_* and REPOCHAIN_* env vars to prevent test pollution.
    Opt-out: @pytest.mark.allow_env_pollution
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("GITHUB_", "REPOCHAIN_")):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
