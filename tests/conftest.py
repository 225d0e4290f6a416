"""Shared test fixtures for nimbus.

Provides reusable fixtures for isolating the credential file and data
directories, managing output state, faking HTTP with
:class:`httpx.MockTransport`, scripting prompts, and running CLI commands.
These fixtures are automatically discovered by pytest and available to
all test modules without explicit imports.
"""

from __future__ import annotations

from collections import deque
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

import httpx
import pytest

from nimbus.auth.credential_store import CredentialStore
from nimbus.output import OutputFormat, OutputManager, reset_output, set_output


PROVIDER_ENV_VARS = [
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "GOOGLE_API_KEY",
    "OPENROUTER_API_KEY",
    "OLLAMA_BASE_URL",
    "NIMBUS_AUTH_FILE",
]


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time.  When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale
    ("I/O operation on closed file").  Resetting forces a fresh manager
    to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG directories at tmp_path and clear provider env vars.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in PROVIDER_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return tmp_path


@pytest.fixture
def auth_path(tmp_path: Path) -> Path:
    return tmp_path / "store" / "auth.json"


@pytest.fixture
def store(auth_path: Path) -> CredentialStore:
    """A CredentialStore writing to a disposable location."""
    return CredentialStore(auth_path)


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager for tests that ignore output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True, no_color=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# HTTP fakes
# ---------------------------------------------------------------------------


Handler = Callable[[httpx.Request], httpx.Response]


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Handler) -> None:
        self.requests: list[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


@pytest.fixture
def mock_http() -> Callable[..., tuple[httpx.Client, RecordingTransport]]:
    """Factory building an ``httpx.Client`` backed by a recording mock transport.

    Usage::

        client, transport = mock_http(lambda req: httpx.Response(200, json={}))
    """
    clients: list[httpx.Client] = []

    def _make(handler: Handler, base_url: str = "") -> tuple[httpx.Client, RecordingTransport]:
        transport = RecordingTransport(handler)
        client = httpx.Client(transport=transport, base_url=base_url)
        clients.append(client)
        return client, transport

    yield _make
    for client in clients:
        client.close()


# ---------------------------------------------------------------------------
# Scripted prompts
# ---------------------------------------------------------------------------


class ScriptedPrompter:
    """Stand-in for :class:`~nimbus.wizard.prompts.Prompter` replaying canned answers.

    ``select`` answers are values (not indexes); ``None`` picks the default
    entry. Running out of answers fails the test loudly.
    """

    def __init__(
        self,
        confirms: Sequence[bool] = (),
        texts: Sequence[str] = (),
        selects: Sequence[Any] = (),
    ) -> None:
        self.confirms = deque(confirms)
        self.texts = deque(texts)
        self.selects = deque(selects)
        self.asked: list[str] = []

    def confirm(self, message: str, default: bool = True) -> bool:
        self.asked.append(message)
        assert self.confirms, f"unexpected confirm: {message}"
        return self.confirms.popleft()

    def text(self, message: str, default: Optional[str] = None, secret: bool = False) -> str:
        self.asked.append(message)
        assert self.texts, f"unexpected text prompt: {message}"
        return self.texts.popleft()

    def select(self, message: str, choices: Sequence[tuple[Any, str]], default: int = 0) -> Any:
        self.asked.append(message)
        assert self.selects, f"unexpected select: {message}"
        answer = self.selects.popleft()
        if answer is None:
            return choices[default][0]
        assert answer in [value for value, _ in choices], f"{answer!r} not offered"
        return answer


@pytest.fixture
def prompter_factory() -> Callable[..., ScriptedPrompter]:
    return ScriptedPrompter


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner.

    Returns a CliRunner instance that captures stdout/stderr and
    provides a consistent interface for invoking Typer apps in tests.
    """
    from typer.testing import CliRunner

    return CliRunner()
