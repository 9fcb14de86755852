"""Shared pytest fixtures for the datasheet extraction test suite."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from datasheet_api.core.config import get_settings
from datasheet_api.core.constants import PDF_MIME_TYPE
from datasheet_api.core.errors import InferenceFailure, UploadFailure
from datasheet_api.main import app
from datasheet_api.schemas import CacheEntry, TaskDefinition, UploadedFile
from datasheet_api.services.file_cache import ContentCache, FileCacheStore
from datasheet_api.services.task_registry import default_registry

# ── Settings ────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep developer ``.env`` files and earlier tests out of Settings."""
    for var in (
        "GEMINI_API_KEY",
        "GOOGLE_API_KEY",
        "DATASHEET_API_KEY",
        "MOUSER_API_KEY",
        "DIGIKEY_CLIENT_ID",
        "DIGIKEY_CLIENT_SECRET",
    ):
        monkeypatch.delenv(var, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ── HTTP client ─────────────────────────────────────────────────────────────


@pytest.fixture
async def client() -> AsyncClient:  # type: ignore[misc]
    """
    Yield an async HTTP client bound to the FastAPI app.

    Dependency overrides installed by a test are removed
    afterwards.

    Usage::

        async def test_something(client: AsyncClient):
            response = await client.get("/api/v1/health")
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


# ── Time ────────────────────────────────────────────────────────────────────


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Return a ``FakeClock`` starting at a fixed instant."""
    return FakeClock()


# ── Documents and cache ─────────────────────────────────────────────────────


def make_pdf(marker: str = "datasheet") -> bytes:
    """Build PDF-looking bytes large enough to pass download checks."""
    body = f"%PDF-1.7\n% {marker}\n".encode()
    return body + b"0" * (2048 - len(body))


@pytest.fixture
def pdf_bytes() -> bytes:
    """A small but valid-looking PDF payload."""
    return make_pdf()


@pytest.fixture
def cache_store(tmp_path: Path) -> FileCacheStore:
    """Disk store rooted in a per-test temporary directory."""
    return FileCacheStore(tmp_path / "file-cache")


@pytest.fixture
def content_cache(cache_store: FileCacheStore, clock: FakeClock) -> ContentCache:
    """``ContentCache`` on a temp directory and the fake clock."""
    return ContentCache(cache_store, ttl=48 * 3600, clock=clock)


@pytest.fixture
def registry():
    """The built-in task registry."""
    return default_registry()


# ── Fake inference service ──────────────────────────────────────────────────


class FakeFileClient:
    """In-memory stand-in for ``GeminiFileClient``.

    Args:
        fail_times: Number of leading uploads that raise
            ``UploadFailure``.
        gate: When given, each upload blocks until it is set.
        alive: What ``verify_entry`` answers.
    """

    def __init__(
        self,
        *,
        fail_times: int = 0,
        gate: threading.Event | None = None,
        alive: bool = True,
    ) -> None:
        self.fail_times = fail_times
        self.gate = gate
        self.alive = alive
        self.uploads = 0
        self.display_names: list[str] = []
        self._lock = threading.Lock()

    def upload(
        self,
        data: bytes,
        *,
        display_name: str = "datasheet.pdf",
        mime_type: str = PDF_MIME_TYPE,
    ) -> UploadedFile:
        with self._lock:
            self.uploads += 1
            self.display_names.append(display_name)
            n = self.uploads
        if self.gate is not None:
            self.gate.wait(5)
        if n <= self.fail_times:
            raise UploadFailure("upload rejected", remote_status=503, body="unavailable")
        return UploadedFile(
            remote_handle=f"https://files.test/v1beta/files/f{n}",
            remote_name=f"files/f{n}",
        )

    def verify_entry(self, entry: CacheEntry) -> bool:
        return self.alive


class ScriptedGenerator:
    """Generator returning canned outputs in order.

    Items that are exceptions are raised instead of returned.
    Every call is recorded as ``(remote_handle, prompt, task, model)``.
    """

    def __init__(self, outputs: list[str | Exception] | Callable[[], str]) -> None:
        self._outputs = outputs
        self.calls: list[tuple[str, str, TaskDefinition, str]] = []
        self._lock = threading.Lock()

    def generate(
        self,
        remote_handle: str,
        prompt: str,
        task: TaskDefinition,
        *,
        model: str,
        temperature: float | None = None,
        mime_type: str = PDF_MIME_TYPE,
    ) -> str:
        with self._lock:
            self.calls.append((remote_handle, prompt, task, model))
            if callable(self._outputs):
                return self._outputs()
            item = self._outputs[len(self.calls) - 1]
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def file_client() -> FakeFileClient:
    """A fake file API that always succeeds."""
    return FakeFileClient()


def transport_error() -> InferenceFailure:
    """An ``InferenceFailure`` like a dropped connection produces."""
    return InferenceFailure("connection reset by peer")
