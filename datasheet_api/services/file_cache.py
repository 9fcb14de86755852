"""
Content-addressable cache of documents uploaded to the
inference service.

Uploading a large PDF is the most expensive step of an
extraction, and the service keeps uploaded files for 48 hours.
``ContentCache`` maps the SHA-256 of a document's bytes to the
remote file handle so repeat extractions of the same datasheet
(under any filename) reuse the upload.

**Guarantees**

- A still-valid entry is returned without calling the uploader.
- Concurrent ``resolve`` calls for the same uncached key share a
  single upload (``InflightGroup``); different keys upload in
  parallel.
- A failed upload propagates to every waiter and leaves no entry.
- Expired entries are never handed out; they are dropped on
  access, on ``sweep()`` and when the cache is opened.

**Persistence**

``FileCacheStore`` keeps one JSON record per content key under
the cache directory.  Writes go to a temporary file that is
atomically renamed into place, so readers in this or another
process only ever see a complete record.  In-process access is
serialised per key, never globally.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import ValidationError

from datasheet_api.core.constants import PDF_MIME_TYPE, REMOTE_FILE_LIFETIME_S
from datasheet_api.core.errors import UploadFailure
from datasheet_api.core.metrics import (
    record_cache_hit,
    record_cache_miss,
    record_upload,
)
from datasheet_api.schemas.cache import CacheEntry, UploadedFile
from datasheet_api.services.inflight import InflightGroup

logger = logging.getLogger(__name__)

#: Uploads ``bytes`` and reports the remote handle.  A bare string
#: is accepted as the handle for simple uploaders.
Uploader = Callable[[bytes], "UploadedFile | str"]

#: Checks that a cached remote file is still usable.
Verifier = Callable[[CacheEntry], bool]

_RECORD_SUFFIX = ".json"


def compute_content_key(data: bytes) -> str:
    """Return the SHA-256 hex digest identifying *data*.

    Args:
        data: Raw document bytes.

    Returns:
        64-character lowercase hex string.
    """
    return hashlib.sha256(data).hexdigest()


# ── Per-key locks ───────────────────────────────────────────


class _KeyedLocks:
    """Hand out one lock per key; the registry lock is held only
    while looking the key up."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield


# ── Disk store ──────────────────────────────────────────────


class FileCacheStore:
    """Directory of ``<content_key>.json`` records."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)
        self._locks = _KeyedLocks()

    @property
    def root(self) -> Path:
        """Directory holding the records."""
        return self._root

    def _path(self, key: str) -> Path:
        return self._root / f"{key}{_RECORD_SUFFIX}"

    def get(self, key: str) -> CacheEntry | None:
        """Read the record for *key*, or ``None`` if absent or unreadable."""
        with self._locks.hold(key):
            return self._read(key)

    def put(self, entry: CacheEntry) -> None:
        """Atomically write (or supersede) the record for ``entry.content_key``."""
        with self._locks.hold(entry.content_key):
            self._write(entry)

    def delete(self, key: str) -> bool:
        """Remove the record for *key*.

        Returns:
            ``True`` if a record was removed.
        """
        with self._locks.hold(key):
            return self._unlink(key)

    def delete_if_expired(self, key: str, now: float) -> bool:
        """Remove *key* only if its current record has expired.

        Re-reads under the key's lock so an entry superseded by a
        concurrent upload is left alone.
        """
        with self._locks.hold(key):
            entry = self._read(key)
            if entry is not None and entry.is_valid(now):
                return False
            return self._unlink(key)

    def delete_if_handle(self, key: str, remote_handle: str) -> bool:
        """Remove *key* only if it still points at *remote_handle*.

        A record rewritten by a concurrent upload is kept.
        """
        with self._locks.hold(key):
            entry = self._read(key)
            if entry is None or entry.remote_handle != remote_handle:
                return False
            return self._unlink(key)

    def keys(self) -> list[str]:
        """Content keys with a record on disk."""
        return sorted(p.stem for p in self._root.glob(f"*{_RECORD_SUFFIX}"))

    # Unlocked helpers; callers hold the key's lock.

    def _read(self, key: str) -> CacheEntry | None:
        path = self._path(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return CacheEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning("Ignoring unreadable cache record %s", path)
            return None

    def _write(self, entry: CacheEntry) -> None:
        fd, tmp_name = tempfile.mkstemp(
            dir=self._root,
            prefix=f".{entry.content_key[:12]}-",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(entry.model_dump_json(indent=2))
            os.replace(tmp_name, self._path(entry.content_key))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _unlink(self, key: str) -> bool:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            return False
        return True


# ── Facade ──────────────────────────────────────────────────


class ContentCache:
    """Resolve document bytes to a still-valid remote file handle.

    Usage::

        cache = ContentCache(FileCacheStore(settings.file_cache_path))
        key = compute_content_key(pdf_bytes)
        handle = cache.resolve(key, pdf_bytes, uploader)
    """

    def __init__(
        self,
        store: FileCacheStore,
        *,
        ttl: float = REMOTE_FILE_LIFETIME_S,
        safety_margin: float = 0.0,
        clock: Callable[[], float] = time.time,
        inflight: InflightGroup[CacheEntry] | None = None,
        sweep_on_open: bool = True,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if not 0 <= safety_margin < ttl:
            raise ValueError("safety_margin must be in [0, ttl)")
        self._store = store
        self._ttl = float(ttl)
        self._margin = float(safety_margin)
        self._clock = clock
        self._inflight = inflight or InflightGroup("upload")
        if sweep_on_open:
            self.sweep()

    def close(self) -> None:
        """Stop the upload executor.  Running uploads are not awaited."""
        self._inflight.shutdown(wait=False)

    # ── Lookup ──────────────────────────────────────────────

    def lookup(self, content_key: str) -> CacheEntry | None:
        """Return the valid entry for *content_key*, dropping it if expired."""
        entry = self._store.get(content_key)
        if entry is None:
            return None
        now = self._clock()
        if entry.is_valid(now, self._margin):
            return entry
        logger.info("Cached upload for key=%.12s expired, dropping", content_key)
        self._store.delete_if_expired(content_key, now + self._margin)
        return None

    def resolve(
        self,
        content_key: str,
        data: bytes,
        uploader: Uploader,
        *,
        mime_type: str = PDF_MIME_TYPE,
        verifier: Verifier | None = None,
        timeout: float | None = None,
    ) -> str:
        """Return a remote handle for the document, uploading at most once.

        Args:
            content_key: ``compute_content_key(data)``.
            data: Raw document bytes, passed to *uploader* on a miss.
            uploader: Performs the upload; called at most once per
                key across concurrent callers.
            mime_type: Recorded on the new entry.
            verifier: Optional liveness check for a cache hit; a
                ``False`` answer forces a re-upload.
            timeout: Seconds to wait for an in-flight upload.

        Returns:
            The remote handle of a valid entry.

        Raises:
            Exception: Whatever *uploader* raised; nothing is cached.
        """
        return self.resolve_entry(
            content_key,
            data,
            uploader,
            mime_type=mime_type,
            verifier=verifier,
            timeout=timeout,
        ).remote_handle

    def resolve_entry(
        self,
        content_key: str,
        data: bytes,
        uploader: Uploader,
        *,
        mime_type: str = PDF_MIME_TYPE,
        verifier: Verifier | None = None,
        timeout: float | None = None,
    ) -> CacheEntry:
        """Like ``resolve`` but return the whole ``CacheEntry``."""
        entry = self.lookup(content_key)
        if entry is not None and self._still_alive(entry, verifier):
            record_cache_hit()
            logger.info("Using cached upload %s (key=%.12s)", entry.remote_handle, content_key)
            return entry

        record_cache_miss()

        def _upload() -> CacheEntry:
            # Another process may have uploaded while we queued.
            current = self.lookup(content_key)
            if current is not None:
                return current
            return self._upload(content_key, data, uploader, mime_type)

        return self._inflight.run(content_key, _upload, timeout=timeout)

    # ── Maintenance ─────────────────────────────────────────

    def invalidate(self, content_key: str) -> None:
        """Forget *content_key* so the next ``resolve`` re-uploads."""
        if self._store.delete(content_key):
            logger.info("Invalidated cached upload for key=%.12s", content_key)

    def sweep(self, now: float | None = None) -> int:
        """Remove every entry with ``expires_at <= now``.

        Each key is checked under its own lock, so an entry that a
        concurrent ``resolve`` has just superseded survives.

        Returns:
            Number of records removed.
        """
        now = self._clock() if now is None else now
        removed = 0
        for key in self._store.keys():
            if self._store.delete_if_expired(key, now):
                removed += 1
        if removed:
            logger.info("Swept %d expired upload record(s)", removed)
        return removed

    # ── Internals ───────────────────────────────────────────

    def _still_alive(self, entry: CacheEntry, verifier: Verifier | None) -> bool:
        if verifier is None:
            return True
        try:
            alive = verifier(entry)
        except Exception:
            logger.warning(
                "Could not verify cached upload %s, re-uploading",
                entry.remote_handle,
                exc_info=True,
            )
            alive = False
        if not alive:
            logger.info("Cached upload %s is gone remotely, re-uploading", entry.remote_handle)
            self._store.delete_if_handle(entry.content_key, entry.remote_handle)
        return alive

    def _upload(
        self,
        content_key: str,
        data: bytes,
        uploader: Uploader,
        mime_type: str,
    ) -> CacheEntry:
        try:
            result = uploader(data)
        except Exception:
            record_upload(success=False)
            raise

        uploaded = (
            result
            if isinstance(result, UploadedFile)
            else UploadedFile(remote_handle=result)
        )
        uploaded_at = self._clock()
        expires_at = uploaded_at + self._ttl
        if uploaded.remote_expires_at is not None:
            expires_at = min(expires_at, uploaded.remote_expires_at)
        if expires_at <= uploaded_at:
            raise UploadFailure(
                f"Service returned already-expired file {uploaded.remote_handle}"
            )

        entry = CacheEntry(
            content_key=content_key,
            remote_handle=uploaded.remote_handle,
            remote_name=uploaded.remote_name,
            uploaded_at=uploaded_at,
            expires_at=expires_at,
            byte_size=len(data),
            mime_type=mime_type,
        )
        self._store.put(entry)
        record_upload(success=True)
        logger.info(
            "Uploaded %d bytes as %s (key=%.12s, ttl=%.0fs)",
            len(data),
            entry.remote_handle,
            content_key,
            expires_at - uploaded_at,
        )
        return entry
