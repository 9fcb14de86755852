"""
Extraction orchestrator: coordinates upload, inference and repair.

Given a document's bytes and a task, ``ExtractionOrchestrator``:

1. computes the content key (SHA-256 of the bytes);
2. resolves it to a remote file handle through ``ContentCache``
   (uploading at most once per key, retrying upload failures up
   to ``upload_attempts`` times);
3. issues a schema-constrained generation call with the handle,
   the task prompt and the task schema;
4. validates the output (``structured_output.validate_output``)
   and, while attempts remain, re-prompts with the violations
   appended;
5. returns an ``ExtractionResult`` or raises a typed failure that
   carries the last raw output.

The orchestrator holds no mutable state of its own; the cache,
registry, file client and inference client are injected so tests
build isolated instances.
"""

from __future__ import annotations

import logging
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Protocol

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_none,
)

from datasheet_api.core.constants import PDF_MIME_TYPE
from datasheet_api.core.errors import (
    InferenceFailure,
    SchemaValidationFailure,
    UploadFailure,
)
from datasheet_api.core.metrics import record_extraction, record_extraction_attempt
from datasheet_api.schemas.cache import CacheEntry, UploadedFile
from datasheet_api.schemas.tasks import ExtractionResult, TaskDefinition
from datasheet_api.services.file_cache import ContentCache, compute_content_key
from datasheet_api.services.structured_output import (
    ValidOutput,
    build_correction_prompt,
    validate_output,
)
from datasheet_api.services.task_registry import TaskRegistry

logger = logging.getLogger(__name__)


class FileClient(Protocol):
    """What the orchestrator needs from the inference file API."""

    def upload(
        self,
        data: bytes,
        *,
        display_name: str = ...,
        mime_type: str = ...,
    ) -> UploadedFile: ...

    def verify_entry(self, entry: CacheEntry) -> bool: ...


class Generator(Protocol):
    """What the orchestrator needs from the inference client."""

    def generate(
        self,
        remote_handle: str,
        prompt: str,
        task: TaskDefinition,
        *,
        model: str,
        temperature: float | None = ...,
        mime_type: str = ...,
    ) -> str: ...


class ExtractionOrchestrator:
    """Turn document bytes plus a task into validated JSON.

    Args:
        cache: Uploaded-file cache.
        registry: Task registry.
        files: Inference file API client (upload and liveness).
        inference: Generation client.
        default_model: Model used when neither the call nor the
            task names one.
        default_temperature: Sampling temperature when the call
            does not set one.
        max_attempts: Generation calls per extraction, including
            repair retries.
        upload_attempts: Upload tries before ``UploadFailure``
            reaches the caller.
        verify_remote: Check a cached file is still ``ACTIVE``
            before reusing it.
        upload_timeout: Seconds to wait for a shared upload.
        include_output_in_correction: Quote the rejected output in
            the repair prompt.
        max_correction_output_length: Truncate the quoted output.
    """

    def __init__(
        self,
        cache: ContentCache,
        registry: TaskRegistry,
        files: FileClient,
        inference: Generator,
        *,
        default_model: str,
        default_temperature: float | None = None,
        max_attempts: int = 2,
        upload_attempts: int = 2,
        verify_remote: bool = True,
        upload_timeout: float | None = None,
        include_output_in_correction: bool = True,
        max_correction_output_length: int | None = 4000,
    ) -> None:
        if max_attempts < 1 or upload_attempts < 1:
            raise ValueError("attempt limits must be at least 1")
        self._cache = cache
        self._registry = registry
        self._files = files
        self._inference = inference
        self._default_model = default_model
        self._default_temperature = default_temperature
        self._max_attempts = max_attempts
        self._upload_attempts = upload_attempts
        self._verify_remote = verify_remote
        self._upload_timeout = upload_timeout
        self._include_output = include_output_in_correction
        self._max_output_length = max_correction_output_length

    @property
    def registry(self) -> TaskRegistry:
        """Task registry used for name lookups."""
        return self._registry

    # ── Public API ──────────────────────────────────────────

    def extract(
        self,
        data: bytes,
        task_name: str | None = None,
        *,
        task: TaskDefinition | None = None,
        mime_type: str = PDF_MIME_TYPE,
        model: str | None = None,
        temperature: float | None = None,
        bypass_cache: bool = False,
        display_name: str = "datasheet.pdf",
    ) -> ExtractionResult:
        """Extract structured data from *data*.

        Exactly one of *task_name* and *task* is normally given;
        *task* takes precedence (used for ad-hoc ``custom`` tasks).

        Args:
            data: Raw document bytes.
            task_name: Registered task name.
            task: Pre-built task definition.
            mime_type: MIME type of *data*.
            model: Model override.
            temperature: Sampling temperature override.
            bypass_cache: Drop any cached upload and upload afresh.
            display_name: Name shown for the uploaded file.

        Returns:
            The validated ``ExtractionResult``.

        Raises:
            UnknownTask: *task_name* is not registered.
            UploadFailure: The upload failed on every attempt.
            InferenceFailure: The final generation call failed at
                the transport level.
            SchemaValidationFailure: No attempt produced output
                that passed validation.
        """
        if task is None:
            if task_name is None:
                raise ValueError("task_name or task is required")
            # Looked up before the upload so a bad name costs nothing.
            task = self._registry.get(task_name)

        content_key = compute_content_key(data)
        model_name = model or task.default_model or self._default_model
        temp = temperature if temperature is not None else self._default_temperature

        logger.info(
            "Starting extraction task='%s' key=%.12s size=%d model=%s",
            task.task_name,
            content_key,
            len(data),
            model_name,
        )

        if bypass_cache:
            self._cache.invalidate(content_key)

        try:
            remote_handle = self._resolve_handle(
                content_key, data, mime_type=mime_type, display_name=display_name
            )
            return self._generate_validated(
                task,
                content_key,
                remote_handle,
                model=model_name,
                temperature=temp,
                mime_type=mime_type,
            )
        except SchemaValidationFailure:
            record_extraction(task.task_name, "invalid")
            raise
        except Exception:
            record_extraction(task.task_name, "error")
            raise

    # ── Upload ──────────────────────────────────────────────

    def _resolve_handle(
        self,
        content_key: str,
        data: bytes,
        *,
        mime_type: str,
        display_name: str,
    ) -> str:
        """Return a live remote handle, retrying failed uploads."""

        def uploader(payload: bytes) -> UploadedFile:
            return self._files.upload(
                payload, display_name=display_name, mime_type=mime_type
            )

        verifier = self._files.verify_entry if self._verify_remote else None

        def resolve_once() -> str:
            try:
                return self._cache.resolve(
                    content_key,
                    data,
                    uploader,
                    mime_type=mime_type,
                    verifier=verifier,
                    timeout=self._upload_timeout,
                )
            except FuturesTimeoutError as exc:
                # The shared upload keeps running; a retry rejoins it.
                raise UploadFailure(
                    f"Timed out after {self._upload_timeout}s waiting for upload"
                ) from exc

        retrying = Retrying(
            retry=retry_if_exception_type(UploadFailure),
            stop=stop_after_attempt(self._upload_attempts),
            wait=wait_none(),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(resolve_once)

    # ── Generation + repair loop ────────────────────────────

    def _generate_validated(
        self,
        task: TaskDefinition,
        content_key: str,
        remote_handle: str,
        *,
        model: str,
        temperature: float | None,
        mime_type: str,
    ) -> ExtractionResult:
        prompt = task.prompt_text
        last_output: str | None = None
        last_errors: tuple[str, ...] = ()

        for attempt in range(1, self._max_attempts + 1):
            record_extraction_attempt(task.task_name)
            try:
                raw = self._inference.generate(
                    remote_handle,
                    prompt,
                    task,
                    model=model,
                    temperature=temperature,
                    mime_type=mime_type,
                )
            except InferenceFailure as exc:
                if attempt == self._max_attempts:
                    raise InferenceFailure(
                        str(exc),
                        attempts=attempt,
                        raw_output=last_output,
                        errors=last_errors,
                    ) from exc
                logger.warning(
                    "Generation attempt %d/%d for task '%s' failed: %s",
                    attempt,
                    self._max_attempts,
                    task.task_name,
                    exc,
                )
                continue

            outcome = validate_output(raw, task)
            if isinstance(outcome, ValidOutput):
                record_extraction(
                    task.task_name, "not_found" if outcome.not_found else "success"
                )
                logger.info(
                    "Task '%s' succeeded on attempt %d (not_found=%s)",
                    task.task_name,
                    attempt,
                    outcome.not_found,
                )
                return ExtractionResult(
                    task_name=task.task_name,
                    content_key=content_key,
                    raw_model_output=raw,
                    validated_json=outcome.value,
                    attempt_count=attempt,
                    not_found=outcome.not_found,
                    model=model,
                )

            last_output, last_errors = raw, outcome.errors
            logger.warning(
                "Attempt %d/%d for task '%s' failed validation: %s",
                attempt,
                self._max_attempts,
                task.task_name,
                "; ".join(outcome.errors[:3]),
            )
            prompt = build_correction_prompt(
                task.prompt_text,
                outcome.errors,
                raw,
                include_output=self._include_output,
                max_output_length=self._max_output_length,
            )

        raise SchemaValidationFailure(
            task.task_name,
            last_output or "",
            list(last_errors),
            self._max_attempts,
        )
