"""
Domain error taxonomy.

Every failure that leaves a service boundary is one of these
classes, and each carries enough detail (raw model output,
HTTP status and body, validation errors) to diagnose the
problem without re-running with verbose logging.

``to_dict()`` renders the payload the HTTP layer returns.
"""

from __future__ import annotations

from typing import Any


class DatasheetError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable description of the error."""
        return {"error": type(self).__name__, "detail": str(self)}


# ── Inference service ──────────────────────────────────────


class UploadFailure(DatasheetError):
    """Network or service error while uploading a document.

    Never cached; the orchestrator decides whether to retry.
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        remote_status: int | None = None,
        body: str = "",
    ) -> None:
        self.remote_status = remote_status
        self.body = body
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "remote_status": self.remote_status,
            "body": self.body,
        }


class InferenceFailure(DatasheetError):
    """The generation call itself failed (transport, timeout, non-2xx).

    When an earlier attempt did return output that failed
    validation, that output and its errors ride along.
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        attempts: int = 1,
        raw_output: str | None = None,
        errors: list[str] | tuple[str, ...] = (),
    ) -> None:
        self.attempts = attempts
        self.raw_output = raw_output
        self.errors = list(errors)
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload = {**super().to_dict(), "attempts": self.attempts}
        if self.raw_output is not None:
            payload["raw_output"] = self.raw_output
            payload["errors"] = self.errors
        return payload


# ── Task configuration ─────────────────────────────────────


class UnknownTask(DatasheetError):
    """The requested task name is not registered."""

    status_code = 404

    def __init__(self, task_name: str, known: list[str] | None = None) -> None:
        self.task_name = task_name
        self.known = sorted(known or [])
        hint = f" (known tasks: {', '.join(self.known)})" if self.known else ""
        super().__init__(f"Unknown task '{task_name}'{hint}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "task": self.task_name, "known_tasks": self.known}


class InvalidTaskDefinition(DatasheetError):
    """A caller-supplied prompt or schema cannot be used."""

    status_code = 400


class UnsafeUrlError(DatasheetError):
    """A caller-supplied URL points somewhere the server must not fetch."""

    status_code = 400


class SchemaValidationFailure(DatasheetError):
    """Model output never conformed to the task schema.

    Keeps the last raw output so the failure can be debugged.
    """

    status_code = 422

    def __init__(
        self,
        task_name: str,
        raw_output: str,
        errors: list[str],
        attempt_count: int,
    ) -> None:
        self.task_name = task_name
        self.raw_output = raw_output
        self.errors = list(errors)
        self.attempt_count = attempt_count
        summary = "; ".join(self.errors[:3])
        super().__init__(
            f"Task '{task_name}' output failed validation after "
            f"{attempt_count} attempt(s): {summary}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "task": self.task_name,
            "errors": self.errors,
            "raw_output": self.raw_output,
            "attempt_count": self.attempt_count,
        }


# ── Distributors ───────────────────────────────────────────


class AuthFailure(DatasheetError):
    """Credential acquisition or use was rejected by a distributor."""

    status_code = 502

    def __init__(
        self,
        distributor_id: str,
        message: str,
        *,
        remote_status: int | None = None,
        payload: Any = None,
    ) -> None:
        self.distributor_id = distributor_id
        self.remote_status = remote_status
        self.payload = payload
        super().__init__(f"{distributor_id}: {message}")

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "distributor": self.distributor_id,
            "remote_status": self.remote_status,
            "payload": self.payload,
        }


class RateLimited(DatasheetError):
    """Backoff budget against a distributor was exhausted."""

    status_code = 429

    def __init__(
        self,
        distributor_id: str,
        *,
        retry_after: float | None,
        attempts: int,
    ) -> None:
        self.distributor_id = distributor_id
        self.retry_after = retry_after
        self.attempts = attempts
        hint = f", retry after {retry_after:g}s" if retry_after is not None else ""
        super().__init__(
            f"{distributor_id}: rate limited after {attempts} attempt(s){hint}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "distributor": self.distributor_id,
            "retry_after": self.retry_after,
            "attempts": self.attempts,
        }


class DistributorError(DatasheetError):
    """Any other non-2xx (or malformed) distributor response."""

    status_code = 502

    def __init__(
        self,
        distributor_id: str,
        message: str,
        *,
        remote_status: int | None = None,
        body: str = "",
    ) -> None:
        self.distributor_id = distributor_id
        self.remote_status = remote_status
        self.body = body
        super().__init__(f"{distributor_id}: {message}")

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "distributor": self.distributor_id,
            "remote_status": self.remote_status,
            "body": self.body,
        }


class PartNotFound(DistributorError):
    """The distributor has no part with the requested number."""

    status_code = 404

    def __init__(self, distributor_id: str, part_id: str) -> None:
        self.part_id = part_id
        super().__init__(distributor_id, f"Part not found: {part_id}", remote_status=404)


class DatasheetUnavailable(DistributorError):
    """The part exists but no usable datasheet could be fetched."""

    status_code = 404

    def __init__(self, distributor_id: str, part_id: str, reason: str) -> None:
        self.part_id = part_id
        super().__init__(distributor_id, f"No datasheet for {part_id}: {reason}")
