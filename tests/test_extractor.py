"""Tests for the extraction orchestrator.

Tests cover:
- Valid output on the first attempt
- The repair loop (retry with the violations appended)
- Typed failures carrying the raw model output
- Not-found answers as successful results
- Upload reuse, retry and concurrency de-duplication
"""

from __future__ import annotations

import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from datasheet_api.core.errors import (
    InferenceFailure,
    SchemaValidationFailure,
    UnknownTask,
    UploadFailure,
)
from datasheet_api.services.extractor import ExtractionOrchestrator
from datasheet_api.services.file_cache import compute_content_key
from tests.conftest import FakeFileClient, ScriptedGenerator, make_pdf, transport_error

PINOUT_OK = json.dumps(
    {
        "part_details": {"part_number": "STM32F103C8"},
        "packages": [
            {
                "package_name": "LQFP48",
                "pins": [{"pin_number": "1", "pin_name": "VBAT"}],
            }
        ],
    }
)
PINOUT_MISSING_PACKAGES = json.dumps({"part_details": {"part_number": "STM32F103C8"}})


@pytest.fixture
def make_orchestrator(content_cache, registry, file_client):
    """Factory building an orchestrator around the given generator."""

    def _make(generator, *, files=None, **kwargs) -> ExtractionOrchestrator:
        return ExtractionOrchestrator(
            content_cache,
            registry,
            files or file_client,
            generator,
            default_model="gemini-test",
            **kwargs,
        )

    return _make


# ── Happy path ──────────────────────────────────────────────────────────────


class TestExtract:
    """Single-attempt extractions."""

    def test_valid_first_attempt(self, make_orchestrator, file_client, pdf_bytes):
        """Valid output is returned after one generation call."""
        generator = ScriptedGenerator([PINOUT_OK])
        result = make_orchestrator(generator).extract(pdf_bytes, "pinout")

        assert result.task_name == "pinout"
        assert result.attempt_count == 1
        assert result.not_found is False
        assert result.content_key == compute_content_key(pdf_bytes)
        assert result.validated_json["packages"][0]["package_name"] == "LQFP48"
        assert result.raw_model_output == PINOUT_OK
        assert result.model == "gemini-test"
        assert file_client.uploads == 1

    def test_generation_uses_cached_handle_and_task_prompt(
        self, make_orchestrator, registry, pdf_bytes
    ):
        """The first call sends the task prompt with the uploaded handle."""
        generator = ScriptedGenerator([PINOUT_OK])
        make_orchestrator(generator).extract(pdf_bytes, "pinout")

        handle, prompt, task, model = generator.calls[0]
        assert handle == "https://files.test/v1beta/files/f1"
        assert prompt == registry.get("pinout").prompt_text
        assert task.task_name == "pinout"

    def test_model_override(self, make_orchestrator, pdf_bytes):
        """A per-call model wins over the default."""
        generator = ScriptedGenerator([PINOUT_OK])
        result = make_orchestrator(generator).extract(
            pdf_bytes, "pinout", model="gemini-2.5-flash"
        )
        assert result.model == "gemini-2.5-flash"
        assert generator.calls[0][3] == "gemini-2.5-flash"

    def test_not_found_is_success(self, make_orchestrator, pdf_bytes):
        """``{"error": ...}`` is returned as a not-found result, not a failure."""
        generator = ScriptedGenerator(['{"error": "No pinout information in document"}'])
        result = make_orchestrator(generator).extract(pdf_bytes, "pinout")

        assert result.not_found is True
        assert result.attempt_count == 1
        assert result.validated_json == {"error": "No pinout information in document"}

    def test_unknown_task_fails_before_upload(self, make_orchestrator, file_client, pdf_bytes):
        """A bad task name costs no upload and no generation."""
        generator = ScriptedGenerator([])
        with pytest.raises(UnknownTask):
            make_orchestrator(generator).extract(pdf_bytes, "no-such-task")

        assert file_client.uploads == 0
        assert generator.calls == []

    def test_custom_task_definition(self, make_orchestrator, registry, pdf_bytes):
        """An ad-hoc custom task is validated against its own schema."""
        task = registry.resolve(
            "custom",
            prompt="Return the maximum input voltage.",
            schema={
                "type": "object",
                "properties": {"vin_max": {"type": "number"}},
                "required": ["vin_max"],
            },
        )
        generator = ScriptedGenerator(['{"vin_max": 36}'])
        result = make_orchestrator(generator).extract(pdf_bytes, task=task)

        assert result.validated_json == {"vin_max": 36}
        assert generator.calls[0][1] == "Return the maximum input voltage."


# ── Repair loop ─────────────────────────────────────────────────────────────


class TestRepairLoop:
    """Invalid output triggers a corrective retry."""

    def test_missing_field_retried_with_errors(self, make_orchestrator, pdf_bytes):
        """The second prompt names the missing field; the retry succeeds."""
        generator = ScriptedGenerator([PINOUT_MISSING_PACKAGES, PINOUT_OK])
        result = make_orchestrator(generator).extract(pdf_bytes, "pinout")

        assert result.attempt_count == 2
        retry_prompt = generator.calls[1][1]
        assert "'packages' is a required property" in retry_prompt
        assert PINOUT_MISSING_PACKAGES in retry_prompt

    def test_exhaustion_raises_with_raw_output(self, make_orchestrator, pdf_bytes):
        """After the last attempt the failure carries the raw output and errors."""
        generator = ScriptedGenerator([PINOUT_MISSING_PACKAGES, PINOUT_MISSING_PACKAGES])

        with pytest.raises(SchemaValidationFailure) as exc_info:
            make_orchestrator(generator).extract(pdf_bytes, "pinout")

        failure = exc_info.value
        assert failure.raw_output == PINOUT_MISSING_PACKAGES
        assert failure.attempt_count == 2
        assert any("'packages' is a required property" in e for e in failure.errors)
        assert failure.to_dict()["raw_output"] == PINOUT_MISSING_PACKAGES
        assert len(generator.calls) == 2

    def test_result_validator_triggers_retry(self, make_orchestrator, pdf_bytes):
        """Schema-valid but empty pin lists are sent back for correction."""
        empty_pins = json.dumps({"packages": [{"package_name": "QFN32", "pins": []}]})
        generator = ScriptedGenerator([empty_pins, PINOUT_OK])
        result = make_orchestrator(generator).extract(pdf_bytes, "pinout")

        assert result.attempt_count == 2
        assert "package QFN32 lists no pins" in generator.calls[1][1]

    def test_attempt_budget_respected(self, make_orchestrator, pdf_bytes):
        """``max_attempts`` bounds the number of generation calls."""
        generator = ScriptedGenerator(["not json"] * 3)
        with pytest.raises(SchemaValidationFailure) as exc_info:
            make_orchestrator(generator, max_attempts=3).extract(pdf_bytes, "pinout")

        assert exc_info.value.attempt_count == 3
        assert len(generator.calls) == 3

    def test_previous_output_can_be_withheld(self, make_orchestrator, pdf_bytes):
        """With quoting disabled the retry prompt omits the old output."""
        generator = ScriptedGenerator([PINOUT_MISSING_PACKAGES, PINOUT_OK])
        make_orchestrator(generator, include_output_in_correction=False).extract(
            pdf_bytes, "pinout"
        )
        assert PINOUT_MISSING_PACKAGES not in generator.calls[1][1]

    def test_caller_schema_error_field_is_not_not_found(
        self, make_orchestrator, registry, pdf_bytes
    ):
        """With a caller schema, a bare ``{"error": ...}`` must still satisfy it."""
        task = registry.resolve(
            "custom",
            prompt="Report the fault code.",
            schema={
                "type": "object",
                "properties": {"error": {"type": "string"}, "code": {"type": "string"}},
                "required": ["error", "code"],
            },
        )
        generator = ScriptedGenerator(['{"error": "E1"}', '{"error": "E1"}'])

        with pytest.raises(SchemaValidationFailure) as exc_info:
            make_orchestrator(generator).extract(pdf_bytes, task=task)

        assert exc_info.value.attempt_count == 2
        assert any("'code' is a required property" in e for e in exc_info.value.errors)
        assert len(generator.calls) == 2

    def test_transport_error_then_success(self, make_orchestrator, pdf_bytes):
        """A failed call consumes an attempt; the next one may succeed."""
        generator = ScriptedGenerator([transport_error(), PINOUT_OK])
        result = make_orchestrator(generator).extract(pdf_bytes, "pinout")
        assert result.attempt_count == 2

    def test_transport_error_on_last_attempt(self, make_orchestrator, pdf_bytes):
        """``InferenceFailure`` propagates once attempts are used up."""
        generator = ScriptedGenerator([transport_error(), transport_error()])
        with pytest.raises(InferenceFailure) as exc_info:
            make_orchestrator(generator).extract(pdf_bytes, "pinout")
        assert exc_info.value.attempts == 2
        assert "raw_output" not in exc_info.value.to_dict()

    def test_transport_error_after_invalid_output_keeps_output(
        self, make_orchestrator, pdf_bytes
    ):
        """The rejected output survives a transport failure on the last attempt."""
        generator = ScriptedGenerator([PINOUT_MISSING_PACKAGES, transport_error()])

        with pytest.raises(InferenceFailure) as exc_info:
            make_orchestrator(generator).extract(pdf_bytes, "pinout")

        failure = exc_info.value
        assert failure.attempts == 2
        assert failure.raw_output == PINOUT_MISSING_PACKAGES
        assert any("'packages' is a required property" in e for e in failure.errors)
        body = failure.to_dict()
        assert body["raw_output"] == PINOUT_MISSING_PACKAGES
        assert body["errors"] == failure.errors


# ── Uploads ─────────────────────────────────────────────────────────────────


class TestUploads:
    """Upload caching and retry through the orchestrator."""

    def test_second_extraction_reuses_upload(self, make_orchestrator, file_client, pdf_bytes):
        """Two tasks on the same PDF upload it once."""
        generator = ScriptedGenerator([PINOUT_OK, '{"error": "none"}'])
        orchestrator = make_orchestrator(generator)

        orchestrator.extract(pdf_bytes, "pinout")
        orchestrator.extract(pdf_bytes, "power")

        assert file_client.uploads == 1
        assert generator.calls[0][0] == generator.calls[1][0]

    def test_bypass_cache_reuploads(self, make_orchestrator, file_client, pdf_bytes):
        """``bypass_cache`` forces a fresh upload."""
        generator = ScriptedGenerator([PINOUT_OK, PINOUT_OK])
        orchestrator = make_orchestrator(generator)

        orchestrator.extract(pdf_bytes, "pinout")
        orchestrator.extract(pdf_bytes, "pinout", bypass_cache=True)

        assert file_client.uploads == 2
        assert generator.calls[1][0].endswith("/f2")

    def test_upload_retried(self, make_orchestrator, pdf_bytes):
        """A transient upload failure is retried."""
        files = FakeFileClient(fail_times=1)
        generator = ScriptedGenerator([PINOUT_OK])
        result = make_orchestrator(generator, files=files).extract(pdf_bytes, "pinout")

        assert files.uploads == 2
        assert result.attempt_count == 1
        assert generator.calls[0][0].endswith("/f2")

    def test_upload_failure_exhausted(self, make_orchestrator, pdf_bytes):
        """Persistent upload failures surface as ``UploadFailure``."""
        files = FakeFileClient(fail_times=10)
        generator = ScriptedGenerator([])
        with pytest.raises(UploadFailure):
            make_orchestrator(generator, files=files, upload_attempts=3).extract(
                pdf_bytes, "pinout"
            )

        assert files.uploads == 3
        assert generator.calls == []

    def test_dead_remote_file_reuploaded(self, make_orchestrator, pdf_bytes):
        """A cached file the service dropped is uploaded again."""
        files = FakeFileClient()
        generator = ScriptedGenerator([PINOUT_OK, PINOUT_OK])
        orchestrator = make_orchestrator(generator, files=files)

        orchestrator.extract(pdf_bytes, "pinout")
        files.alive = False
        orchestrator.extract(pdf_bytes, "pinout")

        assert files.uploads == 2

    def test_concurrent_same_pdf_single_upload(self, make_orchestrator, content_cache):
        """Concurrent extractions of one PDF share a single upload and agree."""
        gate = threading.Event()
        files = FakeFileClient(gate=gate)
        generator = ScriptedGenerator(lambda: PINOUT_OK)
        orchestrator = make_orchestrator(generator, files=files)
        pdf = make_pdf("concurrent")
        key = compute_content_key(pdf)

        with ThreadPoolExecutor(max_workers=8) as pool:
            futures = [pool.submit(orchestrator.extract, pdf, "pinout") for _ in range(8)]
            deadline = time.monotonic() + 5
            while content_cache._inflight.waiter_count(key) < 8 and time.monotonic() < deadline:
                time.sleep(0.005)
            gate.set()
            results = [f.result(timeout=10) for f in futures]

        assert files.uploads == 1
        assert {json.dumps(r.validated_json, sort_keys=True) for r in results} == {
            json.dumps(json.loads(PINOUT_OK), sort_keys=True)
        }
        assert {call[0] for call in generator.calls} == {"https://files.test/v1beta/files/f1"}


class TestConstruction:
    """Constructor argument checks."""

    def test_attempts_must_be_positive(self, make_orchestrator):
        """Zero attempts is rejected."""
        with pytest.raises(ValueError):
            make_orchestrator(ScriptedGenerator([]), max_attempts=0)
