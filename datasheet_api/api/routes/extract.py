"""Single-document extraction route."""

from __future__ import annotations

import logging
import time

import httpx
from fastapi import APIRouter, Depends, HTTPException

from datasheet_api.api.deps import get_orchestrator
from datasheet_api.schemas import (
    ExtractionOptions,
    ExtractionRequest,
    ExtractionResponse,
    ExtractionResult,
)
from datasheet_api.services.downloader import download_pdf
from datasheet_api.services.extractor import ExtractionOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["extraction"])


def run_extraction(
    orchestrator: ExtractionOrchestrator,
    data: bytes,
    task_name: str,
    options: ExtractionOptions,
    *,
    display_name: str = "datasheet.pdf",
) -> ExtractionResponse:
    """Resolve the task, run the extraction and time it.

    Shared by every endpoint that ends in an extraction.
    """
    started = time.perf_counter()
    task = orchestrator.registry.resolve(
        task_name,
        prompt=options.prompt,
        schema=options.output_schema,
    )
    result: ExtractionResult = orchestrator.extract(
        data,
        task=task,
        model=options.model,
        temperature=options.temperature,
        bypass_cache=options.no_cache,
        display_name=display_name,
    )
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    logger.info(
        "Extraction task='%s' finished in %d ms after %d attempt(s)",
        result.task_name,
        elapsed_ms,
        result.attempt_count,
    )
    return ExtractionResponse(
        task=result.task_name,
        content_key=result.content_key,
        data=result.validated_json,
        not_found=result.not_found,
        attempt_count=result.attempt_count,
        model=result.model,
        processing_time_ms=elapsed_ms,
    )


def _fetch_document(url: str) -> bytes:
    """Download a caller-supplied PDF.

    Private and loopback targets are refused with 400 before any
    request is sent; transport errors map to 502.
    """
    try:
        return download_pdf(url, validate=True)
    except httpx.HTTPStatusError as exc:
        raise HTTPException(
            status_code=502,
            detail=f"Document download returned {exc.response.status_code}",
        ) from exc
    except httpx.HTTPError as exc:
        raise HTTPException(
            status_code=502,
            detail=f"Document download failed: {exc}",
        ) from exc


@router.post(
    "/extract",
    response_model=ExtractionResponse,
)
def extract_document(
    request: ExtractionRequest,
    orchestrator: ExtractionOrchestrator = Depends(get_orchestrator),
) -> ExtractionResponse:
    """Extract structured data from one PDF.

    The document is given either inline (``document_base64``) or
    by URL.  Uploads are cached by content hash, so repeated
    calls for the same PDF reuse the remote file.
    """
    data = request.document_bytes()
    if data is None:
        data = _fetch_document(str(request.document_url))

    return run_extraction(
        orchestrator,
        data,
        request.task,
        request,
        display_name=request.filename or "datasheet.pdf",
    )
