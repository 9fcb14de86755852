"""Distributor search, part lookup and datasheet routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Body, Depends, Path, Query
from fastapi.responses import Response

from datasheet_api.api.deps import get_distributor, get_orchestrator
from datasheet_api.api.routes.extract import run_extraction
from datasheet_api.core.constants import PDF_MIME_TYPE
from datasheet_api.schemas import (
    ExtractionOptions,
    ExtractionResponse,
    PartDetail,
    PartSearchResponse,
)
from datasheet_api.services.distributors import DistributorClient
from datasheet_api.services.extractor import ExtractionOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/distributors/{distributor}", tags=["distributors"])


@router.get("/search", response_model=PartSearchResponse)
def search_parts(
    q: str = Query(..., min_length=1, max_length=200, description="Keyword or part number"),
    limit: int = Query(10, ge=1, le=50),
    offset: int = Query(0, ge=0),
    exact: bool = Query(False, description="Match the part number exactly"),
    client: DistributorClient = Depends(get_distributor),
) -> PartSearchResponse:
    """Search the distributor catalog."""
    parts = client.search(q, limit=limit, offset=offset, exact=exact)
    return PartSearchResponse(
        distributor=client.distributor_id,
        query=q,
        count=len(parts),
        parts=parts,
    )


@router.get("/parts/{part_id:path}/datasheet")
def get_datasheet(
    part_id: str = Path(..., min_length=1),
    client: DistributorClient = Depends(get_distributor),
) -> Response:
    """Download the part's datasheet PDF through the distributor."""
    data = client.download_datasheet(part_id)
    filename = "".join(c if c.isalnum() or c in "-_." else "_" for c in part_id)
    return Response(
        content=data,
        media_type=PDF_MIME_TYPE,
        headers={"Content-Disposition": f'inline; filename="{filename}.pdf"'},
    )


@router.post(
    "/parts/{part_id:path}/extract/{task}",
    response_model=ExtractionResponse,
    tags=["extraction"],
)
def extract_part_datasheet(
    task: str,
    part_id: str = Path(..., min_length=1),
    options: ExtractionOptions | None = Body(default=None),
    client: DistributorClient = Depends(get_distributor),
    orchestrator: ExtractionOrchestrator = Depends(get_orchestrator),
) -> ExtractionResponse:
    """Fetch the part's datasheet and run *task* against it."""
    # Unknown task names fail before anything is downloaded.
    options = options or ExtractionOptions()
    orchestrator.registry.resolve(task, prompt=options.prompt, schema=options.output_schema)

    data = client.download_datasheet(part_id)
    return run_extraction(
        orchestrator,
        data,
        task,
        options,
        display_name=f"{client.distributor_id}-{part_id}.pdf",
    )


@router.get("/parts/{part_id:path}", response_model=PartDetail)
def get_part(
    part_id: str = Path(..., min_length=1),
    client: DistributorClient = Depends(get_distributor),
) -> PartDetail:
    """Return the full record for one part."""
    return client.get_part(part_id)
