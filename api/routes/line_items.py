"""Job line item endpoints.

Replace, list and create the line items stored for a job.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel

from core.observability import get_logger
from line_items import (
    LineItemValidationError,
    MissingTableError,
    PermissionDeniedError,
    SyncEngine,
    SyncLineItemsRequest,
    create_line_items_typed,
    get_sync_engine,
)


logger = get_logger(__name__)

router = APIRouter()


class LineItemListResponse(BaseModel):
    """Stored line items for a job."""
    job_id: str
    items: List[Dict[str, Any]]
    total: int


class SyncResponse(LineItemListResponse):
    """Result of replacing a job's line items."""
    capabilities: Dict[str, bool] = {}


class TypedCreateResponse(BaseModel):
    """Rows written by the typed creation path."""
    items: List[Dict[str, Any]]
    created: int


def _to_http_error(error: Exception) -> HTTPException:
    if isinstance(error, LineItemValidationError):
        return HTTPException(
            status_code=422,
            detail={"message": str(error), "errors": error.field_errors},
        )
    if isinstance(error, PermissionDeniedError):
        return HTTPException(status_code=403, detail=error.user_message)
    if isinstance(error, MissingTableError):
        return HTTPException(status_code=503, detail="Line item storage is not available")
    return HTTPException(status_code=400, detail=str(error))


@router.get("/{job_id}/line-items", response_model=LineItemListResponse)
async def list_line_items(
    job_id: str,
    engine: SyncEngine = Depends(get_sync_engine),
) -> LineItemListResponse:
    """Get the stored line items for a job."""
    try:
        rows = await engine.list_line_items(job_id)
    except (ValueError, MissingTableError) as e:
        raise _to_http_error(e)

    return LineItemListResponse(job_id=job_id, items=rows, total=len(rows))


@router.put("/{job_id}/line-items", response_model=SyncResponse)
async def replace_line_items(
    job_id: str,
    request: Optional[SyncLineItemsRequest] = Body(default=None),
    engine: SyncEngine = Depends(get_sync_engine),
) -> SyncResponse:
    """Replace the job's line items with the submitted list.

    Items without a product are dropped; duplicates are merged. An empty
    list clears the job.
    """
    items = request.line_items if request else []

    try:
        await engine.synchronize(job_id, items)
        rows = await engine.list_line_items(job_id)
    except (ValueError, PermissionDeniedError, MissingTableError) as e:
        logger.warning(f"Line item save rejected for job {job_id}: {type(e).__name__}")
        raise _to_http_error(e)

    return SyncResponse(
        job_id=job_id,
        items=rows,
        total=len(rows),
        capabilities=engine.registry.snapshot(),
    )


@router.post("/{job_id}/line-items/typed", response_model=TypedCreateResponse, status_code=201)
async def create_typed_line_items(
    job_id: str,
    items: List[Dict[str, Any]] = Body(...),
    engine: SyncEngine = Depends(get_sync_engine),
) -> TypedCreateResponse:
    """Validate and insert line items with the strict schema.

    The path job_id is applied to items that do not carry their own.
    """
    payload = [
        item if "job_id" in item or "jobId" in item else {"job_id": job_id, **item}
        for item in items
    ]

    try:
        rows = await create_line_items_typed(engine.store, payload, engine.registry, engine.telemetry)
    except (LineItemValidationError, PermissionDeniedError, MissingTableError) as e:
        raise _to_http_error(e)

    return TypedCreateResponse(items=rows, created=len(rows))
