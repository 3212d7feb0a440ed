"""FastAPI web application for the records inventory."""

import logging
from typing import Any, Dict, List, Optional, Union
from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from recinventory.database.database import SessionLocal, init_db
from recinventory.database.transaction import TransactionCoordinator
from recinventory.engine.search import SearchCriteria
from recinventory.errors import (
    DuplicateKeyError,
    InventoryError,
    MappingError,
    SeriesNotFoundError,
    TransactionAbortError,
    ValidationError,
)
from recinventory.models.audit_event import AuditEvent
from recinventory.models.results import BatchResult, SavedSeries, ScheduleSummary, ValidationResult
from recinventory.models.series import Series
from recinventory.service import InventoryService

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Records Inventory API",
    description="Record series inventory with retention schedules, audit history and JSON import/export",
    version="3.7.0"
)

STATUS_BY_ERROR = {
    ValidationError: 422,
    DuplicateKeyError: 409,
    SeriesNotFoundError: 404,
    TransactionAbortError: 500,
    MappingError: 500,
}

_default_service: Optional[InventoryService] = None


def get_service() -> InventoryService:
    """Service over the configured DATABASE_URL (overridden in tests)."""
    global _default_service
    if _default_service is None:
        init_db()
        _default_service = InventoryService(TransactionCoordinator(SessionLocal))
    return _default_service


@app.exception_handler(InventoryError)
async def inventory_error_handler(request: Request, exc: InventoryError):
    status_code = STATUS_BY_ERROR.get(type(exc), 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Request models
class BatchRequest(BaseModel):
    """Request body for a batch upsert."""
    records: List[Dict[str, Any]]
    fallback_fields: List[str] = Field(default_factory=list, description="Identifying fields for records without a natural key")


class SeriesListResponse(BaseModel):
    total: int
    series: List[Series]


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok"}


@app.post("/validate", response_model=ValidationResult)
def validate_record(record: Dict[str, Any] = Body(...), service: InventoryService = Depends(get_service)):
    """Validate a record without saving it."""
    return service.validate(record)


@app.get("/series", response_model=SeriesListResponse)
def list_series(
    q: Optional[str] = None,
    schedule_number: Optional[str] = None,
    division: Optional[str] = None,
    approval_status: Optional[str] = None,
    tag: List[str] = Query(default=[]),
    media_type: List[str] = Query(default=[]),
    sort_by: Optional[str] = None,
    descending: bool = False,
    service: InventoryService = Depends(get_service),
):
    """Search series; with no parameters, list all in _id order."""
    criteria = SearchCriteria(
        text=q,
        schedule_number=schedule_number,
        division=division,
        approval_status=approval_status,
        tags=tag,
        media_types=media_type,
        sort_by=sort_by,
        descending=descending,
    )
    try:
        series = service.search_series(criteria)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return SeriesListResponse(total=len(series), series=series)


@app.post("/series", response_model=SavedSeries, status_code=201)
def create_series(record: Dict[str, Any] = Body(...), service: InventoryService = Depends(get_service)):
    return service.save_series(record)


@app.get("/series/{series_id}", response_model=Series)
def get_series(series_id: int, service: InventoryService = Depends(get_service)):
    return service.get_series(series_id)


@app.put("/series/{series_id}", response_model=SavedSeries)
def update_series(series_id: int, record: Dict[str, Any] = Body(...), service: InventoryService = Depends(get_service)):
    """Update fields of one series; fields not sent are left as they are."""
    return service.save_series(record, series_id=series_id)


@app.delete("/series/{series_id}", response_model=BatchResult)
def delete_series(series_id: int, service: InventoryService = Depends(get_service)):
    return service.delete_series(series_id)


@app.post("/series/batch", response_model=BatchResult)
def upsert_series_batch(request: BatchRequest, service: InventoryService = Depends(get_service)):
    """Insert or update many series as one atomic batch."""
    return service.upsert_batch(request.records, fallback_fields=request.fallback_fields)


@app.get("/schedules", response_model=List[ScheduleSummary])
def list_schedules(service: InventoryService = Depends(get_service)):
    return service.list_schedules()


@app.patch("/schedules/{schedule_number}", response_model=BatchResult)
def update_schedule(
    schedule_number: str,
    changes: Dict[str, Any] = Body(...),
    service: InventoryService = Depends(get_service),
):
    """Apply schedule-level changes to every series of the schedule."""
    return service.bulk_update_schedule(schedule_number, changes)


@app.delete("/schedules/{schedule_number}", response_model=BatchResult)
def unassign_schedule(schedule_number: str, service: InventoryService = Depends(get_service)):
    """Remove the schedule assignment from every series of the schedule."""
    return service.unassign_schedule(schedule_number)


@app.get("/audit-events", response_model=List[AuditEvent])
def list_audit_events(
    entity_id: Optional[int] = None,
    action: Optional[str] = None,
    service: InventoryService = Depends(get_service),
):
    return service.list_audit_events(entity_id=entity_id, action=action)


@app.get("/export")
def export_inventory(
    series_id: Optional[List[int]] = Query(default=None),
    service: InventoryService = Depends(get_service),
):
    """Export document; repeat ``series_id`` for a filtered export."""
    return service.export_all(series_ids=series_id)


@app.post("/import", response_model=BatchResult)
def import_inventory(
    payload: Union[Dict[str, Any], List[Any]] = Body(...),
    service: InventoryService = Depends(get_service),
):
    """Import an export document (or a bare list of series) as one batch."""
    return service.import_all(payload)
