"""Student progress endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from curriculum.core.progression import (
    LevelNotAvailableError,
    catch_up,
    complete_unit,
    enroll_student,
)
from curriculum.core.services import Services
from curriculum.db.progress_repository import (
    DuplicateProgressRecordError,
    ProgressRecord,
    ProgressRecordNotFoundError,
    ProgressUpdate,
)
from curriculum.web.dependencies import get_services
from curriculum.web.schemas import (
    CompleteRequest,
    EnrollRequest,
    ProgressListResponse,
    ProgressOverride,
    ProgressResponse,
)

router = APIRouter(prefix="/api/progress", tags=["progress"])


def _to_response(record: ProgressRecord) -> ProgressResponse:
    return ProgressResponse(
        owner_id=record.owner_id,
        completed_units=sorted(record.completed_units),
        current_position=record.current_position,
        extra=record.extra,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _not_found(owner_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Student '{owner_id}' not found",
    )


@router.get("", response_model=ProgressListResponse)
async def list_progress(
    q: str | None = Query(None, max_length=200, description="Search by name or email"),
    services: Services = Depends(get_services),
) -> ProgressListResponse:
    """List progress records, newest students first."""
    records = [_to_response(r) for r in services.progress.list_recent(q)]
    return ProgressListResponse(records=records, count=len(records))


@router.post("", response_model=ProgressResponse, status_code=status.HTTP_201_CREATED)
async def enroll(
    request: EnrollRequest,
    services: Services = Depends(get_services),
) -> ProgressResponse:
    """Enroll a student (creates a record at level 1)."""
    try:
        record = enroll_student(services.progress, request.owner_id, request.extra)
    except DuplicateProgressRecordError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Student '{request.owner_id}' is already enrolled",
        )
    return _to_response(record)


@router.get("/{owner_id}", response_model=ProgressResponse)
async def get_progress(
    owner_id: str,
    services: Services = Depends(get_services),
) -> ProgressResponse:
    """Get a student's progress."""
    record = services.progress.get(owner_id)
    if record is None:
        raise _not_found(owner_id)
    return _to_response(record)


@router.put("/{owner_id}", response_model=ProgressResponse)
async def override_progress(
    owner_id: str,
    override: ProgressOverride,
    services: Services = Depends(get_services),
) -> ProgressResponse:
    """Overwrite a student's progress (admin correction).

    Values are taken in the current numbering, so the record is marked as
    up to date with every deletion logged so far.
    """
    live = {u.unit_seq for u in services.catalog.list_units()}
    unknown = sorted(set(override.completed_units) - live)
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown level numbers: {unknown}",
        )

    latest_id = services.catalog.latest_tombstone_id()
    update = ProgressUpdate(
        completed_units=set(override.completed_units),
        current_position=override.current_position,
        last_repair_id=latest_id,
    )
    try:
        services.progress.batch_write({owner_id: update})
    except ProgressRecordNotFoundError:
        raise _not_found(owner_id)

    catch_up(services.catalog, services.progress, [owner_id], latest_id)

    record = services.progress.get(owner_id)
    if record is None:
        raise _not_found(owner_id)
    return _to_response(record)


@router.post("/{owner_id}/complete", response_model=ProgressResponse)
async def complete(
    owner_id: str,
    request: CompleteRequest,
    services: Services = Depends(get_services),
) -> ProgressResponse:
    """Record that a student finished a level."""
    try:
        record = complete_unit(
            services.catalog, services.progress, owner_id, request.unit_seq
        )
    except LevelNotAvailableError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ProgressRecordNotFoundError:
        raise _not_found(owner_id)
    return _to_response(record)
