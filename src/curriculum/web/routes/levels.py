"""Level endpoints.

DELETE runs the consistency engine. The call is shielded from request
cancellation: once the level is gone the repair must run to the end,
so a client that disconnects only loses the response.
"""

import asyncio

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from curriculum.core.consistency_engine import (
    PartialFailureError,
    RepairResult,
    UnitNotFoundError,
)
from curriculum.core.services import Services
from curriculum.db.catalog_repository import ContentUnit
from curriculum.web.dependencies import get_services
from curriculum.web.schemas import (
    LevelCreate,
    LevelDeleteResponse,
    LevelListResponse,
    LevelResponse,
    RepairListResponse,
    RepairResponse,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/levels", tags=["levels"])


def _to_response(unit: ContentUnit) -> LevelResponse:
    return LevelResponse(
        unit_id=unit.unit_id,
        unit_seq=unit.unit_seq,
        title=unit.title,
        description=unit.description,
        quizzes=unit.payload.get("quizzes", []),
        pronunciations=unit.payload.get("pronunciations", []),
        created_at=unit.created_at,
        updated_at=unit.updated_at,
    )


def _repair_to_response(result: RepairResult) -> RepairResponse:
    return RepairResponse(
        tombstone_id=result.tombstone_id,
        unit_id=result.unit_id,
        unit_seq=result.unit_seq,
        affected_count=result.affected_count,
        batches=result.batches,
    )


def _partial_failure(e: PartialFailureError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "error": "partial_failure",
            "unit_id": e.unit_id,
            "unit_seq": e.unit_seq,
            "committed_count": e.committed_count,
            "message": "Level deleted but student progress was not fully updated. "
            "Run POST /api/levels/repair to finish.",
        },
    )


def _check_seq_free(services: Services, unit_seq: int, unit_id: str | None = None) -> None:
    holder = services.catalog.get_by_seq(unit_seq)
    if holder is not None and holder.unit_id != unit_id:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Level number {unit_seq} is already used by '{holder.title}'",
        )


@router.get("", response_model=LevelListResponse)
async def list_levels(services: Services = Depends(get_services)) -> LevelListResponse:
    """List all levels in curriculum order."""
    levels = [_to_response(u) for u in services.catalog.list_units()]
    return LevelListResponse(levels=levels, count=len(levels))


@router.get("/{unit_id}", response_model=LevelResponse)
async def get_level(unit_id: str, services: Services = Depends(get_services)) -> LevelResponse:
    """Get a specific level by ID."""
    unit = services.catalog.get(unit_id)

    if unit is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Level '{unit_id}' not found",
        )

    return _to_response(unit)


@router.post("", response_model=LevelResponse, status_code=status.HTTP_201_CREATED)
async def create_level(
    level: LevelCreate,
    services: Services = Depends(get_services),
) -> LevelResponse:
    """Create a new level."""
    _check_seq_free(services, level.unit_seq)

    unit = services.catalog.add(
        unit_seq=level.unit_seq,
        title=level.title,
        description=level.description,
        payload={"quizzes": level.quizzes, "pronunciations": level.pronunciations},
    )
    return _to_response(unit)


@router.put("/{unit_id}", response_model=LevelResponse)
async def update_level(
    unit_id: str,
    level: LevelCreate,
    services: Services = Depends(get_services),
) -> LevelResponse:
    """Edit an existing level."""
    existing = services.catalog.get(unit_id)
    if existing is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Level '{unit_id}' not found",
        )

    _check_seq_free(services, level.unit_seq, unit_id)

    payload = dict(existing.payload)
    payload.update({"quizzes": level.quizzes, "pronunciations": level.pronunciations})
    unit = services.catalog.update(
        unit_id,
        unit_seq=level.unit_seq,
        title=level.title,
        description=level.description,
        payload=payload,
    )
    return _to_response(unit)


@router.delete("/{unit_id}", response_model=LevelDeleteResponse)
async def delete_level(
    unit_id: str,
    services: Services = Depends(get_services),
) -> LevelDeleteResponse:
    """Delete a level and update every affected student's progress."""
    try:
        result = await asyncio.shield(
            asyncio.to_thread(services.engine.delete_unit, unit_id)
        )
    except UnitNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Level '{unit_id}' not found",
        )
    except PartialFailureError as e:
        raise _partial_failure(e)

    return LevelDeleteResponse(
        unit_id=result.unit_id,
        unit_seq=result.unit_seq,
        affected_count=result.affected_count,
        batches=result.batches,
        message=f"Level deleted successfully! Updated {result.affected_count} student(s).",
    )


@router.post("/repair", response_model=RepairListResponse)
async def repair_levels(services: Services = Depends(get_services)) -> RepairListResponse:
    """Finish progress repairs left pending by failed deletions."""
    try:
        results = await asyncio.shield(asyncio.to_thread(services.engine.repair_pending))
    except PartialFailureError as e:
        raise _partial_failure(e)

    repairs = [_repair_to_response(r) for r in results]
    return RepairListResponse(repairs=repairs, count=len(repairs))
