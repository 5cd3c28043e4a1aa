"""Dashboard and audit endpoints (read-only)."""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from curriculum.core.integrity import check_integrity
from curriculum.core.reports import PERIODS, build_summary, registrations_per_day
from curriculum.core.services import Services
from curriculum.web.dependencies import get_services
from curriculum.web.schemas import (
    IntegrityResponse,
    LeaderboardEntryResponse,
    SummaryResponse,
)

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.get("/summary", response_model=SummaryResponse)
async def summary(
    period: str = Query("7d"),
    top: int = Query(5, ge=1, le=100),
    services: Services = Depends(get_services),
) -> SummaryResponse:
    """Students, levels, completion rate, leaderboard and registrations."""
    if period not in PERIODS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown period '{period}'. Use one of: {', '.join(PERIODS)}",
        )

    result = build_summary(services.catalog, services.progress, top=top)
    registrations = registrations_per_day(services.progress.list_all(), PERIODS[period])

    return SummaryResponse(
        total_students=result.total_students,
        total_units=result.total_units,
        completion_rate=result.completion_rate,
        active_students=result.active_students,
        top_students=[
            LeaderboardEntryResponse(
                owner_id=e.owner_id,
                name=e.name,
                completed_count=e.completed_count,
                current_position=e.current_position,
            )
            for e in result.top_students
        ],
        registrations=registrations,
    )


@router.get("/integrity", response_model=IntegrityResponse)
async def integrity(services: Services = Depends(get_services)) -> IntegrityResponse:
    """Audit catalog density and progress references."""
    report = check_integrity(services.catalog, services.progress)
    return IntegrityResponse(
        ok=report.ok,
        total_units=report.total_units,
        total_records=report.total_records,
        orphaned=report.orphaned,
        invalid_positions=report.invalid_positions,
        gaps=report.gaps,
        duplicates=report.duplicates,
        pending_units=[t.unit_id for t in report.pending],
    )
