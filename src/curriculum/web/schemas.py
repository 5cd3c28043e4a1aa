"""Pydantic schemas for Web API.

Serialization models for levels, progress records, deletion results
and reports.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


# =============================================================================
# LEVEL SCHEMAS
# =============================================================================


class LevelCreate(BaseModel):
    """Request body for creating or editing a level."""

    unit_seq: int = Field(..., ge=1)
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    quizzes: list[dict[str, Any]] = Field(default_factory=list)
    pronunciations: list[dict[str, Any]] = Field(default_factory=list)


class LevelResponse(BaseModel):
    """Response for a level."""

    unit_id: str
    unit_seq: int
    title: str
    description: str
    quizzes: list[dict[str, Any]] = Field(default_factory=list)
    pronunciations: list[dict[str, Any]] = Field(default_factory=list)
    created_at: str
    updated_at: str


class LevelListResponse(BaseModel):
    """Response for list of levels."""

    levels: list[LevelResponse]
    count: int


class LevelDeleteResponse(BaseModel):
    """Response after a level deletion and its progress repair."""

    unit_id: str
    unit_seq: int
    affected_count: int
    batches: int
    message: str


class RepairResponse(BaseModel):
    """Response for one finished repair pass."""

    tombstone_id: int
    unit_id: str
    unit_seq: int
    affected_count: int
    batches: int


class RepairListResponse(BaseModel):
    repairs: list[RepairResponse]
    count: int


# =============================================================================
# PROGRESS SCHEMAS
# =============================================================================


class EnrollRequest(BaseModel):
    """Request body for enrolling a student."""

    owner_id: str = Field(..., min_length=1, max_length=128)
    extra: dict[str, Any] = Field(default_factory=dict)


class CompleteRequest(BaseModel):
    unit_seq: int = Field(..., ge=1)


class ProgressOverride(BaseModel):
    """Admin correction of a student's progress."""

    completed_units: list[int] = Field(default_factory=list)
    current_position: int = Field(..., ge=1)


class ProgressResponse(BaseModel):
    """Response for a progress record."""

    owner_id: str
    completed_units: list[int]
    current_position: int
    extra: dict[str, Any] = Field(default_factory=dict)
    created_at: str
    updated_at: str


class ProgressListResponse(BaseModel):
    records: list[ProgressResponse]
    count: int


# =============================================================================
# REPORT SCHEMAS
# =============================================================================


class LeaderboardEntryResponse(BaseModel):
    owner_id: str
    name: str = ""
    completed_count: int
    current_position: int


class SummaryResponse(BaseModel):
    """Dashboard numbers."""

    total_students: int
    total_units: int
    completion_rate: int
    active_students: int
    top_students: list[LeaderboardEntryResponse]
    registrations: dict[str, int] = Field(default_factory=dict)


class IntegrityResponse(BaseModel):
    """Result of the consistency audit."""

    ok: bool
    total_units: int
    total_records: int
    orphaned: dict[str, list[int]] = Field(default_factory=dict)
    invalid_positions: dict[str, int] = Field(default_factory=dict)
    gaps: list[int] = Field(default_factory=list)
    duplicates: list[int] = Field(default_factory=list)
    pending_units: list[str] = Field(default_factory=list)


# =============================================================================
# HEALTH SCHEMAS
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
