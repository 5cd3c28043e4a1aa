"""Core business logic modules.

- consistency_engine: level deletion with progress repair
- progression: enrolment and level completion
- integrity: read-only consistency audit
- reports: dashboard aggregates
- services: wiring from configuration
"""

from curriculum.core.consistency_engine import (
    ConsistencyEngine,
    DeletionResult,
    PartialFailureError,
    RepairResult,
    UnitNotFoundError,
)

__all__ = [
    "ConsistencyEngine",
    "DeletionResult",
    "PartialFailureError",
    "RepairResult",
    "UnitNotFoundError",
]
