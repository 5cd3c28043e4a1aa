"""Database module for SQLite persistence.

Provides:
- Database connection management
- Schema initialization
- Catalog store (levels + deletion log)
- Progress store (one record per student)
"""

from curriculum.db.catalog_repository import (
    CatalogStore,
    ContentUnit,
    RepairPendingError,
    Tombstone,
)
from curriculum.db.database import Database, StoreUnavailableError
from curriculum.db.progress_repository import (
    BatchTooLargeError,
    DuplicateProgressRecordError,
    ProgressRecord,
    ProgressRecordNotFoundError,
    ProgressStore,
    ProgressUpdate,
)

__all__ = [
    "BatchTooLargeError",
    "CatalogStore",
    "ContentUnit",
    "Database",
    "DuplicateProgressRecordError",
    "ProgressRecord",
    "ProgressRecordNotFoundError",
    "ProgressStore",
    "ProgressUpdate",
    "RepairPendingError",
    "StoreUnavailableError",
    "Tombstone",
]
