"""Build the stores and the engine from configuration.

The CLI and the web app both get their handles here; nothing else
constructs a Database.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from curriculum.config.app_config import AppConfig, load_app_config
from curriculum.core.consistency_engine import ConsistencyEngine
from curriculum.db.catalog_repository import CatalogStore
from curriculum.db.database import Database
from curriculum.db.progress_repository import ProgressStore


@dataclass
class Services:
    """Store handles scoped to one caller (a CLI run, a web app)."""

    db: Database
    catalog: CatalogStore
    progress: ProgressStore
    engine: ConsistencyEngine


def build_services(
    config: AppConfig | None = None,
    db_path: Path | None = None,
) -> Services:
    """Open the database (creating the schema) and wire the stores."""
    if config is None:
        config = load_app_config()

    db = Database(
        db_path or config.store.resolved_db_path(),
        timeout_seconds=config.store.timeout_seconds,
    )
    db.init_schema()

    catalog = CatalogStore(db)
    progress = ProgressStore(db, max_batch_size=config.store.max_batch_size)
    engine = ConsistencyEngine(
        catalog,
        progress,
        max_retries=config.engine.max_retries,
        backoff_seconds=config.engine.backoff_seconds,
    )
    return Services(db=db, catalog=catalog, progress=progress, engine=engine)
