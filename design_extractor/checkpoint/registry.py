"""Backend selection for checkpoint storage."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from ..errors import ConfigurationError
from ..extractor_logging import LogCategory, get_category_logger
from .base import CheckpointStore
from .filesystem import FilesystemCheckpointStore

if TYPE_CHECKING:
    from ..config.models import ExtractorConfig
    from ..database.connection import Database

logger = get_category_logger(LogCategory.STORAGE)


def _create_filesystem_store(
    config: ExtractorConfig, database: Database | None
) -> CheckpointStore:
    return FilesystemCheckpointStore(config.checkpoint_dir)


def _create_database_store(
    config: ExtractorConfig, database: Database | None
) -> CheckpointStore:
    from ..database import Database, DatabaseCheckpointStore, DatabaseConfig

    owns_database = database is None
    if database is None:
        db_config = DatabaseConfig.from_settings(config.database)
        problems = db_config.validate()
        if problems:
            raise ConfigurationError(
                f"Invalid database configuration: {'; '.join(problems)}",
                suggestion="Set DESIGN_EXTRACTOR_DATABASE_URL to a SQLAlchemy URL",
            )
        database = Database(db_config)
    database.connect()
    return DatabaseCheckpointStore(database, owns_database=owns_database)


BACKENDS: dict[str, Callable[[ExtractorConfig, Database | None], CheckpointStore]] = {
    "filesystem": _create_filesystem_store,
    "database": _create_database_store,
}


def create_checkpoint_store(
    config: ExtractorConfig,
    database: Database | None = None,
) -> CheckpointStore:
    """Create the checkpoint store named by ``config.checkpoint_backend``.

    Args:
        config: Extractor configuration.
        database: Connection to use for the database backend. When omitted,
            one is built from ``config.database`` and closed with the store.

    Returns:
        Configured checkpoint store.

    Raises:
        ConfigurationError: If the backend name is unknown or its settings are invalid.
    """
    backend = config.checkpoint_backend
    if backend not in BACKENDS:
        raise ConfigurationError(
            f"Unknown checkpoint backend: {backend}. Available: {sorted(BACKENDS)}"
        )
    logger.debug(f"Using {backend} checkpoint backend")
    return BACKENDS[backend](config, database)
