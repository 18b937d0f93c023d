"""Database connection lifecycle for the database checkpoint backend.

The ``Database`` object is constructed explicitly by the entry point and
injected into the blob store and checkpoint repository; there is no
module-level connection state.
"""

from __future__ import annotations

import os
import time
from collections.abc import Generator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import StoreIOError
from ..extractor_logging import LogCategory, get_category_logger
from .schema import Base

if TYPE_CHECKING:
    from ..config.models import DatabaseSettings

logger = get_category_logger(LogCategory.STORAGE)

DEFAULT_DATABASE_URL = "sqlite:///design-extractor.db"


@dataclass
class DatabaseConfig:
    """Connection parameters for the checkpoint database."""

    url: str = DEFAULT_DATABASE_URL
    pool_size: int = 5
    max_overflow: int = 10
    connect_timeout: int = 10  # seconds
    echo: bool = False

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> DatabaseConfig:
        """Create from the pydantic settings block."""
        return cls(
            url=settings.url,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            connect_timeout=settings.connect_timeout,
            echo=settings.echo,
        )

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> DatabaseConfig:
        """Create from environment variables.

        Unparseable or non-positive pool and timeout values fall back to
        their defaults.
        """
        resolved = os.environ if env is None else env
        config = cls(url=resolved.get("DESIGN_EXTRACTOR_DATABASE_URL") or DEFAULT_DATABASE_URL)

        for env_name, attr, minimum in (
            ("DESIGN_EXTRACTOR_DB_POOL_SIZE", "pool_size", 1),
            ("DESIGN_EXTRACTOR_DB_MAX_OVERFLOW", "max_overflow", 0),
            ("DESIGN_EXTRACTOR_DB_CONNECT_TIMEOUT", "connect_timeout", 1),
        ):
            raw = resolved.get(env_name)
            if not raw:
                continue
            try:
                value = int(raw)
            except ValueError:
                logger.warning(f"Ignoring non-integer {env_name}={raw!r}")
                continue
            if value >= minimum:
                setattr(config, attr, value)
        return config

    def validate(self) -> list[str]:
        """Return a list of configuration problems, empty when valid."""
        errors = []
        if not self.url:
            errors.append("Database URL is required")
        elif "://" not in self.url:
            errors.append("Database URL must include a scheme, e.g. sqlite:///path.db")
        if self.pool_size < 1:
            errors.append("pool_size must be at least 1")
        if self.max_overflow < 0:
            errors.append("max_overflow must be at least 0")
        if self.connect_timeout < 1:
            errors.append("connect_timeout must be at least 1")
        return errors

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


@dataclass
class HealthCheckResult:
    """Outcome of a database round trip."""

    healthy: bool
    latency_ms: float
    error: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "status": "healthy" if self.healthy else "unhealthy",
            "latencyMs": self.latency_ms,
            "error": self.error,
        }


class Database:
    """Explicitly managed database connection.

    Example:
        >>> database = Database(DatabaseConfig(url="sqlite:///checkpoints.db"))
        >>> database.connect()
        >>> with database.session() as session:
        ...     session.execute(text("SELECT 1"))
        >>> database.disconnect()
    """

    def __init__(self, config: DatabaseConfig | None = None):
        self.config = config or DatabaseConfig()
        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise StoreIOError("Database not connected. Call connect() first.")
        return self._engine

    def connect(self) -> None:
        """Create the engine and ensure the schema exists; idempotent."""
        if self._engine is not None:
            return

        if self.config.is_sqlite:
            # Sessions are used from worker threads via asyncio.to_thread
            engine = create_engine(
                self.config.url,
                echo=self.config.echo,
                connect_args={
                    "check_same_thread": False,
                    "timeout": self.config.connect_timeout,
                },
            )
        else:
            engine = create_engine(
                self.config.url,
                echo=self.config.echo,
                pool_size=self.config.pool_size,
                max_overflow=self.config.max_overflow,
                pool_pre_ping=True,
                connect_args={"connect_timeout": self.config.connect_timeout},
            )

        try:
            Base.metadata.create_all(engine)
        except SQLAlchemyError as e:
            engine.dispose()
            raise StoreIOError(f"Failed to connect to database: {e}") from e

        self._engine = engine
        self._session_factory = sessionmaker(
            bind=engine, expire_on_commit=False, class_=Session
        )
        logger.debug(f"Connected to database {engine.url.render_as_string(hide_password=True)}")

    def disconnect(self) -> None:
        """Dispose of the engine and its pooled connections."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.debug("Disconnected from database")

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Provide a transactional scope around a series of operations.

        Raises:
            StoreIOError: If the database is not connected or any statement fails.
        """
        if self._session_factory is None:
            raise StoreIOError("Database not connected. Call connect() first.")

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreIOError(f"Database operation failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def health_check(self) -> HealthCheckResult:
        """Run a trivial query and report latency."""
        start = time.perf_counter()
        try:
            self.connect()
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, StoreIOError) as e:
            return HealthCheckResult(
                healthy=False,
                latency_ms=(time.perf_counter() - start) * 1000,
                error=str(e),
            )
        return HealthCheckResult(
            healthy=True, latency_ms=(time.perf_counter() - start) * 1000
        )

    def __enter__(self) -> Database:
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()
