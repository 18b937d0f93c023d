"""Base interface for checkpoint persistence backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any

from .types import UPDATABLE_FIELDS, ExtractionCheckpoint, ExtractionStatus, utc_now


def validate_update_fields(fields: dict[str, Any]) -> None:
    """Reject field names that ``update`` does not accept.

    Raises:
        ValueError: If any key is not an updatable checkpoint field.
    """
    unknown = sorted(set(fields) - UPDATABLE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown checkpoint fields: {', '.join(unknown)}")


def merge_checkpoint(
    checkpoint: ExtractionCheckpoint, fields: dict[str, Any]
) -> ExtractionCheckpoint:
    """Return a copy of ``checkpoint`` with ``fields`` applied and a fresh ``updated_at``."""
    validate_update_fields(fields)
    if "status" in fields:
        fields = {**fields, "status": ExtractionStatus(fields["status"])}
    merged = replace(checkpoint, **fields)
    merged.updated_at = max(utc_now(), checkpoint.updated_at)
    return merged


class CheckpointStore(ABC):
    """Abstract base class for checkpoint storage backends.

    Every backend persists blobs before the metadata that references them,
    so a concurrent ``load`` never sees a reference to a missing blob.
    """

    @abstractmethod
    async def save(self, checkpoint: ExtractionCheckpoint) -> None:
        """Insert or replace a checkpoint, blobs included."""
        pass

    @abstractmethod
    async def load(self, checkpoint_id: str) -> ExtractionCheckpoint | None:
        """Load a fully rehydrated checkpoint, or None when it does not exist."""
        pass

    @abstractmethod
    async def update(self, checkpoint_id: str, **fields: Any) -> None:
        """Merge fields into an existing checkpoint and refresh ``updated_at``.

        The update never creates a record.

        Raises:
            CheckpointNotFoundError: If the id does not exist.
            ValueError: If a field name is not updatable.
        """
        pass

    @abstractmethod
    async def list(self) -> list[str]:
        """List all known checkpoint ids."""
        pass

    @abstractmethod
    async def delete(self, checkpoint_id: str) -> None:
        """Remove a checkpoint and all its blobs; no-op when absent."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None

    async def exists(self, checkpoint_id: str) -> bool:
        """Check whether a checkpoint exists."""
        return checkpoint_id in await self.list()

    async def list_by_status(self, status: ExtractionStatus) -> list[ExtractionCheckpoint]:
        """Load every checkpoint currently in ``status``."""
        matches = []
        for checkpoint_id in await self.list():
            checkpoint = await self.load(checkpoint_id)
            if checkpoint is not None and checkpoint.status == status:
                matches.append(checkpoint)
        return matches

    async def list_recent(self, limit: int = 10) -> list[ExtractionCheckpoint]:
        """Load the ``limit`` most recently started checkpoints, newest first."""
        checkpoints = []
        for checkpoint_id in await self.list():
            checkpoint = await self.load(checkpoint_id)
            if checkpoint is not None:
                checkpoints.append(checkpoint)
        checkpoints.sort(key=lambda c: c.started_at, reverse=True)
        return checkpoints[:limit]
