"""Checkpoint model and persistence backends."""

from .base import CheckpointStore, merge_checkpoint, validate_update_fields
from .filesystem import FilesystemCheckpointStore, validate_checkpoint_id
from .registry import create_checkpoint_store
from .types import (
    UPDATABLE_FIELDS,
    BoundingBox,
    ComponentComparison,
    ComponentIdentification,
    ExtractionCheckpoint,
    ExtractionStatus,
    Screenshots,
    utc_now,
)

__all__ = [
    "UPDATABLE_FIELDS",
    "BoundingBox",
    "CheckpointStore",
    "ComponentComparison",
    "ComponentIdentification",
    "ExtractionCheckpoint",
    "ExtractionStatus",
    "FilesystemCheckpointStore",
    "Screenshots",
    "create_checkpoint_store",
    "merge_checkpoint",
    "utc_now",
    "validate_checkpoint_id",
    "validate_update_fields",
]
