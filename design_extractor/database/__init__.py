"""Database checkpoint backend: connection, schema, blob store and repository."""

from .blob_store import BlobMetadata, BlobStore, detect_content_type
from .connection import Database, DatabaseConfig, HealthCheckResult
from .schema import Base, BlobContent, BlobRecord, CheckpointRecord
from .store import DatabaseCheckpointStore, referenced_blob_ids

__all__ = [
    "Base",
    "BlobContent",
    "BlobMetadata",
    "BlobRecord",
    "BlobStore",
    "CheckpointRecord",
    "Database",
    "DatabaseCheckpointStore",
    "DatabaseConfig",
    "HealthCheckResult",
    "detect_content_type",
    "referenced_blob_ids",
]
