"""Content-addressed blob storage for checkpoint images.

Payloads live once per SHA-256 digest in ``blob_contents``; every upload adds
a ``blobs`` row referencing that digest. Content is removed when its last
reference is deleted.
"""

from __future__ import annotations

import asyncio
import hashlib
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import PurePath

from sqlalchemy import delete, insert, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import StoreIOError
from ..extractor_logging import LogCategory, get_category_logger
from .connection import Database
from .schema import BlobContent, BlobRecord

logger = get_category_logger(LogCategory.STORAGE)

CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".json": "application/json",
}


def detect_content_type(filename: str) -> str:
    """Map a filename extension to a MIME type."""
    return CONTENT_TYPES.get(PurePath(filename).suffix.lower(), "application/octet-stream")


@dataclass
class BlobMetadata:
    """Metadata attached to a stored blob reference."""

    id: str
    sha256: str
    checkpoint_id: str
    kind: str
    filename: str
    content_type: str
    size: int
    uploaded_at: datetime

    @classmethod
    def from_record(cls, record: BlobRecord) -> BlobMetadata:
        return cls(
            id=record.id,
            sha256=record.sha256,
            checkpoint_id=record.checkpoint_id,
            kind=record.kind,
            filename=record.filename,
            content_type=record.content_type,
            size=record.size,
            uploaded_at=record.uploaded_at,
        )


class BlobStore:
    """Upload, download and delete binary payloads by blob id."""

    def __init__(self, database: Database):
        self.database = database

    # Sync implementations, run through asyncio.to_thread

    def _insert_content(self, session: Session, digest: str, data: bytes) -> None:
        """Insert a content row unless one with the same digest already exists.

        Concurrent uploads of identical bytes race on the primary key; the
        losing insert becomes a no-op instead of an IntegrityError.
        """
        values = {"sha256": digest, "data": data, "size": len(data)}
        dialect = session.get_bind().dialect.name
        if dialect in ("sqlite", "postgresql"):
            upsert = sqlite_insert if dialect == "sqlite" else postgresql_insert
            session.execute(
                upsert(BlobContent).values(**values).on_conflict_do_nothing(
                    index_elements=[BlobContent.sha256]
                )
            )
            return

        try:
            with session.begin_nested():
                session.execute(insert(BlobContent).values(**values))
        except IntegrityError:
            logger.debug(f"Blob content {digest[:12]} inserted concurrently, reusing it")

    def _ensure_content(self, session: Session, digest: str, data: bytes) -> None:
        """Make sure the content row exists and hold it for this transaction."""
        for _ in range(2):
            self._insert_content(session, digest, data)
            held = session.scalar(
                select(BlobContent.sha256)
                .where(BlobContent.sha256 == digest)
                .with_for_update(key_share=True)
            )
            if held is not None:
                return
            # Collected by a concurrent delete between insert and lock
        raise StoreIOError(f"Blob content {digest} disappeared during upload")

    def _upload_sync(self, data: bytes, filename: str, checkpoint_id: str, kind: str) -> BlobMetadata:
        digest = hashlib.sha256(data).hexdigest()
        with self.database.session() as session:
            self._ensure_content(session, digest, data)
            record = BlobRecord(
                id=uuid.uuid4().hex,
                sha256=digest,
                checkpoint_id=checkpoint_id,
                kind=kind,
                filename=filename,
                content_type=detect_content_type(filename),
                size=len(data),
                uploaded_at=datetime.now(UTC),
            )
            session.add(record)
            session.flush()
            metadata = BlobMetadata.from_record(record)
        logger.debug(f"Uploaded blob {metadata.id} ({kind}, {len(data)} bytes) for {checkpoint_id}")
        return metadata

    def _download_sync(self, blob_id: str) -> bytes | None:
        with self.database.session() as session:
            record = session.get(BlobRecord, blob_id)
            if record is None:
                return None
            content = session.get(BlobContent, record.sha256)
            if content is None:
                return None
            data = bytes(content.data)

        if hashlib.sha256(data).hexdigest() != record.sha256:
            raise StoreIOError(
                f"Blob {blob_id} is corrupted: digest mismatch",
                checkpoint_id=record.checkpoint_id,
            )
        return data

    def _collect_garbage(self, session: Session, digests: set[str]) -> None:
        """Remove content rows that no longer have any reference.

        The reference check and the delete run as one statement; uploads
        lock the content row they reference, so a concurrent upload either
        keeps the row alive or re-inserts it.
        """
        if not digests:
            return
        session.flush()
        still_referenced = (
            select(BlobRecord.id)
            .where(BlobRecord.sha256 == BlobContent.sha256)
            .correlate(BlobContent)
            .exists()
        )
        statement = delete(BlobContent).where(
            BlobContent.sha256.in_(digests), ~still_referenced
        )
        session.execute(statement.execution_options(synchronize_session=False))

    def _delete_many_sync(self, blob_ids: list[str]) -> int:
        if not blob_ids:
            return 0
        with self.database.session() as session:
            records = session.scalars(
                select(BlobRecord).where(BlobRecord.id.in_(blob_ids))
            ).all()
            digests = {r.sha256 for r in records}
            for record in records:
                session.delete(record)
            self._collect_garbage(session, digests)
            return len(records)

    def _get_metadata_sync(self, blob_id: str) -> BlobMetadata | None:
        with self.database.session() as session:
            record = session.get(BlobRecord, blob_id)
            return BlobMetadata.from_record(record) if record else None

    def _list_by_checkpoint_sync(self, checkpoint_id: str) -> list[BlobMetadata]:
        with self.database.session() as session:
            records = session.scalars(
                select(BlobRecord)
                .where(BlobRecord.checkpoint_id == checkpoint_id)
                .order_by(BlobRecord.uploaded_at)
            ).all()
            return [BlobMetadata.from_record(r) for r in records]

    def _delete_by_checkpoint_sync(self, checkpoint_id: str) -> int:
        with self.database.session() as session:
            records = session.scalars(
                select(BlobRecord).where(BlobRecord.checkpoint_id == checkpoint_id)
            ).all()
            digests = {r.sha256 for r in records}
            for record in records:
                session.delete(record)
            self._collect_garbage(session, digests)
            return len(records)

    # Async interface

    async def upload(
        self,
        data: bytes,
        filename: str,
        checkpoint_id: str,
        kind: str,
    ) -> BlobMetadata:
        """Store a payload and return the new reference's metadata.

        Args:
            data: Raw bytes to store.
            filename: Original filename, used for content type detection.
            checkpoint_id: Owning checkpoint.
            kind: Role of the blob ("viewport", "fullPage", "comparison").

        Returns:
            Metadata of the created blob reference.
        """
        return await asyncio.to_thread(self._upload_sync, data, filename, checkpoint_id, kind)

    async def download(self, blob_id: str) -> bytes | None:
        """Fetch a payload, or None when the blob does not exist.

        Raises:
            StoreIOError: If the stored bytes no longer match their digest.
        """
        return await asyncio.to_thread(self._download_sync, blob_id)

    async def delete(self, blob_id: str) -> bool:
        """Delete one blob reference; returns False when it did not exist."""
        return await asyncio.to_thread(self._delete_many_sync, [blob_id]) > 0

    async def delete_many(self, blob_ids: list[str]) -> int:
        return await asyncio.to_thread(self._delete_many_sync, list(blob_ids))

    async def get_metadata(self, blob_id: str) -> BlobMetadata | None:
        return await asyncio.to_thread(self._get_metadata_sync, blob_id)

    async def exists(self, blob_id: str) -> bool:
        return await self.get_metadata(blob_id) is not None

    async def list_by_checkpoint(self, checkpoint_id: str) -> list[BlobMetadata]:
        return await asyncio.to_thread(self._list_by_checkpoint_sync, checkpoint_id)

    async def delete_by_checkpoint(self, checkpoint_id: str) -> int:
        """Delete every blob owned by a checkpoint; returns how many were removed."""
        count = await asyncio.to_thread(self._delete_by_checkpoint_sync, checkpoint_id)
        if count:
            logger.debug(f"Deleted {count} blobs for {checkpoint_id}")
        return count
