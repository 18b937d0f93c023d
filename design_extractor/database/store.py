"""Database checkpoint backend.

Metadata lives in the ``checkpoints`` table as one JSON document per id;
screenshots and comparison images live in the blob store and are referenced
from the document by blob id.
"""

from __future__ import annotations

import asyncio
from datetime import UTC
from typing import Any

from sqlalchemy import delete, select

from ..checkpoint.base import CheckpointStore, merge_checkpoint, validate_update_fields
from ..checkpoint.types import (
    ComponentComparison,
    ExtractionCheckpoint,
    ExtractionStatus,
    Screenshots,
)
from ..errors import CheckpointNotFoundError
from ..extractor_logging import LogCategory, get_category_logger
from .blob_store import BlobStore
from .connection import Database
from .schema import CheckpointRecord

logger = get_category_logger(LogCategory.STORAGE)

_COMPARISON_BLOB_KEYS = ("originalScreenshot", "generatedScreenshot", "diffImage")


def referenced_blob_ids(document: dict[str, Any] | None) -> set[str]:
    """Collect every blob id a metadata document points at."""
    if not document:
        return set()
    ids: set[str] = set()
    screenshots = document.get("screenshots") or {}
    ids.update(v for v in screenshots.values() if v)
    for entry in document.get("comparisons") or []:
        ids.update(entry[key] for key in _COMPARISON_BLOB_KEYS if entry.get(key))
    return ids


class DatabaseCheckpointStore(CheckpointStore):
    """Checkpoint repository backed by SQLAlchemy plus a content-addressed blob store.

    Args:
        database: Connected ``Database`` owned by the caller.
        blob_store: Blob store sharing the same database; created when omitted.
        owns_database: Disconnect the database on ``close``.
    """

    def __init__(
        self,
        database: Database,
        blob_store: BlobStore | None = None,
        owns_database: bool = False,
    ):
        self.database = database
        self.blob_store = blob_store or BlobStore(database)
        self.owns_database = owns_database

    async def close(self) -> None:
        if self.owns_database:
            await asyncio.to_thread(self.database.disconnect)

    # Blob upload helpers

    async def _upload_screenshots(
        self, checkpoint_id: str, screenshots: Screenshots | None
    ) -> dict[str, str] | None:
        if screenshots is None:
            return None
        viewport = await self.blob_store.upload(
            screenshots.viewport, "viewport.png", checkpoint_id, "viewport"
        )
        full_page = await self.blob_store.upload(
            screenshots.full_page, "fullpage.png", checkpoint_id, "fullPage"
        )
        return {"viewport": viewport.id, "fullPage": full_page.id}

    async def _upload_comparisons(
        self, checkpoint_id: str, comparisons: list[ComponentComparison] | None
    ) -> list[dict[str, Any]] | None:
        if comparisons is None:
            return None
        entries = []
        for i, comparison in enumerate(comparisons):
            entry = comparison.scores_to_dict()
            original = await self.blob_store.upload(
                comparison.original_screenshot,
                f"comparison_{i}_original.png",
                checkpoint_id,
                "comparison",
            )
            generated = await self.blob_store.upload(
                comparison.generated_screenshot,
                f"comparison_{i}_generated.png",
                checkpoint_id,
                "comparison",
            )
            entry["originalScreenshot"] = original.id
            entry["generatedScreenshot"] = generated.id
            if comparison.diff_image is not None:
                diff = await self.blob_store.upload(
                    comparison.diff_image,
                    f"comparison_{i}_diff.png",
                    checkpoint_id,
                    "comparison",
                )
                entry["diffImage"] = diff.id
            entries.append(entry)
        return entries

    # Metadata rows

    def _read_document_sync(self, checkpoint_id: str) -> dict[str, Any] | None:
        with self.database.session() as session:
            record = session.get(CheckpointRecord, checkpoint_id)
            return dict(record.document) if record else None

    def _write_document_sync(self, checkpoint: ExtractionCheckpoint, document: dict[str, Any]) -> None:
        with self.database.session() as session:
            record = session.get(CheckpointRecord, checkpoint.id)
            if record is None:
                record = CheckpointRecord(id=checkpoint.id)
                session.add(record)
            record.url = checkpoint.url
            record.status = checkpoint.status.value
            record.progress = checkpoint.progress
            record.started_at = checkpoint.started_at.astimezone(UTC)
            record.updated_at = checkpoint.updated_at.astimezone(UTC)
            record.document = document

    def _delete_document_sync(self, checkpoint_id: str) -> bool:
        with self.database.session() as session:
            result = session.execute(
                delete(CheckpointRecord).where(CheckpointRecord.id == checkpoint_id)
            )
            return result.rowcount > 0

    def _select_ids_sync(self, status: str | None = None, limit: int | None = None) -> list[str]:
        query = select(CheckpointRecord.id)
        if status is not None:
            query = query.where(CheckpointRecord.status == status)
        if limit is not None:
            query = query.order_by(CheckpointRecord.started_at.desc()).limit(limit)
        else:
            query = query.order_by(CheckpointRecord.id)
        with self.database.session() as session:
            return list(session.scalars(query).all())

    async def _remove_superseded(self, checkpoint_id: str, blob_ids: set[str]) -> None:
        if blob_ids:
            removed = await self.blob_store.delete_many(sorted(blob_ids))
            logger.debug(f"Removed {removed} superseded blobs for {checkpoint_id}")

    # Rehydration

    async def _download(self, checkpoint_id: str, blob_id: str | None) -> bytes | None:
        if not blob_id:
            return None
        data = await self.blob_store.download(blob_id)
        if data is None:
            logger.warning(f"Blob {blob_id} referenced by {checkpoint_id} is missing")
        return data

    async def _rehydrate(self, document: dict[str, Any]) -> ExtractionCheckpoint:
        checkpoint = ExtractionCheckpoint.from_dict(document)

        refs = document.get("screenshots")
        if refs:
            viewport = await self._download(checkpoint.id, refs.get("viewport"))
            full_page = await self._download(checkpoint.id, refs.get("fullPage"))
            if viewport is not None and full_page is not None:
                checkpoint.screenshots = Screenshots(viewport=viewport, full_page=full_page)

        entries = document.get("comparisons")
        if entries is not None:
            comparisons = []
            for entry in entries:
                original = await self._download(checkpoint.id, entry.get("originalScreenshot"))
                generated = await self._download(checkpoint.id, entry.get("generatedScreenshot"))
                if original is None or generated is None:
                    continue
                comparisons.append(
                    ComponentComparison(
                        component_id=entry["componentId"],
                        original_screenshot=original,
                        generated_screenshot=generated,
                        ssim_score=entry["ssimScore"],
                        color_score=entry["colorScore"],
                        combined_score=entry["combinedScore"],
                        passed=entry["passed"],
                        diff_image=await self._download(checkpoint.id, entry.get("diffImage")),
                    )
                )
            checkpoint.comparisons = comparisons
        return checkpoint

    # CheckpointStore interface

    async def save(self, checkpoint: ExtractionCheckpoint) -> None:
        document = checkpoint.to_dict()
        # Blobs are committed before the metadata that references them
        document["screenshots"] = await self._upload_screenshots(checkpoint.id, checkpoint.screenshots)
        document["comparisons"] = await self._upload_comparisons(checkpoint.id, checkpoint.comparisons)
        await asyncio.to_thread(self._write_document_sync, checkpoint, document)

        owned = {blob.id for blob in await self.blob_store.list_by_checkpoint(checkpoint.id)}
        await self._remove_superseded(checkpoint.id, owned - referenced_blob_ids(document))

    async def load(self, checkpoint_id: str) -> ExtractionCheckpoint | None:
        document = await asyncio.to_thread(self._read_document_sync, checkpoint_id)
        if document is None:
            return None
        return await self._rehydrate(document)

    async def update(self, checkpoint_id: str, **fields: Any) -> None:
        validate_update_fields(fields)
        previous = await asyncio.to_thread(self._read_document_sync, checkpoint_id)
        if previous is None:
            raise CheckpointNotFoundError(checkpoint_id)

        merged = merge_checkpoint(ExtractionCheckpoint.from_dict(previous), fields)
        document = merged.to_dict()
        if "screenshots" in fields:
            document["screenshots"] = await self._upload_screenshots(checkpoint_id, merged.screenshots)
        else:
            document["screenshots"] = previous.get("screenshots")
        if "comparisons" in fields:
            document["comparisons"] = await self._upload_comparisons(checkpoint_id, merged.comparisons)
        else:
            document["comparisons"] = previous.get("comparisons")

        await asyncio.to_thread(self._write_document_sync, merged, document)
        await self._remove_superseded(
            checkpoint_id,
            referenced_blob_ids(previous) - referenced_blob_ids(document),
        )

    async def list(self) -> list[str]:
        return await asyncio.to_thread(self._select_ids_sync)

    async def delete(self, checkpoint_id: str) -> None:
        deleted = await asyncio.to_thread(self._delete_document_sync, checkpoint_id)
        blob_count = await self.blob_store.delete_by_checkpoint(checkpoint_id)
        if deleted or blob_count:
            logger.debug(f"Deleted checkpoint {checkpoint_id} and {blob_count} blobs")

    async def exists(self, checkpoint_id: str) -> bool:
        return await asyncio.to_thread(self._read_document_sync, checkpoint_id) is not None

    async def list_by_status(self, status: ExtractionStatus) -> list[ExtractionCheckpoint]:
        ids = await asyncio.to_thread(self._select_ids_sync, ExtractionStatus(status).value)
        return await self._load_many(ids)

    async def list_recent(self, limit: int = 10) -> list[ExtractionCheckpoint]:
        ids = await asyncio.to_thread(self._select_ids_sync, None, limit)
        return await self._load_many(ids)

    async def _load_many(self, ids: list[str]) -> list[ExtractionCheckpoint]:
        checkpoints = []
        for checkpoint_id in ids:
            checkpoint = await self.load(checkpoint_id)
            if checkpoint is not None:
                checkpoints.append(checkpoint)
        return checkpoints
