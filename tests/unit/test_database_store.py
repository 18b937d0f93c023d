"""Tests for the SQLAlchemy checkpoint backend, blob store and connection."""

import asyncio

import pytest
from sqlalchemy import func, select

from design_extractor.checkpoint import ExtractionCheckpoint, Screenshots
from design_extractor.database import (
    BlobContent,
    BlobRecord,
    BlobStore,
    CheckpointRecord,
    Database,
    DatabaseCheckpointStore,
    DatabaseConfig,
    detect_content_type,
    referenced_blob_ids,
)
from design_extractor.errors import StoreIOError
from tests.helpers import make_png


def _count(database: Database, model) -> int:
    with database.session() as session:
        return session.scalar(select(func.count()).select_from(model))


# ==============================================================================
# Blob store
# ==============================================================================


class TestBlobStore:
    """Content-addressed blob storage."""

    @pytest.mark.asyncio
    async def test_upload_and_download(self, database):
        blobs = BlobStore(database)
        data = make_png(color=(12, 34, 56))

        metadata = await blobs.upload(data, "viewport.png", "ck", "viewport")

        assert metadata.size == len(data)
        assert metadata.content_type == "image/png"
        assert metadata.checkpoint_id == "ck"
        assert await blobs.download(metadata.id) == data

    @pytest.mark.asyncio
    async def test_download_missing_returns_none(self, database):
        assert await BlobStore(database).download("nope") is None

    @pytest.mark.asyncio
    async def test_identical_content_is_stored_once(self, database):
        blobs = BlobStore(database)
        data = make_png(color=(1, 1, 1))

        first = await blobs.upload(data, "a.png", "ck-1", "viewport")
        second = await blobs.upload(data, "b.png", "ck-2", "viewport")

        assert first.id != second.id
        assert first.sha256 == second.sha256
        assert _count(database, BlobContent) == 1
        assert _count(database, BlobRecord) == 2

    @pytest.mark.asyncio
    async def test_upload_reuses_content_written_by_another_writer(self, database):
        blobs = BlobStore(database)
        data = b"same-bytes"
        first = await blobs.upload(data, "a.png", "ck-1", "viewport")
        with database.session() as session:
            session.delete(session.get(BlobRecord, first.id))

        # Content row is still present without any reference
        second = await blobs.upload(data, "b.png", "ck-2", "viewport")

        assert second.sha256 == first.sha256
        assert await blobs.download(second.id) == data
        assert _count(database, BlobContent) == 1

    @pytest.mark.asyncio
    async def test_concurrent_identical_uploads(self, database):
        blobs = BlobStore(database)
        data = make_png(color=(9, 9, 9))

        uploads = await asyncio.gather(
            *(blobs.upload(data, f"{i}.png", f"ck-{i}", "viewport") for i in range(8))
        )

        assert len({metadata.id for metadata in uploads}) == 8
        assert {metadata.sha256 for metadata in uploads} == {uploads[0].sha256}
        assert _count(database, BlobContent) == 1
        assert _count(database, BlobRecord) == 8

    @pytest.mark.asyncio
    async def test_shared_content_survives_until_last_reference(self, database):
        blobs = BlobStore(database)
        data = make_png(color=(2, 2, 2))
        first = await blobs.upload(data, "a.png", "ck-1", "viewport")
        second = await blobs.upload(data, "b.png", "ck-2", "viewport")

        assert await blobs.delete(first.id)
        assert await blobs.download(second.id) == data
        assert _count(database, BlobContent) == 1

        assert await blobs.delete(second.id)
        assert _count(database, BlobContent) == 0

    @pytest.mark.asyncio
    async def test_delete_missing_returns_false(self, database):
        assert not await BlobStore(database).delete("missing")

    @pytest.mark.asyncio
    async def test_list_and_delete_by_checkpoint(self, database):
        blobs = BlobStore(database)
        await blobs.upload(make_png(color=(3, 3, 3)), "a.png", "ck", "viewport")
        await blobs.upload(make_png(color=(4, 4, 4)), "b.png", "ck", "fullPage")
        await blobs.upload(make_png(color=(5, 5, 5)), "c.png", "other", "viewport")

        assert len(await blobs.list_by_checkpoint("ck")) == 2
        assert await blobs.delete_by_checkpoint("ck") == 2
        assert await blobs.list_by_checkpoint("ck") == []
        assert len(await blobs.list_by_checkpoint("other")) == 1

    @pytest.mark.asyncio
    async def test_corrupted_content_raises(self, database):
        blobs = BlobStore(database)
        metadata = await blobs.upload(make_png(), "v.png", "ck", "viewport")
        with database.session() as session:
            content = session.get(BlobContent, metadata.sha256)
            content.data = b"tampered"

        with pytest.raises(StoreIOError, match="corrupted"):
            await blobs.download(metadata.id)

    @pytest.mark.asyncio
    async def test_metadata_and_exists(self, database):
        blobs = BlobStore(database)
        metadata = await blobs.upload(b"{}", "tokens.json", "ck", "tokens")

        assert await blobs.exists(metadata.id)
        fetched = await blobs.get_metadata(metadata.id)
        assert fetched.content_type == "application/json"
        assert not await blobs.exists("unknown")

    def test_detect_content_type(self):
        assert detect_content_type("shot.PNG") == "image/png"
        assert detect_content_type("archive.bin") == "application/octet-stream"


# ==============================================================================
# Checkpoint repository
# ==============================================================================


class TestDatabaseCheckpointStore:
    """Behaviour specific to the database backend."""

    @pytest.mark.asyncio
    async def test_update_leaves_no_orphaned_blobs(self, database_store, database):
        checkpoint = ExtractionCheckpoint(
            id="supersede",
            url="https://example.com",
            screenshots=Screenshots(
                viewport=make_png(color=(1, 0, 0)), full_page=make_png(color=(0, 1, 0))
            ),
        )
        await database_store.save(checkpoint)

        for shade in range(3):
            await database_store.update(
                "supersede",
                screenshots=Screenshots(
                    viewport=make_png(color=(shade, 10, 10)),
                    full_page=make_png(color=(shade, 20, 20)),
                ),
            )

        with database.session() as session:
            document = session.get(CheckpointRecord, "supersede").document
        assert _count(database, BlobRecord) == 2
        assert {b.id for b in await database_store.blob_store.list_by_checkpoint("supersede")} == (
            referenced_blob_ids(document)
        )

    @pytest.mark.asyncio
    async def test_scalar_update_keeps_blob_references(self, database_store, sample_checkpoint):
        await database_store.save(sample_checkpoint)
        before = await database_store.blob_store.list_by_checkpoint(sample_checkpoint.id)

        await database_store.update(sample_checkpoint.id, progress=95)

        after = await database_store.blob_store.list_by_checkpoint(sample_checkpoint.id)
        assert {b.id for b in before} == {b.id for b in after}

    @pytest.mark.asyncio
    async def test_delete_removes_all_rows(self, database_store, database, sample_checkpoint):
        await database_store.save(sample_checkpoint)

        await database_store.delete(sample_checkpoint.id)

        assert _count(database, BlobRecord) == 0
        assert _count(database, BlobContent) == 0

    @pytest.mark.asyncio
    async def test_missing_blob_leaves_field_unset(self, database_store, database):
        checkpoint = ExtractionCheckpoint(
            id="lost-blob",
            url="https://example.com",
            screenshots=Screenshots(viewport=make_png(), full_page=make_png(height=40)),
        )
        await database_store.save(checkpoint)
        await database_store.blob_store.delete_by_checkpoint("lost-blob")

        loaded = await database_store.load("lost-blob")

        assert loaded is not None
        assert loaded.screenshots is None

    @pytest.mark.asyncio
    async def test_close_respects_ownership(self, database):
        await DatabaseCheckpointStore(database).close()
        assert database.is_connected

        await DatabaseCheckpointStore(database, owns_database=True).close()
        assert not database.is_connected

    def test_referenced_blob_ids(self):
        document = {
            "screenshots": {"viewport": "v", "fullPage": "f"},
            "comparisons": [
                {"originalScreenshot": "o", "generatedScreenshot": "g", "diffImage": "d"},
                {"originalScreenshot": "o2", "generatedScreenshot": "g2"},
            ],
        }

        assert referenced_blob_ids(document) == {"v", "f", "o", "g", "d", "o2", "g2"}
        assert referenced_blob_ids(None) == set()
        assert referenced_blob_ids({"screenshots": None, "comparisons": None}) == set()


# ==============================================================================
# Connection
# ==============================================================================


class TestDatabaseConnection:
    """Connection lifecycle and configuration."""

    def test_session_requires_connect(self, tmp_path):
        db = Database(DatabaseConfig(url=f"sqlite:///{tmp_path / 'x.db'}"))

        with pytest.raises(StoreIOError, match="not connected"):
            with db.session():
                pass

    def test_context_manager_connects_and_disconnects(self, tmp_path):
        db = Database(DatabaseConfig(url=f"sqlite:///{tmp_path / 'ctx.db'}"))

        with db as connected:
            assert connected.is_connected
        assert not db.is_connected

    def test_health_check(self, database):
        result = database.health_check()

        assert result.healthy
        assert result.to_dict()["status"] == "healthy"

    def test_from_env_reads_values(self):
        config = DatabaseConfig.from_env(
            {
                "DESIGN_EXTRACTOR_DATABASE_URL": "postgresql://u:p@db/extract",
                "DESIGN_EXTRACTOR_DB_POOL_SIZE": "12",
                "DESIGN_EXTRACTOR_DB_MAX_OVERFLOW": "not-a-number",
            }
        )

        assert config.url == "postgresql://u:p@db/extract"
        assert config.pool_size == 12
        assert config.max_overflow == 10
        assert not config.is_sqlite

    def test_validate_reports_problems(self):
        assert DatabaseConfig().validate() == []
        assert DatabaseConfig(url="").validate()
        assert DatabaseConfig(pool_size=0).validate()
