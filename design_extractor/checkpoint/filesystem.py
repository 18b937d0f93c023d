"""Filesystem checkpoint backend.

Layout per checkpoint::

    <base_dir>/.checkpoints/<id>/metadata.json
    <base_dir>/.checkpoints/<id>/viewport.png
    <base_dir>/.checkpoints/<id>/fullpage.png
    <base_dir>/.checkpoints/<id>/comparison_<i>_original.png
    <base_dir>/.checkpoints/<id>/comparison_<i>_generated.png
    <base_dir>/.checkpoints/<id>/comparison_<i>_diff.png

Blob-reference fields in ``metadata.json`` hold the relative filenames above.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any

from ..errors import CheckpointNotFoundError, InvalidCheckpointIdError, StoreIOError
from ..extractor_logging import LogCategory, get_category_logger
from .base import CheckpointStore, merge_checkpoint, validate_update_fields
from .types import ComponentComparison, ExtractionCheckpoint, Screenshots

logger = get_category_logger(LogCategory.STORAGE)

CHECKPOINTS_DIRNAME = ".checkpoints"
METADATA_FILENAME = "metadata.json"
VIEWPORT_FILENAME = "viewport.png"
FULLPAGE_FILENAME = "fullpage.png"

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def validate_checkpoint_id(checkpoint_id: str) -> str:
    """Ensure an id is a single safe path segment.

    Raises:
        InvalidCheckpointIdError: If the id is empty or could escape the
            checkpoints directory.
    """
    if not isinstance(checkpoint_id, str) or not _SAFE_ID.match(checkpoint_id):
        raise InvalidCheckpointIdError(str(checkpoint_id))
    return checkpoint_id


def _atomic_write(path: Path, data: bytes) -> None:
    """Write bytes via temp file + rename so readers never see a partial file."""
    fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(temp_path, path)
    except BaseException:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


class FilesystemCheckpointStore(CheckpointStore):
    """Stores each checkpoint as a directory of JSON metadata plus PNG files.

    Example:
        >>> store = FilesystemCheckpointStore(Path("."))
        >>> await store.save(checkpoint)
        >>> loaded = await store.load(checkpoint.id)
    """

    def __init__(self, base_dir: Path | str):
        self.base_dir = Path(base_dir)
        self.root = self.base_dir / CHECKPOINTS_DIRNAME

    def _checkpoint_dir(self, checkpoint_id: str) -> Path:
        return self.root / validate_checkpoint_id(checkpoint_id)

    def _existing_dir(self, checkpoint_id: str) -> Path | None:
        """Directory for a lookup; None when the id cannot name a checkpoint."""
        try:
            return self._checkpoint_dir(checkpoint_id)
        except InvalidCheckpointIdError:
            logger.debug(f"Ignoring unsafe checkpoint id {checkpoint_id!r}")
            return None

    # Sync implementations, run through asyncio.to_thread

    def _save_sync(self, checkpoint: ExtractionCheckpoint) -> None:
        directory = self._checkpoint_dir(checkpoint.id)
        try:
            directory.mkdir(parents=True, exist_ok=True)
            document = checkpoint.to_dict()
            referenced = {METADATA_FILENAME}

            # Blobs first, metadata last
            if checkpoint.screenshots is not None:
                _atomic_write(directory / VIEWPORT_FILENAME, checkpoint.screenshots.viewport)
                _atomic_write(directory / FULLPAGE_FILENAME, checkpoint.screenshots.full_page)
                document["screenshots"] = {
                    "viewport": VIEWPORT_FILENAME,
                    "fullPage": FULLPAGE_FILENAME,
                }
                referenced.update({VIEWPORT_FILENAME, FULLPAGE_FILENAME})
            else:
                document["screenshots"] = None

            if checkpoint.comparisons is not None:
                entries = []
                for i, comparison in enumerate(checkpoint.comparisons):
                    entry = comparison.scores_to_dict()
                    files = {
                        "originalScreenshot": (
                            f"comparison_{i}_original.png",
                            comparison.original_screenshot,
                        ),
                        "generatedScreenshot": (
                            f"comparison_{i}_generated.png",
                            comparison.generated_screenshot,
                        ),
                    }
                    if comparison.diff_image is not None:
                        files["diffImage"] = (f"comparison_{i}_diff.png", comparison.diff_image)
                    for key, (filename, data) in files.items():
                        _atomic_write(directory / filename, data)
                        entry[key] = filename
                        referenced.add(filename)
                    entries.append(entry)
                document["comparisons"] = entries
            else:
                document["comparisons"] = None

            payload = json.dumps(document, indent=2).encode("utf-8")
            _atomic_write(directory / METADATA_FILENAME, payload)

            # Superseded blobs from an earlier, longer comparison list
            for path in directory.iterdir():
                if path.suffix == ".png" and path.name not in referenced:
                    path.unlink(missing_ok=True)
                    logger.debug(f"Removed stale blob {path.name} for {checkpoint.id}")
        except OSError as e:
            raise StoreIOError(
                f"Failed to save checkpoint {checkpoint.id}: {e}",
                checkpoint_id=checkpoint.id,
            ) from e

    def _read_blob(self, directory: Path, filename: str | None) -> bytes | None:
        if not filename:
            return None
        path = directory / Path(filename).name
        if not path.exists():
            logger.warning(f"Blob {filename} missing from {directory}")
            return None
        return path.read_bytes()

    def _load_sync(self, checkpoint_id: str) -> ExtractionCheckpoint | None:
        directory = self._existing_dir(checkpoint_id)
        if directory is None:
            return None
        metadata_path = directory / METADATA_FILENAME
        if not metadata_path.exists():
            return None

        try:
            with open(metadata_path, encoding="utf-8") as f:
                document: dict[str, Any] = json.load(f)

            checkpoint = ExtractionCheckpoint.from_dict(document)

            refs = document.get("screenshots")
            if refs:
                viewport = self._read_blob(directory, refs.get("viewport"))
                full_page = self._read_blob(directory, refs.get("fullPage"))
                if viewport is not None and full_page is not None:
                    checkpoint.screenshots = Screenshots(viewport=viewport, full_page=full_page)

            entries = document.get("comparisons")
            if entries is not None:
                comparisons = []
                for entry in entries:
                    original = self._read_blob(directory, entry.get("originalScreenshot"))
                    generated = self._read_blob(directory, entry.get("generatedScreenshot"))
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
                            diff_image=self._read_blob(directory, entry.get("diffImage")),
                        )
                    )
                checkpoint.comparisons = comparisons
            return checkpoint
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
            raise StoreIOError(
                f"Failed to load checkpoint {checkpoint_id}: {e}",
                checkpoint_id=checkpoint_id,
            ) from e

    def _update_sync(self, checkpoint_id: str, fields: dict[str, Any]) -> None:
        validate_checkpoint_id(checkpoint_id)
        validate_update_fields(fields)
        current = self._load_sync(checkpoint_id)
        if current is None:
            raise CheckpointNotFoundError(checkpoint_id)
        merged = merge_checkpoint(current, fields)
        self._save_sync(merged)

    def _list_sync(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(
            path.name
            for path in self.root.iterdir()
            if path.is_dir() and (path / METADATA_FILENAME).exists()
        )

    def _delete_sync(self, checkpoint_id: str) -> None:
        directory = self._existing_dir(checkpoint_id)
        if directory is None or not directory.exists():
            return
        try:
            shutil.rmtree(directory)
        except OSError as e:
            raise StoreIOError(
                f"Failed to delete checkpoint {checkpoint_id}: {e}",
                checkpoint_id=checkpoint_id,
            ) from e
        logger.debug(f"Deleted checkpoint {checkpoint_id}")

    # CheckpointStore interface

    async def save(self, checkpoint: ExtractionCheckpoint) -> None:
        await asyncio.to_thread(self._save_sync, checkpoint)

    async def load(self, checkpoint_id: str) -> ExtractionCheckpoint | None:
        return await asyncio.to_thread(self._load_sync, checkpoint_id)

    async def update(self, checkpoint_id: str, **fields: Any) -> None:
        await asyncio.to_thread(self._update_sync, checkpoint_id, fields)

    async def list(self) -> list[str]:
        return await asyncio.to_thread(self._list_sync)

    async def delete(self, checkpoint_id: str) -> None:
        await asyncio.to_thread(self._delete_sync, checkpoint_id)

    async def exists(self, checkpoint_id: str) -> bool:
        directory = self._existing_dir(checkpoint_id)
        if directory is None:
            return False
        return await asyncio.to_thread((directory / METADATA_FILENAME).exists)
