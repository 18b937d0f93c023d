"""
Shared fixtures for the design extractor test suite.

Provides test fixtures for:
- In-memory PNG images generated with Pillow
- Sample checkpoints with every optional field populated
- Checkpoint stores for both backends (filesystem and sqlite)
- A clean environment for configuration tests
"""

import io
import logging
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
import pytest_asyncio
from PIL import Image, ImageDraw

from design_extractor.checkpoint import (
    BoundingBox,
    ComponentComparison,
    ComponentIdentification,
    ExtractionCheckpoint,
    ExtractionStatus,
    FilesystemCheckpointStore,
    Screenshots,
)
from design_extractor.config.config_loader import ENV_VARS
from design_extractor.database import Database, DatabaseCheckpointStore, DatabaseConfig
from design_extractor.extractor_logging import ROOT_LOGGER_NAME
from tests.helpers import make_pattern_png, make_png


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    """Keep host environment variables out of configuration loading."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("DESIGN_EXTRACTOR_DB_CONNECT_TIMEOUT", raising=False)


@pytest.fixture(autouse=True)
def reset_logging() -> Iterator[None]:
    """Drop handlers installed by setup_logging so caplog sees every record."""
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


@pytest.fixture()
def white_png() -> bytes:
    return make_png(color=(255, 255, 255))


@pytest.fixture()
def red_png() -> bytes:
    return make_png(color=(255, 0, 0))


@pytest.fixture()
def pattern_png() -> bytes:
    return make_pattern_png()


@pytest.fixture()
def viewport_png() -> bytes:
    """A 200x120 page capture with a header bar and a button."""
    image = Image.new("RGB", (200, 120), (250, 250, 250))
    draw = ImageDraw.Draw(image)
    draw.rectangle((0, 0, 199, 24), fill=(20, 20, 60))
    draw.rectangle((20, 60, 90, 84), fill=(30, 120, 220))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Checkpoints
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_components() -> list[ComponentIdentification]:
    return [
        ComponentIdentification(
            type="header",
            name="Site header",
            bounding_box=BoundingBox(x=0, y=0, width=200, height=25),
            confidence=0.95,
        ),
        ComponentIdentification(
            type="button",
            name="Primary CTA",
            bounding_box=BoundingBox(x=20, y=60, width=71, height=25),
            confidence=0.8,
        ),
    ]


@pytest.fixture()
def sample_checkpoint(sample_components) -> ExtractionCheckpoint:
    """Checkpoint with every optional field set, including blobs."""
    return ExtractionCheckpoint(
        id="ckpt-sample",
        url="https://example.com",
        status=ExtractionStatus.COMPARISON,
        progress=90,
        screenshots=Screenshots(
            viewport=make_png(color=(10, 20, 30)),
            full_page=make_png(height=64, color=(40, 50, 60)),
        ),
        identified_components=sample_components,
        extracted_tokens={"colors": ["rgb(0, 0, 0)"], "spacing": ["8px", "16px"]},
        comparisons=[
            ComponentComparison(
                component_id="header-0",
                original_screenshot=make_png(color=(1, 2, 3)),
                generated_screenshot=make_png(color=(4, 5, 6)),
                ssim_score=0.9,
                color_score=0.8,
                combined_score=0.86,
                passed=False,
                diff_image=make_png(color=(255, 0, 0)),
            ),
            ComponentComparison(
                component_id="button-1",
                original_screenshot=make_png(color=(7, 8, 9)),
                generated_screenshot=make_png(color=(7, 8, 9)),
                ssim_score=1.0,
                color_score=1.0,
                combined_score=1.0,
                passed=True,
            ),
        ],
    )


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@pytest.fixture()
def database(tmp_path: Path) -> Iterator[Database]:
    """Connected sqlite database in a temporary directory."""
    db = Database(DatabaseConfig(url=f"sqlite:///{tmp_path / 'checkpoints.db'}"))
    db.connect()
    yield db
    db.disconnect()


@pytest.fixture()
def filesystem_store(tmp_path: Path) -> FilesystemCheckpointStore:
    return FilesystemCheckpointStore(tmp_path)


@pytest.fixture()
def database_store(database: Database) -> DatabaseCheckpointStore:
    return DatabaseCheckpointStore(database)


@pytest_asyncio.fixture(params=["filesystem", "database"])
async def store(request, tmp_path: Path) -> AsyncIterator:
    """Each checkpoint store backend in turn."""
    if request.param == "filesystem":
        backend = FilesystemCheckpointStore(tmp_path)
    else:
        db = Database(DatabaseConfig(url=f"sqlite:///{tmp_path / 'contract.db'}"))
        db.connect()
        backend = DatabaseCheckpointStore(db, owns_database=True)
    yield backend
    await backend.close()
