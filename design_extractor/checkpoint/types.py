"""Checkpoint record types flowing through every pipeline stage."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ExtractionStatus(str, Enum):
    """Pipeline state of a checkpoint."""

    PENDING = "pending"
    SCREENSHOT = "screenshot"
    VISION = "vision"
    EXTRACTION = "extraction"
    COMPARISON = "comparison"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        """Position in the forward stage order; FAILED ranks last."""
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [
    ExtractionStatus.PENDING,
    ExtractionStatus.SCREENSHOT,
    ExtractionStatus.VISION,
    ExtractionStatus.EXTRACTION,
    ExtractionStatus.COMPARISON,
    ExtractionStatus.COMPLETE,
    ExtractionStatus.FAILED,
]


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


@dataclass
class BoundingBox:
    """Pixel rectangle of a component inside a screenshot."""

    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> dict[str, float]:
        """Convert to dictionary."""
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BoundingBox":
        """Create from dictionary."""
        return cls(
            x=data["x"],
            y=data["y"],
            width=data["width"],
            height=data["height"],
        )

    def to_crop_box(self, image_width: int, image_height: int) -> tuple[int, int, int, int]:
        """Integer (left, top, right, bottom) clamped to an image of the given size."""
        left = min(max(int(self.x), 0), image_width)
        top = min(max(int(self.y), 0), image_height)
        right = min(max(int(self.x + self.width), left), image_width)
        bottom = min(max(int(self.y + self.height), top), image_height)
        return left, top, right, bottom


@dataclass
class ComponentIdentification:
    """A UI component candidate reported by the classification capability."""

    type: str
    name: str
    bounding_box: BoundingBox
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": self.type,
            "name": self.name,
            "boundingBox": self.bounding_box.to_dict(),
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ComponentIdentification":
        """Create from dictionary."""
        return cls(
            type=data["type"],
            name=data["name"],
            bounding_box=BoundingBox.from_dict(data["boundingBox"]),
            confidence=data["confidence"],
        )


@dataclass
class Screenshots:
    """Viewport and full-page PNG captures of the target page."""

    viewport: bytes
    full_page: bytes


@dataclass
class ComponentComparison:
    """Fidelity scores for one regenerated component, with both renderings."""

    component_id: str
    original_screenshot: bytes
    generated_screenshot: bytes
    ssim_score: float
    color_score: float
    combined_score: float
    passed: bool
    diff_image: bytes | None = None

    def scores_to_dict(self) -> dict[str, Any]:
        """Scalar fields only; blob references are added by the stores."""
        return {
            "componentId": self.component_id,
            "ssimScore": self.ssim_score,
            "colorScore": self.color_score,
            "combinedScore": self.combined_score,
            "passed": self.passed,
        }


# Fields that ``CheckpointStore.update`` accepts.
UPDATABLE_FIELDS = frozenset(
    {
        "url",
        "status",
        "progress",
        "started_at",
        "screenshots",
        "identified_components",
        "extracted_tokens",
        "comparisons",
        "error",
    }
)


@dataclass
class ExtractionCheckpoint:
    """Durable record of one extraction run's progress and outputs.

    Blob fields (``screenshots`` and the images inside ``comparisons``) are
    never inlined by ``to_dict``; each store persists them separately and
    records references in the metadata document.
    """

    id: str
    url: str
    status: ExtractionStatus = ExtractionStatus.PENDING
    progress: int = 0
    started_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    screenshots: Screenshots | None = None
    identified_components: list[ComponentIdentification] | None = None
    extracted_tokens: dict[str, Any] | None = None
    comparisons: list[ComponentComparison] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Scalar and JSON-like fields for the metadata document."""
        return {
            "id": self.id,
            "url": self.url,
            "status": self.status.value,
            "progress": self.progress,
            "startedAt": self.started_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "identifiedComponents": (
                [c.to_dict() for c in self.identified_components]
                if self.identified_components is not None
                else None
            ),
            "extractedTokens": self.extracted_tokens,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtractionCheckpoint":
        """Create from a metadata document, without blob fields."""
        components = data.get("identifiedComponents")
        return cls(
            id=data["id"],
            url=data["url"],
            status=ExtractionStatus(data["status"]),
            progress=data["progress"],
            started_at=datetime.fromisoformat(data["startedAt"]),
            updated_at=datetime.fromisoformat(data["updatedAt"]),
            identified_components=(
                [ComponentIdentification.from_dict(c) for c in components]
                if components is not None
                else None
            ),
            extracted_tokens=data.get("extractedTokens"),
            error=data.get("error"),
        )

    def validate(self) -> list[str]:
        """Check record invariants.

        Returns:
            List of violated invariants, empty when the record is consistent.
        """
        problems = []
        if not 0 <= self.progress <= 100:
            problems.append(f"progress {self.progress} outside 0-100")
        if self.status == ExtractionStatus.FAILED and not self.error:
            problems.append("failed checkpoint has no error")
        if self.status == ExtractionStatus.COMPLETE and self.progress != 100:
            problems.append("complete checkpoint progress is not 100")
        if self.screenshots is not None and self.status == ExtractionStatus.PENDING:
            problems.append("screenshots present before screenshot stage")
        return problems

    @property
    def is_terminal(self) -> bool:
        """True once the run has completed or failed."""
        return self.status in (ExtractionStatus.COMPLETE, ExtractionStatus.FAILED)
