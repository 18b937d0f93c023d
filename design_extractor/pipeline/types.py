"""Run configuration, step records, events and results of the extraction pipeline."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..checkpoint.types import ComponentIdentification, ExtractionCheckpoint


class ResumeMode(str, Enum):
    """How ``Extractor.resume`` treats outputs already on a checkpoint."""

    RERUN = "rerun"  # Re-derive every stage from scratch
    REUSE = "reuse"  # Keep screenshots, components and tokens already present


class StepStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class EventType(str, Enum):
    START = "start"
    SCREENSHOT = "screenshot"
    VISION = "vision"
    EXTRACTION = "extraction"
    COMPARISON = "comparison"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class RunConfig:
    """Per-run options for ``Extractor.run``."""

    url: str
    dry_run: bool = False  # Record skipped steps without touching the network
    skip_vision: bool = False
    skip_tokens: bool = False
    skip_comparison: bool = False
    viewport_width: int | None = None  # Falls back to the capture settings
    viewport_height: int | None = None
    timeout_ms: int | None = None


@dataclass
class ExtractorStep:
    """Outcome of one pipeline stage."""

    name: str
    status: StepStatus
    duration_ms: float = 0.0
    error: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "durationMs": self.duration_ms,
        }
        if self.error is not None:
            result["error"] = self.error
        if self.data:
            result["data"] = self.data
        return result


@dataclass
class ExtractorEvent:
    """Notification delivered to registered handlers."""

    type: EventType
    checkpoint: ExtractionCheckpoint
    step: ExtractorStep | None = None
    error: BaseException | None = None


ExtractorEventHandler = Callable[[ExtractorEvent], None]


@dataclass
class ExtractorResult:
    """Final checkpoint plus every step executed in the run."""

    checkpoint: ExtractionCheckpoint
    dry_run: bool = False
    duration_ms: float = 0.0
    steps: list[ExtractorStep] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        """True when no step failed."""
        return self.failed_step is None

    @property
    def failed_step(self) -> ExtractorStep | None:
        """The step that halted the run, if any."""
        for step in self.steps:
            if step.status == StepStatus.FAILED:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "checkpoint": self.checkpoint.to_dict(),
            "dryRun": self.dry_run,
            "durationMs": self.duration_ms,
            "steps": [step.to_dict() for step in self.steps],
        }


class ComponentRenderer(ABC):
    """Produces a regenerated rendering of an identified component.

    The comparison stage scores this rendering against the component's
    crop from the original viewport screenshot.
    """

    @abstractmethod
    async def render(
        self, component: ComponentIdentification, tokens: dict[str, Any] | None
    ) -> bytes | None:
        """Return PNG bytes, or None to leave the component out of the comparison."""
        pass
