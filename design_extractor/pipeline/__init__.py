"""Checkpointed extraction pipeline."""

from .orchestrator import Extractor, create_extractor, crop_component
from .types import (
    ComponentRenderer,
    EventType,
    ExtractorEvent,
    ExtractorEventHandler,
    ExtractorResult,
    ExtractorStep,
    ResumeMode,
    RunConfig,
    StepStatus,
)

__all__ = [
    "ComponentRenderer",
    "EventType",
    "Extractor",
    "ExtractorEvent",
    "ExtractorEventHandler",
    "ExtractorResult",
    "ExtractorStep",
    "ResumeMode",
    "RunConfig",
    "StepStatus",
    "create_extractor",
    "crop_component",
]
