"""Vision identification of UI components."""

from .client import DEFAULT_VISION_MODEL, OpenAIVisionClient, VisionClient, image_data_url
from .identify import (
    ComponentIdentifier,
    IdentifyResult,
    filter_components_by_confidence,
    group_components_by_type,
)
from .parsing import extract_json_array, extract_json_object, parse_component, parse_components
from .prompts import SUPPORTED_COMPONENT_TYPES

__all__ = [
    "DEFAULT_VISION_MODEL",
    "SUPPORTED_COMPONENT_TYPES",
    "ComponentIdentifier",
    "IdentifyResult",
    "OpenAIVisionClient",
    "VisionClient",
    "extract_json_array",
    "extract_json_object",
    "filter_components_by_confidence",
    "group_components_by_type",
    "image_data_url",
    "parse_component",
    "parse_components",
]
