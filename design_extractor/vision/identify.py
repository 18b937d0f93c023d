"""UI component identification from a screenshot."""

import time
from collections import defaultdict
from dataclasses import dataclass, field

from ..checkpoint.types import ComponentIdentification
from ..extractor_logging import LogCategory, get_category_logger
from .client import VisionClient
from .parsing import parse_components
from .prompts import COMPONENT_IDENTIFICATION_SYSTEM_PROMPT, COMPONENT_IDENTIFICATION_USER_PROMPT

logger = get_category_logger(LogCategory.VISION)


@dataclass
class IdentifyResult:
    """Validated components plus the raw capability answer."""

    components: list[ComponentIdentification] = field(default_factory=list)
    raw_response: str = ""


class ComponentIdentifier:
    """Identifies UI components by asking a vision capability about a screenshot.

    Malformed answers degrade to fewer components; only failures of the
    capability call itself raise.
    """

    def __init__(self, client: VisionClient):
        self.client = client

    async def identify(self, screenshot: bytes) -> IdentifyResult:
        """Identify components in a PNG screenshot.

        Args:
            screenshot: PNG bytes, usually the viewport capture.

        Returns:
            IdentifyResult with validated components.

        Raises:
            ClassificationError: If the capability call fails.
        """
        start_time = time.time()
        raw_response = await self.client.complete(
            COMPONENT_IDENTIFICATION_SYSTEM_PROMPT,
            COMPONENT_IDENTIFICATION_USER_PROMPT,
            [screenshot],
        )
        components = parse_components(raw_response)
        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Identified {len(components)} components in {duration_ms:.0f}ms",
            extra={"duration_ms": duration_ms},
        )
        return IdentifyResult(components=components, raw_response=raw_response)


def filter_components_by_confidence(
    components: list[ComponentIdentification], min_confidence: float = 0.7
) -> list[ComponentIdentification]:
    """Keep components at or above ``min_confidence``."""
    return [c for c in components if c.confidence >= min_confidence]


def group_components_by_type(
    components: list[ComponentIdentification],
) -> dict[str, list[ComponentIdentification]]:
    """Group components by type, preserving order within each group."""
    groups: dict[str, list[ComponentIdentification]] = defaultdict(list)
    for component in components:
        groups[component.type].append(component)
    return dict(groups)
