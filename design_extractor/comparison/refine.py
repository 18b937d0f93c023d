"""Refinement suggestions for components that fail visual comparison.

The advisor shows an original and a regenerated rendering to a vision
capability together with their comparison scores and asks for categorized,
severity-ranked CSS fixes. Malformed answers degrade to zero suggestions.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..extractor_logging import LogCategory, get_category_logger
from ..vision.client import VisionClient
from ..vision.parsing import clamp, extract_json_object, is_number
from .compare import ComparisonResult

logger = get_category_logger(LogCategory.COMPARISON)

DEFAULT_MAX_SUGGESTIONS = 10
NO_SUMMARY = "No summary provided"
UNPARSEABLE_SUMMARY = "Unable to parse LLM response"
INVALID_JSON_SUMMARY = "Failed to parse refinement response"


class SuggestionCategory(str, Enum):
    COLOR = "color"
    SPACING = "spacing"
    TYPOGRAPHY = "typography"
    LAYOUT = "layout"
    BORDER = "border"
    SHADOW = "shadow"
    OTHER = "other"


class SuggestionSeverity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


SEVERITY_ORDER = {
    SuggestionSeverity.CRITICAL: 0,
    SuggestionSeverity.MAJOR: 1,
    SuggestionSeverity.MINOR: 2,
}


@dataclass
class RefinementSuggestion:
    """One actionable difference between original and generated renderings."""

    category: SuggestionCategory
    severity: SuggestionSeverity
    description: str
    css_property: str | None = None
    suggested_value: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "category": self.category.value,
            "severity": self.severity.value,
            "description": self.description,
        }
        if self.css_property is not None:
            data["cssProperty"] = self.css_property
        if self.suggested_value is not None:
            data["suggestedValue"] = self.suggested_value
        return data


@dataclass
class RefinementResult:
    """Suggestions for one component."""

    component_id: str
    suggestions: list[RefinementSuggestion] = field(default_factory=list)
    summary: str = NO_SUMMARY
    confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "componentId": self.component_id,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "summary": self.summary,
            "confidence": self.confidence,
        }


@dataclass
class RefinementRequest:
    """Input for one advisor call."""

    component_id: str
    original_image: bytes
    generated_image: bytes
    comparison: ComparisonResult


REFINEMENT_SYSTEM_PROMPT = (
    "You are a visual design system expert comparing an original UI component "
    "with a regenerated copy and proposing precise CSS fixes."
)

REFINEMENT_PROMPT = """The first image is the ORIGINAL component from the source site.
The second image is the GENERATED recreation.

Comparison scores (1.0 means identical):
- Structural score: {ssim_score}
- Color score: {color_score}
- Combined score: {combined_score}

List each visible difference with:
- category: "color", "spacing", "typography", "layout", "border", "shadow" or "other"
- severity: "critical", "major" or "minor"
- description: what differs
- cssProperty: the CSS property to change, when applicable
- suggestedValue: the value to use, when you can tell

Respond with one JSON object:
{"suggestions": [...], "summary": "overall summary", "confidence": 0.0-1.0}

Give fewer suggestions when the components already look alike."""


def build_refinement_prompt(comparison: ComparisonResult) -> str:
    """Embed the comparison scores into the advisor prompt."""
    return (
        REFINEMENT_PROMPT.replace("{ssim_score}", f"{comparison.ssim_score:.3f}")
        .replace("{color_score}", f"{comparison.color_score:.3f}")
        .replace("{combined_score}", f"{comparison.combined_score:.3f}")
    )


def parse_suggestion(item: Any) -> RefinementSuggestion | None:
    """Validate one suggestion; None when category, severity or description is invalid."""
    if not isinstance(item, dict):
        return None
    try:
        category = SuggestionCategory(item.get("category"))
        severity = SuggestionSeverity(item.get("severity"))
    except ValueError:
        return None
    description = item.get("description")
    if not isinstance(description, str) or not description.strip():
        return None

    css_property = item.get("cssProperty")
    suggested_value = item.get("suggestedValue")
    return RefinementSuggestion(
        category=category,
        severity=severity,
        description=description,
        css_property=css_property if isinstance(css_property, str) else None,
        suggested_value=suggested_value if isinstance(suggested_value, str) else None,
    )


def parse_refinement_response(
    text: str, component_id: str = "", max_suggestions: int = DEFAULT_MAX_SUGGESTIONS
) -> RefinementResult:
    """Parse an advisor answer into a RefinementResult; never raises."""
    parsed = extract_json_object(text)
    if parsed is None:
        has_object_span = isinstance(text, str) and "{" in text and "}" in text[text.find("{") :]
        return RefinementResult(
            component_id=component_id,
            summary=INVALID_JSON_SUMMARY if has_object_span else UNPARSEABLE_SUMMARY,
            confidence=0.0,
        )

    raw_suggestions = parsed.get("suggestions")
    suggestions = []
    if isinstance(raw_suggestions, list):
        suggestions = [s for s in map(parse_suggestion, raw_suggestions) if s is not None]

    summary = parsed.get("summary")
    confidence = parsed.get("confidence")
    return RefinementResult(
        component_id=component_id,
        suggestions=suggestions[:max_suggestions],
        summary=summary if isinstance(summary, str) else NO_SUMMARY,
        confidence=clamp(float(confidence)) if is_number(confidence) else 0.5,
    )


class RefinementAdvisor:
    """Requests refinement suggestions from a vision capability."""

    def __init__(self, client: VisionClient, max_suggestions: int = DEFAULT_MAX_SUGGESTIONS):
        self.client = client
        self.max_suggestions = max_suggestions

    async def get_suggestions(self, request: RefinementRequest) -> RefinementResult:
        """Ask for suggestions on one component.

        Raises:
            ClassificationError: If the capability call fails.
        """
        response = await self.client.complete(
            REFINEMENT_SYSTEM_PROMPT,
            build_refinement_prompt(request.comparison),
            [request.original_image, request.generated_image],
        )
        result = parse_refinement_response(response, request.component_id, self.max_suggestions)
        logger.debug(
            f"{len(result.suggestions)} suggestions for {request.component_id} "
            f"(confidence {result.confidence:.2f})"
        )
        return result

    async def get_suggestions_batch(
        self, requests: list[RefinementRequest]
    ) -> list[RefinementResult]:
        """Ask for suggestions on many components concurrently, in input order."""
        return list(await asyncio.gather(*(self.get_suggestions(r) for r in requests)))


def prioritize_suggestions(suggestions: list[RefinementSuggestion]) -> list[RefinementSuggestion]:
    """Stable sort: critical, then major, then minor."""
    return sorted(suggestions, key=lambda s: SEVERITY_ORDER[s.severity])


def filter_suggestions_by_category(
    suggestions: list[RefinementSuggestion],
    categories: list[SuggestionCategory | str],
) -> list[RefinementSuggestion]:
    """Keep suggestions whose category is in ``categories``."""
    wanted = {SuggestionCategory(c) for c in categories}
    return [s for s in suggestions if s.category in wanted]
