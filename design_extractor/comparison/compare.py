"""Combined component scoring, batch comparison and summaries."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..extractor_logging import LogCategory, get_category_logger
from .color import ColorComparisonResult, calculate_color_similarity
from .structural import StructuralResult, calculate_structural_similarity

if TYPE_CHECKING:
    from ..config.models import ComparisonSettings

logger = get_category_logger(LogCategory.COMPARISON)

DEFAULT_SSIM_WEIGHT = 0.6
DEFAULT_COLOR_WEIGHT = 0.4
DEFAULT_PASS_THRESHOLD = 0.95


@dataclass
class ComparisonOptions:
    """Weights and thresholds for component scoring.

    Weights need not sum to 1 and ``pass_threshold`` is never clamped, so a
    threshold above 1 fails every comparison.
    """

    ssim_weight: float = DEFAULT_SSIM_WEIGHT
    color_weight: float = DEFAULT_COLOR_WEIGHT
    pass_threshold: float = DEFAULT_PASS_THRESHOLD
    generate_diff: bool = False
    diff_threshold: float = 0.1
    buckets: int = 256
    ignore_alpha: bool = True
    include_aa: bool = False

    @classmethod
    def from_settings(cls, settings: ComparisonSettings) -> ComparisonOptions:
        """Create from the comparison block of the extractor config."""
        return cls(
            ssim_weight=settings.ssim_weight,
            color_weight=settings.color_weight,
            pass_threshold=settings.pass_threshold,
            generate_diff=settings.generate_diff,
            diff_threshold=settings.diff_threshold,
            buckets=settings.buckets,
            ignore_alpha=settings.ignore_alpha,
            include_aa=settings.include_aa,
        )


@dataclass
class ComparisonResult:
    """Scores for one original/generated pair."""

    ssim_score: float
    color_score: float
    combined_score: float
    passed: bool
    structural: StructuralResult
    color: ColorComparisonResult
    diff_image: bytes | None = None

    def to_dict(self) -> dict[str, Any]:
        """Scores as a JSON-safe dictionary."""
        return {
            "ssimScore": self.ssim_score,
            "colorScore": self.color_score,
            "combinedScore": self.combined_score,
            "passed": self.passed,
            "structural": self.structural.to_dict(),
        }


@dataclass
class BatchComparisonItem:
    component_id: str
    original_image: bytes
    generated_image: bytes


@dataclass
class BatchComparisonResult:
    component_id: str
    result: ComparisonResult


@dataclass
class ComparisonSummary:
    """Aggregate of a comparison batch."""

    total: int = 0
    passed: int = 0
    failed: int = 0
    average_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "averageScore": self.average_score,
        }


def compare_components(
    original_image: bytes,
    generated_image: bytes,
    options: ComparisonOptions | None = None,
) -> ComparisonResult:
    """Score a generated rendering against its original.

    Args:
        original_image: Image bytes cropped from the source page.
        generated_image: Image bytes of the regenerated component.
        options: Scoring options; defaults when omitted.

    Returns:
        ComparisonResult with structural, colour and weighted scores.

    Raises:
        ImageDecodeError: If either image cannot be decoded.
    """
    options = options or ComparisonOptions()

    structural = calculate_structural_similarity(
        original_image,
        generated_image,
        threshold=options.diff_threshold,
        generate_diff=options.generate_diff,
        include_aa=options.include_aa,
    )
    color = calculate_color_similarity(
        original_image,
        generated_image,
        buckets=options.buckets,
        ignore_alpha=options.ignore_alpha,
    )

    combined = structural.score * options.ssim_weight + color.score * options.color_weight
    return ComparisonResult(
        ssim_score=structural.score,
        color_score=color.score,
        combined_score=combined,
        passed=combined >= options.pass_threshold,
        structural=structural,
        color=color,
        diff_image=structural.diff_image,
    )


async def compare_components_batch(
    items: list[BatchComparisonItem],
    options: ComparisonOptions | None = None,
) -> list[BatchComparisonResult]:
    """Compare many pairs concurrently; results follow input order."""
    results = await asyncio.gather(
        *(
            asyncio.to_thread(
                compare_components, item.original_image, item.generated_image, options
            )
            for item in items
        )
    )
    batch = [
        BatchComparisonResult(component_id=item.component_id, result=result)
        for item, result in zip(items, results, strict=True)
    ]
    if batch:
        summary = get_comparison_summary(batch)
        logger.info(
            f"Compared {summary.total} components: {summary.passed} passed, "
            f"average {summary.average_score:.3f}"
        )
    return batch


def get_comparison_summary(results: list[BatchComparisonResult]) -> ComparisonSummary:
    """Reduce a batch to counts and the mean combined score (0 when empty)."""
    total = len(results)
    if total == 0:
        return ComparisonSummary()
    passed = sum(1 for r in results if r.result.passed)
    average = sum(r.result.combined_score for r in results) / total
    return ComparisonSummary(
        total=total, passed=passed, failed=total - passed, average_score=average
    )
