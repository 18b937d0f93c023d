"""Visual comparison engine and refinement advisor."""

from .color import (
    ColorComparisonResult,
    ColorHistogram,
    calculate_color_similarity,
    compare_histograms,
    extract_color_histogram,
    is_color_pass,
)
from .compare import (
    BatchComparisonItem,
    BatchComparisonResult,
    ComparisonOptions,
    ComparisonResult,
    ComparisonSummary,
    compare_components,
    compare_components_batch,
    get_comparison_summary,
)
from .refine import (
    RefinementAdvisor,
    RefinementRequest,
    RefinementResult,
    RefinementSuggestion,
    SuggestionCategory,
    SuggestionSeverity,
    filter_suggestions_by_category,
    parse_refinement_response,
    prioritize_suggestions,
)
from .structural import StructuralResult, calculate_structural_similarity, is_structural_pass

__all__ = [
    "BatchComparisonItem",
    "BatchComparisonResult",
    "ColorComparisonResult",
    "ColorHistogram",
    "ComparisonOptions",
    "ComparisonResult",
    "ComparisonSummary",
    "RefinementAdvisor",
    "RefinementRequest",
    "RefinementResult",
    "RefinementSuggestion",
    "StructuralResult",
    "SuggestionCategory",
    "SuggestionSeverity",
    "calculate_color_similarity",
    "calculate_structural_similarity",
    "compare_components",
    "compare_components_batch",
    "compare_histograms",
    "extract_color_histogram",
    "filter_suggestions_by_category",
    "get_comparison_summary",
    "is_color_pass",
    "is_structural_pass",
    "parse_refinement_response",
    "prioritize_suggestions",
]
