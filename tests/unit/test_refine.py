"""Tests for refinement suggestion parsing and the refinement advisor."""

import json

import pytest

from design_extractor.comparison import compare_components
from design_extractor.comparison.refine import (
    INVALID_JSON_SUMMARY,
    NO_SUMMARY,
    UNPARSEABLE_SUMMARY,
    RefinementAdvisor,
    RefinementRequest,
    RefinementSuggestion,
    SuggestionCategory,
    SuggestionSeverity,
    build_refinement_prompt,
    filter_suggestions_by_category,
    parse_refinement_response,
    parse_suggestion,
    prioritize_suggestions,
)
from design_extractor.vision import VisionClient


class ScriptedVisionClient(VisionClient):
    def __init__(self, answer: str):
        self.answer = answer
        self.calls = []

    async def complete(self, system_prompt, user_prompt, images):
        self.calls.append((user_prompt, images))
        return self.answer


def _suggestion(severity: str, description: str, category: str = "color") -> RefinementSuggestion:
    return RefinementSuggestion(
        category=SuggestionCategory(category),
        severity=SuggestionSeverity(severity),
        description=description,
    )


class TestParseRefinementResponse:
    def test_valid_response(self):
        text = json.dumps(
            {
                "suggestions": [
                    {
                        "category": "spacing",
                        "severity": "major",
                        "description": "Padding is too small",
                        "cssProperty": "padding",
                        "suggestedValue": "12px 24px",
                    },
                    {"category": "sparkle", "severity": "major", "description": "Unknown category"},
                    {"category": "color", "severity": "minor", "description": "   "},
                ],
                "summary": "Close, spacing is off",
                "confidence": 0.8,
            }
        )

        result = parse_refinement_response(f"```json\n{text}\n```", component_id="button-0")

        assert result.component_id == "button-0"
        assert len(result.suggestions) == 1
        assert result.suggestions[0].css_property == "padding"
        assert result.summary == "Close, spacing is off"
        assert result.confidence == 0.8

    def test_defaults_for_missing_fields(self):
        result = parse_refinement_response('{"suggestions": "not a list"}')

        assert result.suggestions == []
        assert result.summary == NO_SUMMARY
        assert result.confidence == 0.5

    def test_confidence_clamped(self):
        assert parse_refinement_response('{"confidence": 3}').confidence == 1.0

    def test_no_json_object(self):
        result = parse_refinement_response("The two look the same to me.")

        assert result.suggestions == []
        assert result.summary == UNPARSEABLE_SUMMARY
        assert result.confidence == 0.0

    def test_invalid_json_object(self):
        result = parse_refinement_response("{suggestions: [oops]}")

        assert result.summary == INVALID_JSON_SUMMARY
        assert result.confidence == 0.0

    def test_oversized_confidence_falls_back_to_default(self):
        result = parse_refinement_response('{"summary": "ok", "confidence": ' + "9" * 400 + "}")

        assert result.summary == "ok"
        assert result.confidence == 0.5

    def test_integer_past_digit_limit_is_invalid_json(self):
        result = parse_refinement_response('{"confidence": ' + "9" * 5000 + "}")

        assert result.suggestions == []
        assert result.summary == INVALID_JSON_SUMMARY
        assert result.confidence == 0.0

    def test_truncated_to_max_suggestions(self):
        suggestions = [
            {"category": "color", "severity": "minor", "description": f"fix {i}"} for i in range(15)
        ]

        result = parse_refinement_response(json.dumps({"suggestions": suggestions}))

        assert len(result.suggestions) == 10
        assert result.suggestions[-1].description == "fix 9"

    def test_optional_fields_must_be_strings(self):
        suggestion = parse_suggestion(
            {"category": "border", "severity": "critical", "description": "d", "cssProperty": 4}
        )

        assert suggestion.css_property is None
        assert suggestion.to_dict() == {
            "category": "border",
            "severity": "critical",
            "description": "d",
        }


class TestSuggestionHelpers:
    def test_prioritize_is_stable(self):
        suggestions = [
            _suggestion("minor", "m1"),
            _suggestion("critical", "c1"),
            _suggestion("major", "j1"),
            _suggestion("critical", "c2"),
            _suggestion("minor", "m2"),
        ]

        ordered = prioritize_suggestions(suggestions)

        assert [s.description for s in ordered] == ["c1", "c2", "j1", "m1", "m2"]

    def test_filter_by_category_accepts_strings(self):
        suggestions = [
            _suggestion("minor", "a", "color"),
            _suggestion("minor", "b", "layout"),
            _suggestion("minor", "c", "shadow"),
        ]

        kept = filter_suggestions_by_category(suggestions, ["color", SuggestionCategory.SHADOW])

        assert [s.description for s in kept] == ["a", "c"]


class TestRefinementAdvisor:
    @pytest.mark.asyncio
    async def test_sends_both_images_and_scores(self, white_png, red_png):
        comparison = compare_components(white_png, red_png)
        client = ScriptedVisionClient('{"suggestions": [], "summary": "Wrong colour", "confidence": 0.9}')
        advisor = RefinementAdvisor(client)

        result = await advisor.get_suggestions(
            RefinementRequest("card-2", white_png, red_png, comparison)
        )

        assert result.summary == "Wrong colour"
        prompt, images = client.calls[0]
        assert images == [white_png, red_png]
        assert f"{comparison.combined_score:.3f}" in prompt
        assert prompt == build_refinement_prompt(comparison)

    @pytest.mark.asyncio
    async def test_batch_keeps_order(self, white_png):
        comparison = compare_components(white_png, white_png)
        advisor = RefinementAdvisor(ScriptedVisionClient("nothing to fix"))
        requests = [RefinementRequest(cid, white_png, white_png, comparison) for cid in "xyz"]

        results = await advisor.get_suggestions_batch(requests)

        assert [r.component_id for r in results] == ["x", "y", "z"]
        assert all(r.summary == UNPARSEABLE_SUMMARY for r in results)
