"""Tests for computed-style token derivation."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from design_extractor.errors import CaptureError
from design_extractor.tokens import ALL_PROPS, ComputedStyleTokenExtractor, summarize_styles


def _playwright_factory(page):
    browser = MagicMock()
    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()
    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(return_value=browser)

    @asynccontextmanager
    async def factory():
        yield playwright

    return factory, browser


class TestSummarizeStyles:
    def test_groups_ranked_by_frequency(self):
        samples = [
            {"color": "rgb(0, 0, 0)", "font-size": "16px", "padding-top": "8px"},
            {"color": "rgb(0, 0, 0)", "font-size": "14px", "margin-left": "16px"},
            {"background-color": "rgb(255, 0, 0)", "font-size": "16px", "gap": "8px"},
        ]

        tokens = summarize_styles(samples)

        assert tokens["colors"] == ["rgb(0, 0, 0)", "rgb(255, 0, 0)"]
        assert tokens["typography"]["fontSizes"] == ["16px", "14px"]
        assert tokens["spacing"] == ["8px", "16px"]

    def test_uninformative_values_ignored(self):
        samples = [
            {
                "color": "transparent",
                "background-color": "rgba(0, 0, 0, 0)",
                "box-shadow": "none",
                "padding-top": "0px",
                "line-height": "normal",
                "border-top-width": "  ",
            }
        ]

        tokens = summarize_styles(samples)

        assert tokens["colors"] == []
        assert tokens["shadows"] == []
        assert tokens["spacing"] == []
        assert tokens["typography"]["lineHeights"] == []
        assert tokens["borderWidths"] == []

    def test_unknown_properties_ignored(self):
        tokens = summarize_styles([{"cursor": "pointer"}])

        assert all(not v for k, v in tokens.items() if k != "typography")

    def test_limit(self):
        samples = [{"font-size": f"{size}px"} for size in range(20)]

        assert len(summarize_styles(samples, limit=5)["typography"]["fontSizes"]) == 5


class TestComputedStyleTokenExtractor:
    @pytest.mark.asyncio
    async def test_extract(self, sample_components):
        page = MagicMock()
        page.goto = AsyncMock()
        page.evaluate = AsyncMock(
            return_value={
                "page": [
                    {"color": "rgb(20, 20, 60)", "border-top-left-radius": "4px"},
                    None,
                    {"color": "rgb(20, 20, 60)", "box-shadow": "0 1px 2px black"},
                ],
                "components": [{"color": "rgb(255, 255, 255)"}, None],
            }
        )
        factory, browser = _playwright_factory(page)
        extractor = ComputedStyleTokenExtractor(timeout_ms=5000, playwright_factory=factory)

        tokens = await extractor.extract("https://example.com", (200, 120), sample_components)

        assert tokens["colors"] == ["rgb(20, 20, 60)"]
        assert tokens["radii"] == ["4px"]
        assert tokens["shadows"] == ["0 1px 2px black"]
        assert tokens["components"] == {"Site header": {"color": "rgb(255, 255, 255)"}}

        page.goto.assert_awaited_once_with(
            "https://example.com", wait_until="domcontentloaded", timeout=5000
        )
        script_args = page.evaluate.call_args.args[1]
        assert script_args[0] == ALL_PROPS
        assert script_args[1] == [[100.0, 12.5], [55.5, 72.5]]
        browser.new_context.assert_awaited_once_with(viewport={"width": 200, "height": 120})
        browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_navigation_failure_raises_capture_error(self):
        page = MagicMock()
        page.goto = AsyncMock(side_effect=PlaywrightError("Timeout 5000ms exceeded"))
        factory, browser = _playwright_factory(page)

        with pytest.raises(CaptureError, match="Timeout"):
            await ComputedStyleTokenExtractor(playwright_factory=factory).extract(
                "https://slow.test", (100, 100), []
            )

        browser.close.assert_awaited_once()
