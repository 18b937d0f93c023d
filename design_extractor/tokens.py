"""Design token derivation from a page's computed styles.

The pipeline treats token extraction as an opaque collaborator: anything
implementing ``TokenExtractor`` may be injected. The default samples
computed styles from the live page and tallies the most frequent values.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Callable
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from .checkpoint.types import ComponentIdentification
from .errors import CaptureError
from .extractor_logging import LogCategory, get_category_logger

logger = get_category_logger(LogCategory.PIPELINE)

COLOR_PROPS = ["color", "background-color", "border-top-color"]
TYPOGRAPHY_PROPS = ["font-family", "font-size", "font-weight", "line-height", "letter-spacing"]
SPACING_PROPS = [
    "padding-top",
    "padding-right",
    "padding-bottom",
    "padding-left",
    "margin-top",
    "margin-right",
    "margin-bottom",
    "margin-left",
    "gap",
]
SHAPE_PROPS = ["border-top-left-radius", "border-top-width"]
ELEVATION_PROPS = ["box-shadow"]

ALL_PROPS = COLOR_PROPS + TYPOGRAPHY_PROPS + SPACING_PROPS + SHAPE_PROPS + ELEVATION_PROPS

# Values that carry no design information
_IGNORED_VALUES = {"", "none", "normal", "auto", "0px", "rgba(0, 0, 0, 0)", "transparent"}

_SAMPLE_SCRIPT = """([props, points, limit]) => {
    const read = (el) => {
        const style = window.getComputedStyle(el);
        const out = {};
        for (const p of props) out[p] = style.getPropertyValue(p);
        return out;
    };
    const page = [];
    for (const el of document.querySelectorAll('body *')) {
        if (page.length >= limit) break;
        const rect = el.getBoundingClientRect();
        if (rect.width === 0 || rect.height === 0) continue;
        page.push(read(el));
    }
    const components = points.map(([x, y]) => {
        const el = document.elementFromPoint(x, y);
        return el ? read(el) : null;
    });
    return { page, components };
}"""


class TokenExtractor(ABC):
    """Derives a design-token map for a page."""

    @abstractmethod
    async def extract(
        self,
        url: str,
        viewport: tuple[int, int],
        components: list[ComponentIdentification],
    ) -> dict[str, Any]:
        """Return an opaque, JSON-safe token map.

        Args:
            url: Page the tokens are derived from.
            viewport: (width, height) the page was captured at.
            components: Components identified in the viewport capture.
        """
        pass


def _ranked(counter: Counter, limit: int) -> list[str]:
    return [value for value, _ in counter.most_common(limit)]


def summarize_styles(samples: list[dict[str, str]], limit: int = 12) -> dict[str, Any]:
    """Tally computed-style samples into ranked token lists.

    Args:
        samples: One ``{property: value}`` mapping per sampled element.
        limit: Maximum values kept per token group.

    Returns:
        Token map with colors, typography, spacing, radii and shadows, each
        ordered from most to least frequent.
    """
    tallies: dict[str, Counter] = {
        group: Counter()
        for group in (
            "colors",
            "fontFamilies",
            "fontSizes",
            "fontWeights",
            "lineHeights",
            "spacing",
            "radii",
            "borderWidths",
            "shadows",
        )
    }
    routing = {
        "color": "colors",
        "background-color": "colors",
        "border-top-color": "colors",
        "font-family": "fontFamilies",
        "font-size": "fontSizes",
        "font-weight": "fontWeights",
        "line-height": "lineHeights",
        "border-top-left-radius": "radii",
        "border-top-width": "borderWidths",
        "box-shadow": "shadows",
    }

    for sample in samples:
        for prop, value in sample.items():
            value = (value or "").strip()
            if value in _IGNORED_VALUES:
                continue
            group = "spacing" if prop in SPACING_PROPS else routing.get(prop)
            if group:
                tallies[group][value] += 1

    return {
        "colors": _ranked(tallies["colors"], limit),
        "typography": {
            "fontFamilies": _ranked(tallies["fontFamilies"], limit),
            "fontSizes": _ranked(tallies["fontSizes"], limit),
            "fontWeights": _ranked(tallies["fontWeights"], limit),
            "lineHeights": _ranked(tallies["lineHeights"], limit),
        },
        "spacing": _ranked(tallies["spacing"], limit),
        "radii": _ranked(tallies["radii"], limit),
        "borderWidths": _ranked(tallies["borderWidths"], limit),
        "shadows": _ranked(tallies["shadows"], limit),
    }


class ComputedStyleTokenExtractor(TokenExtractor):
    """Samples computed styles from the live page with a headless browser.

    Args:
        timeout_ms: Navigation timeout.
        max_elements: Cap on page-wide samples.
        playwright_factory: Callable returning a Playwright context manager.
        launch_options: Extra keyword arguments for ``chromium.launch``.
    """

    def __init__(
        self,
        timeout_ms: int = 30000,
        max_elements: int = 500,
        playwright_factory: Callable[[], Any] | None = None,
        launch_options: dict[str, Any] | None = None,
    ):
        self.timeout_ms = timeout_ms
        self.max_elements = max_elements
        self._playwright_factory = playwright_factory or async_playwright
        self._launch_options = {"headless": True, **(launch_options or {})}

    async def _sample(
        self, url: str, viewport: tuple[int, int], points: list[list[float]]
    ) -> dict[str, list[dict[str, str] | None]]:
        width, height = viewport
        try:
            async with self._playwright_factory() as playwright:
                browser = await playwright.chromium.launch(**self._launch_options)
                try:
                    context = await browser.new_context(
                        viewport={"width": width, "height": height}
                    )
                    page = await context.new_page()
                    await page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
                    return await page.evaluate(
                        _SAMPLE_SCRIPT, [ALL_PROPS, points, self.max_elements]
                    )
                finally:
                    await browser.close()
        except PlaywrightError as e:
            raise CaptureError(f"Style sampling failed for {url}: {e.message}", url=url) from e

    async def extract(
        self,
        url: str,
        viewport: tuple[int, int],
        components: list[ComponentIdentification],
    ) -> dict[str, Any]:
        points = [
            [
                c.bounding_box.x + c.bounding_box.width / 2,
                c.bounding_box.y + c.bounding_box.height / 2,
            ]
            for c in components
        ]
        sampled = await self._sample(url, viewport, points)

        tokens = summarize_styles([s for s in sampled.get("page", []) if s])
        tokens["components"] = {
            component.name: styles
            for component, styles in zip(components, sampled.get("components", []), strict=False)
            if styles
        }
        logger.info(
            f"Derived {len(tokens['colors'])} colors and "
            f"{len(tokens['typography']['fontSizes'])} font sizes from {url}",
            extra={"url": url},
        )
        return tokens
