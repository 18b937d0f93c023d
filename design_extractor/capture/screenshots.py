"""Viewport and full-page screenshot capture through headless Chromium."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, async_playwright

from ..errors import CaptureError
from ..extractor_logging import LogCategory, get_category_logger
from .stitch import capture_full_page_stitched

if TYPE_CHECKING:
    from ..config.models import CaptureSettings

logger = get_category_logger(LogCategory.CAPTURE)


@dataclass
class CaptureOptions:
    """What to capture and how long to wait for it."""

    url: str
    viewport_width: int = 1440
    viewport_height: int = 900
    wait_for_network_idle: bool = True
    timeout_ms: int = 30000
    stitch: bool = True
    max_height: int = 20000
    scroll_delay_ms: int = 100

    @classmethod
    def from_settings(cls, url: str, settings: CaptureSettings) -> CaptureOptions:
        """Create from the capture block of the extractor config."""
        return cls(
            url=url,
            viewport_width=settings.viewport_width,
            viewport_height=settings.viewport_height,
            wait_for_network_idle=settings.wait_for_network_idle,
            timeout_ms=settings.timeout_ms,
            stitch=settings.stitch,
            max_height=settings.max_height,
            scroll_delay_ms=settings.scroll_delay_ms,
        )

    @property
    def wait_until(self) -> str:
        return "networkidle" if self.wait_for_network_idle else "domcontentloaded"


@dataclass
class CaptureResult:
    """PNG captures of one page."""

    viewport: bytes
    full_page: bytes


class ScreenshotCapture:
    """Drives a headless browser to capture a page.

    A browser is launched for each ``capture`` call and closed on every
    exit path.

    Args:
        playwright_factory: Callable returning a Playwright context manager;
            defaults to ``async_playwright``.
        launch_options: Extra keyword arguments for ``chromium.launch``.
    """

    def __init__(
        self,
        playwright_factory: Callable[[], Any] | None = None,
        launch_options: dict[str, Any] | None = None,
    ):
        self._playwright_factory = playwright_factory or async_playwright
        self._launch_options = {"headless": True, **(launch_options or {})}

    async def capture(self, options: CaptureOptions) -> CaptureResult:
        """Capture viewport and full-page screenshots of ``options.url``.

        Raises:
            CaptureError: On navigation failure, timeout or browser crash.
        """
        start_time = time.time()
        try:
            async with self._playwright_factory() as playwright:
                browser = await playwright.chromium.launch(**self._launch_options)
                try:
                    context = await browser.new_context(
                        viewport={
                            "width": options.viewport_width,
                            "height": options.viewport_height,
                        }
                    )
                    page = await context.new_page()
                    await page.goto(
                        options.url,
                        wait_until=options.wait_until,
                        timeout=options.timeout_ms,
                    )

                    viewport = await page.screenshot(type="png")
                    if options.stitch:
                        full_page = await capture_full_page_stitched(
                            page,
                            scroll_delay_ms=options.scroll_delay_ms,
                            max_height=options.max_height,
                        )
                    else:
                        full_page = await page.screenshot(type="png", full_page=True)
                finally:
                    await browser.close()
        except PlaywrightError as e:
            raise CaptureError(
                f"Screenshot capture failed for {options.url}: {e.message}",
                url=options.url,
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Captured {options.url} in {duration_ms:.0f}ms",
            extra={"url": options.url, "duration_ms": duration_ms},
        )
        return CaptureResult(viewport=viewport, full_page=full_page)


async def capture_element(page: Page, selector: str) -> bytes | None:
    """Screenshot a single element, or None when it is missing or unrenderable."""
    try:
        element = await page.query_selector(selector)
        if element is None:
            return None
        return await element.screenshot(type="png")
    except PlaywrightError as e:
        logger.debug(f"Element capture failed ({selector}): {e.message}")
        return None
