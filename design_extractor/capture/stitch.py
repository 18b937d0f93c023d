"""Full-page capture by scrolling and stitching viewport slices.

Some pages render lazily or pin headers in ways that break the browser's
native full-page screenshot. Scrolling one viewport at a time and pasting
the slices onto a single canvas gives a faithful full-page image.
"""

import asyncio
import io
import math
from dataclasses import dataclass

from PIL import Image

from ..extractor_logging import LogCategory, get_category_logger

logger = get_category_logger(LogCategory.CAPTURE)

_DIMENSIONS_SCRIPT = """() => ({
    viewportWidth: window.innerWidth,
    viewportHeight: window.innerHeight,
    totalWidth: Math.max(document.documentElement.scrollWidth, document.body ? document.body.scrollWidth : 0),
    totalHeight: Math.max(document.documentElement.scrollHeight, document.body ? document.body.scrollHeight : 0),
})"""


@dataclass
class ScrollDimensions:
    """Viewport and scrollable document size of a page."""

    viewport_width: int
    viewport_height: int
    total_width: int
    total_height: int


def slice_offsets(total_height: int, viewport_height: int, max_height: int) -> list[int]:
    """Scroll offsets for each slice of a stitched capture.

    Slice count is ceil(min(total_height, max_height) / viewport_height),
    with at least one slice.
    """
    if viewport_height <= 0:
        raise ValueError("viewport_height must be positive")
    effective = min(total_height, max_height)
    count = max(1, math.ceil(effective / viewport_height))
    return [i * viewport_height for i in range(count)]


def stitch_vertically(slices: list[tuple[int, bytes]], width: int, height: int) -> bytes:
    """Composite PNG slices onto a white canvas.

    Args:
        slices: (top offset, PNG bytes) pairs, pasted in order.
        width: Canvas width in pixels.
        height: Canvas height in pixels; slices overflowing it are cropped.

    Returns:
        PNG bytes of the stitched image.
    """
    canvas = Image.new("RGB", (width, height), (255, 255, 255))
    for top, data in slices:
        with Image.open(io.BytesIO(data)) as piece:
            canvas.paste(piece.convert("RGB"), (0, top))
    buffer = io.BytesIO()
    canvas.save(buffer, format="PNG")
    return buffer.getvalue()


async def get_scroll_dimensions(page) -> ScrollDimensions:
    """Read viewport and document dimensions from the page."""
    dims = await page.evaluate(_DIMENSIONS_SCRIPT)
    return ScrollDimensions(
        viewport_width=int(dims["viewportWidth"]),
        viewport_height=int(dims["viewportHeight"]),
        total_width=int(dims["totalWidth"]),
        total_height=int(dims["totalHeight"]),
    )


async def capture_full_page_stitched(
    page,
    scroll_delay_ms: int = 100,
    max_height: int = 20000,
) -> bytes:
    """Capture a full-page PNG by scrolling one viewport at a time.

    Each slice is pasted at the scroll offset the page actually reached, so
    a last slice clamped by the browser lines up with the document bottom.
    The page is scrolled back to the origin whether or not capture succeeds.

    Args:
        page: Playwright page already navigated to the target.
        scroll_delay_ms: Pause after each scroll for lazy content to settle.
        max_height: Cap on the stitched image height.

    Returns:
        PNG bytes; a single-slice page returns that slice unchanged.
    """
    dims = await get_scroll_dimensions(page)
    effective_height = min(dims.total_height, max_height)
    offsets = slice_offsets(dims.total_height, dims.viewport_height, max_height)
    slices: list[tuple[int, bytes]] = []

    try:
        for target_y in offsets:
            await page.evaluate("(y) => window.scrollTo(0, y)", target_y)
            await asyncio.sleep(scroll_delay_ms / 1000)
            actual_y = int(await page.evaluate("() => window.scrollY"))
            slices.append((actual_y, await page.screenshot(type="png")))
    finally:
        await page.evaluate("() => window.scrollTo(0, 0)")

    logger.debug(
        f"Captured {len(slices)} slices for {effective_height}px of {dims.total_height}px"
    )

    if len(slices) == 1:
        return slices[0][1]

    return await asyncio.to_thread(
        stitch_vertically,
        slices,
        dims.viewport_width,
        effective_height,
    )


async def get_page_dimensions(page) -> tuple[int, int]:
    """Return the scrollable (width, height) of the page."""
    dims = await get_scroll_dimensions(page)
    return dims.total_width, dims.total_height
