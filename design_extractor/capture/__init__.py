"""Screenshot capture through a headless browser."""

from .screenshots import CaptureOptions, CaptureResult, ScreenshotCapture, capture_element
from .stitch import (
    ScrollDimensions,
    capture_full_page_stitched,
    get_page_dimensions,
    slice_offsets,
    stitch_vertically,
)

__all__ = [
    "CaptureOptions",
    "CaptureResult",
    "ScreenshotCapture",
    "ScrollDimensions",
    "capture_element",
    "capture_full_page_stitched",
    "get_page_dimensions",
    "slice_offsets",
    "stitch_vertically",
]
