"""Structural similarity by per-pixel perceptual colour difference.

Both images are placed on a shared canvas (the max of their widths and
heights, padded with opaque white). A pixel differs when its YIQ colour
delta, after blending alpha onto white, exceeds ``35215 * threshold**2``.
Differing pixels that sit on an anti-aliased edge in either image are not
counted unless ``include_aa`` is set. The score is the fraction of canvas
pixels that do not differ.
"""

import io
from dataclasses import dataclass

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..errors import ImageDecodeError

# Maximum possible YIQ delta between black and white
MAX_YIQ_DELTA = 35215.0

# Diff image styling
DIFF_COLOR = np.array([255, 0, 0], dtype=np.uint8)
AA_COLOR = np.array([255, 255, 0], dtype=np.uint8)
UNCHANGED_ALPHA = 0.1

# (dx, dy) neighbour offsets, column by column; ties go to the first
NEIGHBOURS = [(dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1) if (dx, dy) != (0, 0)]


@dataclass
class StructuralResult:
    """Outcome of a structural comparison."""

    score: float
    diff_pixels: int
    total_pixels: int
    diff_image: bytes | None = None
    antialiased_pixels: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary (diff image omitted)."""
        return {
            "score": self.score,
            "diffPixels": self.diff_pixels,
            "totalPixels": self.total_pixels,
            "antialiasedPixels": self.antialiased_pixels,
        }


def decode_rgba(data: bytes) -> np.ndarray:
    """Decode image bytes to an (H, W, 4) uint8 RGBA array.

    Raises:
        ImageDecodeError: If the bytes are not a readable image.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            return np.asarray(image.convert("RGBA"), dtype=np.uint8).copy()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageDecodeError(f"Cannot decode image: {e}") from e


def pad_to_canvas(pixels: np.ndarray, width: int, height: int) -> np.ndarray:
    """Place pixels at the top-left of an opaque white canvas."""
    if pixels.shape[0] == height and pixels.shape[1] == width:
        return pixels
    canvas = np.full((height, width, 4), 255, dtype=np.uint8)
    canvas[: pixels.shape[0], : pixels.shape[1]] = pixels
    return canvas


def _blend_on_white(pixels: np.ndarray) -> np.ndarray:
    rgb = pixels[..., :3].astype(np.float64)
    alpha = pixels[..., 3:4].astype(np.float64) / 255.0
    return 255.0 + (rgb - 255.0) * alpha


def _rgb_to_y(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.29889531 + rgb[..., 1] * 0.58662247 + rgb[..., 2] * 0.11448223


def _rgb_to_i(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.59597799 - rgb[..., 1] * 0.27417610 - rgb[..., 2] * 0.32180189


def _rgb_to_q(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.21147017 - rgb[..., 1] * 0.52261711 + rgb[..., 2] * 0.31114694


def color_delta(pixels1: np.ndarray, pixels2: np.ndarray) -> np.ndarray:
    """Squared YIQ distance per pixel, alpha blended on white."""
    rgb1 = _blend_on_white(pixels1)
    rgb2 = _blend_on_white(pixels2)
    dy = _rgb_to_y(rgb1) - _rgb_to_y(rgb2)
    di = _rgb_to_i(rgb1) - _rgb_to_i(rgb2)
    dq = _rgb_to_q(rgb1) - _rgb_to_q(rgb2)
    return 0.5053 * dy * dy + 0.299 * di * di + 0.1957 * dq * dq


def render_diff(base: np.ndarray, mask: np.ndarray, aa_mask: np.ndarray | None = None) -> bytes:
    """Differing pixels in red, anti-aliased ones in yellow, over faded grey."""
    alpha = base[..., 3].astype(np.float64) / 255.0 * UNCHANGED_ALPHA
    grey = 255.0 + (_rgb_to_y(base[..., :3].astype(np.float64)) - 255.0) * alpha
    grey = np.clip(grey, 0, 255).astype(np.uint8)

    out = np.empty((*base.shape[:2], 4), dtype=np.uint8)
    out[..., 0] = grey
    out[..., 1] = grey
    out[..., 2] = grey
    out[..., 3] = 255
    if aa_mask is not None:
        out[aa_mask, :3] = AA_COLOR
    out[mask, :3] = DIFF_COLOR

    buffer = io.BytesIO()
    Image.fromarray(out).save(buffer, format="PNG")
    return buffer.getvalue()


def _neighbour(values: np.ndarray, dx: int, dy: int) -> tuple[np.ndarray, np.ndarray]:
    """Return ``values[y + dy, x + dx]`` per pixel and where that lies inside the image."""
    height, width = values.shape[:2]
    shifted = np.zeros_like(values)
    valid = np.zeros((height, width), dtype=bool)
    target = (slice(max(0, -dy), height - max(0, dy)), slice(max(0, -dx), width - max(0, dx)))
    source = (slice(max(0, dy), height - max(0, -dy)), slice(max(0, dx), width - max(0, -dx)))
    shifted[target] = values[source]
    valid[target] = True
    return shifted, valid


def _edge_mask(height: int, width: int) -> np.ndarray:
    edge = np.zeros((height, width), dtype=bool)
    edge[0, :] = edge[-1, :] = True
    edge[:, 0] = edge[:, -1] = True
    return edge


def _has_many_siblings(pixels: np.ndarray, edge: np.ndarray) -> np.ndarray:
    """True where more than two neighbours (image border counts as one) are identical."""
    count = edge.astype(np.int32)
    for dx, dy in NEIGHBOURS:
        shifted, valid = _neighbour(pixels, dx, dy)
        count += valid & np.all(shifted == pixels, axis=-1)
    return count > 2


def _lookup_neighbour(mask: np.ndarray, index: np.ndarray) -> np.ndarray:
    """``mask`` at the neighbour selected by ``index`` (-1 means none)."""
    height, width = mask.shape
    ys, xs = np.indices((height, width))
    offsets = np.array(NEIGHBOURS)
    chosen = offsets[np.clip(index, 0, None)]
    nx = np.clip(xs + chosen[..., 0], 0, width - 1)
    ny = np.clip(ys + chosen[..., 1], 0, height - 1)
    return (index >= 0) & mask[ny, nx]


def _antialiased_in(pixels: np.ndarray, siblings: np.ndarray, edge: np.ndarray) -> np.ndarray:
    """Pixels of ``pixels`` that sit on an anti-aliased edge.

    A pixel qualifies when at most two neighbours share its brightness, it
    has both a darker and a brighter neighbour, and the darkest or brightest
    of those sits in a flat region of both images (``siblings``).
    """
    brightness = _rgb_to_y(_blend_on_white(pixels))
    zeroes = edge.astype(np.int32)
    darkest = np.zeros_like(brightness)
    brightest = np.zeros_like(brightness)
    darkest_at = np.full(brightness.shape, -1)
    brightest_at = np.full(brightness.shape, -1)

    for index, (dx, dy) in enumerate(NEIGHBOURS):
        neighbour, valid = _neighbour(brightness, dx, dy)
        delta = brightness - neighbour
        zeroes += valid & (delta == 0)

        lower = valid & (delta < darkest)
        darkest = np.where(lower, delta, darkest)
        darkest_at = np.where(lower, index, darkest_at)

        higher = valid & (delta > brightest)
        brightest = np.where(higher, delta, brightest)
        brightest_at = np.where(higher, index, brightest_at)

    candidates = (zeroes <= 2) & (darkest_at >= 0) & (brightest_at >= 0)
    return candidates & (
        _lookup_neighbour(siblings, darkest_at) | _lookup_neighbour(siblings, brightest_at)
    )


def detect_antialiased(canvas1: np.ndarray, canvas2: np.ndarray) -> np.ndarray:
    """Pixels that look like anti-aliasing in either image."""
    edge = _edge_mask(*canvas1.shape[:2])
    siblings = _has_many_siblings(canvas1, edge) & _has_many_siblings(canvas2, edge)
    return _antialiased_in(canvas1, siblings, edge) | _antialiased_in(canvas2, siblings, edge)


def calculate_structural_similarity(
    image1: bytes,
    image2: bytes,
    threshold: float = 0.1,
    generate_diff: bool = False,
    include_aa: bool = False,
) -> StructuralResult:
    """Score two images by the share of pixels that do not differ.

    Args:
        image1: Original image bytes.
        image2: Generated image bytes.
        threshold: Per-pixel sensitivity in [0, 1]; smaller is stricter.
        generate_diff: Also render a PNG highlighting differing pixels.
        include_aa: Count anti-aliased edge pixels as differences.

    Returns:
        StructuralResult with ``score = 1 - diff_pixels / total_pixels``.

    Raises:
        ImageDecodeError: If either image cannot be decoded.
    """
    pixels1 = decode_rgba(image1)
    pixels2 = decode_rgba(image2)

    width = max(pixels1.shape[1], pixels2.shape[1])
    height = max(pixels1.shape[0], pixels2.shape[0])
    total_pixels = width * height
    if total_pixels == 0:
        return StructuralResult(score=1.0, diff_pixels=0, total_pixels=0)

    canvas1 = pad_to_canvas(pixels1, width, height)
    canvas2 = pad_to_canvas(pixels2, width, height)

    identical = np.all(canvas1 == canvas2, axis=-1)
    max_delta = MAX_YIQ_DELTA * threshold * threshold
    mask = ~identical & (color_delta(canvas1, canvas2) > max_delta)
    aa_mask = np.zeros_like(mask)
    if not include_aa and mask.any():
        aa_mask = mask & detect_antialiased(canvas1, canvas2)
        mask &= ~aa_mask
    diff_pixels = int(mask.sum())

    return StructuralResult(
        score=1.0 - diff_pixels / total_pixels,
        diff_pixels=diff_pixels,
        total_pixels=total_pixels,
        diff_image=render_diff(canvas1, mask, aa_mask) if generate_diff else None,
        antialiased_pixels=int(aa_mask.sum()),
    )


def is_structural_pass(score: float, threshold: float = 0.95) -> bool:
    return score >= threshold
