"""Colour similarity by per-channel histogram intersection."""

from dataclasses import dataclass, field

import numpy as np

from .structural import decode_rgba

# Pixels below this alpha are treated as transparent
ALPHA_CUTOFF = 128


@dataclass(eq=False)
class ColorHistogram:
    """Bucketed RGB distribution of an image.

    ``counts`` holds raw per-channel bucket counts (shape ``(3, buckets)``);
    ``red``/``green``/``blue`` expose them normalized to sum to 1.
    """

    counts: np.ndarray
    pixel_count: int

    @property
    def buckets(self) -> int:
        return int(self.counts.shape[1])

    def _normalized(self, channel: int) -> list[float]:
        if self.pixel_count == 0:
            return [0.0] * self.buckets
        return (self.counts[channel] / self.pixel_count).tolist()

    @property
    def red(self) -> list[float]:
        return self._normalized(0)

    @property
    def green(self) -> list[float]:
        return self._normalized(1)

    @property
    def blue(self) -> list[float]:
        return self._normalized(2)

    def to_dict(self) -> dict[str, list[float]]:
        """Convert to dictionary of normalized channels."""
        return {"red": self.red, "green": self.green, "blue": self.blue}


@dataclass
class ColorComparisonResult:
    """Overall colour score plus the histograms it was computed from."""

    score: float
    histogram1: ColorHistogram = field(repr=False)
    histogram2: ColorHistogram = field(repr=False)
    channel_scores: tuple[float, float, float] = (0.0, 0.0, 0.0)


def histogram_from_pixels(
    pixels: np.ndarray, buckets: int = 256, ignore_alpha: bool = True
) -> ColorHistogram:
    """Build a histogram from an (H, W, 4) RGBA array.

    With ``ignore_alpha`` pixels whose alpha is below 128 are skipped; if
    that would skip every pixel, all pixels are counted instead.
    """
    if not 1 <= buckets <= 256:
        raise ValueError(f"buckets must be between 1 and 256, got {buckets}")

    flat = pixels.reshape(-1, 4)
    if ignore_alpha:
        opaque = flat[flat[:, 3] >= ALPHA_CUTOFF]
        if len(opaque):
            flat = opaque

    indices = (flat[:, :3].astype(np.int64) * buckets) // 256
    counts = np.stack(
        [np.bincount(indices[:, c], minlength=buckets) for c in range(3)]
    ).astype(np.int64)
    return ColorHistogram(counts=counts, pixel_count=int(len(flat)))


def extract_color_histogram(
    image: bytes, buckets: int = 256, ignore_alpha: bool = True
) -> ColorHistogram:
    """Decode an image and build its colour histogram.

    Raises:
        ImageDecodeError: If the image cannot be decoded.
    """
    return histogram_from_pixels(decode_rgba(image), buckets, ignore_alpha)


def channel_intersections(h1: ColorHistogram, h2: ColorHistogram) -> tuple[float, float, float]:
    """Per-channel sum over buckets of min(normalized1, normalized2).

    Raises:
        ValueError: If the histograms have different bucket counts.
    """
    if h1.counts.shape != h2.counts.shape:
        raise ValueError(
            f"Histogram channels must have the same length ({h1.buckets} != {h2.buckets})"
        )
    if h1.pixel_count == 0 or h2.pixel_count == 0:
        return (0.0, 0.0, 0.0)

    # Cross-multiplied integer counts keep identical histograms at exactly 1.0
    n1, n2 = h1.pixel_count, h2.pixel_count
    overlap = np.minimum(h1.counts * n2, h2.counts * n1).sum(axis=1)
    red, green, blue = (float(v) / (n1 * n2) for v in overlap)
    return red, green, blue


def compare_histograms(h1: ColorHistogram, h2: ColorHistogram) -> float:
    """Mean of the three channel intersections."""
    return sum(channel_intersections(h1, h2)) / 3


def calculate_color_similarity(
    image1: bytes,
    image2: bytes,
    buckets: int = 256,
    ignore_alpha: bool = True,
) -> ColorComparisonResult:
    """Score how closely two images' colour distributions overlap.

    Args:
        image1: Original image bytes.
        image2: Generated image bytes.
        buckets: Buckets per channel.
        ignore_alpha: Skip mostly transparent pixels.

    Returns:
        ColorComparisonResult with a score in [0, 1].
    """
    histogram1 = extract_color_histogram(image1, buckets, ignore_alpha)
    histogram2 = extract_color_histogram(image2, buckets, ignore_alpha)
    channels = channel_intersections(histogram1, histogram2)
    return ColorComparisonResult(
        score=sum(channels) / 3,
        histogram1=histogram1,
        histogram2=histogram2,
        channel_scores=channels,
    )


def is_color_pass(score: float, threshold: float = 0.95) -> bool:
    return score >= threshold
