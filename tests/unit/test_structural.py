"""Tests for per-pixel structural similarity."""

import io

import numpy as np
import pytest
from PIL import Image

from design_extractor.comparison.structural import (
    MAX_YIQ_DELTA,
    calculate_structural_similarity,
    color_delta,
    decode_rgba,
    detect_antialiased,
    is_structural_pass,
    pad_to_canvas,
)
from design_extractor.errors import ImageDecodeError
from tests.helpers import make_pattern_png, make_png


class TestStructuralSimilarity:
    def test_identical_images_score_one(self, pattern_png):
        result = calculate_structural_similarity(pattern_png, pattern_png)

        assert result.score == 1.0
        assert result.diff_pixels == 0
        assert result.total_pixels == 64 * 64
        assert result.diff_image is None

    def test_opposite_colours_score_zero(self, white_png, red_png):
        result = calculate_structural_similarity(white_png, red_png)

        assert result.score == 0.0
        assert result.diff_pixels == result.total_pixels

    def test_smaller_image_padded_with_white(self, white_png):
        small_white = make_png(width=16, height=16)

        assert calculate_structural_similarity(white_png, small_white).score == 1.0

    def test_size_mismatch_counts_uncovered_area(self, white_png):
        small_red = make_png(width=16, height=16, color=(255, 0, 0))

        result = calculate_structural_similarity(white_png, small_red)

        assert result.total_pixels == 32 * 32
        assert result.diff_pixels == 16 * 16
        assert result.score == pytest.approx(0.75)

    def test_transparent_pixels_blend_onto_white(self, white_png):
        transparent = make_png(color=(0, 0, 0, 0), mode="RGBA")

        assert calculate_structural_similarity(white_png, transparent).score == 1.0

    def test_shifted_pattern_scores_between_bounds(self):
        result = calculate_structural_similarity(make_pattern_png(), make_pattern_png(offset=3))

        assert 0.0 < result.score < 1.0

    def test_threshold_controls_sensitivity(self):
        light = make_png(color=(250, 250, 250))
        white = make_png()

        assert calculate_structural_similarity(white, light, threshold=0.1).score == 1.0
        assert calculate_structural_similarity(white, light, threshold=0.0).score == 0.0

    def test_diff_image_marks_changed_pixels(self, white_png):
        small_red = make_png(width=16, height=16, color=(255, 0, 0))

        result = calculate_structural_similarity(white_png, small_red, generate_diff=True)

        with Image.open(io.BytesIO(result.diff_image)) as diff:
            assert diff.size == (32, 32)
            rgba = diff.convert("RGBA")
            assert rgba.getpixel((0, 0)) == (255, 0, 0, 255)
            assert rgba.getpixel((31, 31))[:3] != (255, 0, 0)

    def test_undecodable_input_raises(self, white_png):
        with pytest.raises(ImageDecodeError):
            calculate_structural_similarity(b"not an image", white_png)

    def test_to_dict(self, white_png):
        data = calculate_structural_similarity(white_png, white_png).to_dict()

        assert data == {
            "score": 1.0,
            "diffPixels": 0,
            "totalPixels": 1024,
            "antialiasedPixels": 0,
        }


class TestHelpers:
    def test_decode_rgba_shape(self, white_png):
        pixels = decode_rgba(white_png)

        assert pixels.shape == (32, 32, 4)
        assert pixels.dtype == np.uint8

    def test_pad_to_canvas(self):
        pixels = np.zeros((2, 3, 4), dtype=np.uint8)

        canvas = pad_to_canvas(pixels, 4, 5)

        assert canvas.shape == (5, 4, 4)
        assert canvas[0, 0].tolist() == [0, 0, 0, 0]
        assert canvas[4, 3].tolist() == [255, 255, 255, 255]

    def test_delta_bounds(self):
        black = np.array([[[0, 0, 0, 255]]], dtype=np.uint8)
        white = np.array([[[255, 255, 255, 255]]], dtype=np.uint8)

        assert color_delta(white, white)[0, 0] == 0.0
        assert 0.0 < color_delta(black, white)[0, 0] <= MAX_YIQ_DELTA

    def test_pass_threshold(self):
        assert is_structural_pass(0.95)
        assert not is_structural_pass(0.949)
        assert is_structural_pass(0.5, threshold=0.5)


def _edge_png(edge_color: tuple[int, int, int] | None = None) -> bytes:
    """16x16 black/white split at column 8, optionally with a blended edge column."""
    image = Image.new("RGB", (16, 16), (255, 255, 255))
    image.paste((0, 0, 0), (0, 0, 8, 16))
    if edge_color is not None:
        image.paste(edge_color, (8, 0, 9, 16))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class TestAntialiasing:
    def test_blended_edge_not_counted(self):
        result = calculate_structural_similarity(_edge_png(), _edge_png((128, 128, 128)))

        assert result.diff_pixels == 0
        assert result.antialiased_pixels == 16
        assert result.score == 1.0

    def test_include_aa_counts_edge(self):
        result = calculate_structural_similarity(
            _edge_png(), _edge_png((128, 128, 128)), include_aa=True
        )

        assert result.diff_pixels == 16
        assert result.antialiased_pixels == 0
        assert result.score == pytest.approx(1 - 16 / 256)

    def test_flat_region_change_still_counted(self):
        image = Image.new("RGB", (16, 16), (255, 255, 255))
        image.paste((0, 0, 255), (4, 4, 8, 8))
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")

        result = calculate_structural_similarity(make_png(16, 16), buffer.getvalue())

        assert result.diff_pixels == 16
        assert result.antialiased_pixels == 0

    def test_antialiased_pixels_drawn_yellow(self):
        result = calculate_structural_similarity(
            _edge_png(), _edge_png((128, 128, 128)), generate_diff=True
        )

        with Image.open(io.BytesIO(result.diff_image)) as diff:
            assert diff.convert("RGB").getpixel((8, 5)) == (255, 255, 0)

    def test_solid_images_have_no_antialiasing(self, white_png):
        pixels = decode_rgba(white_png)

        assert not detect_antialiased(pixels, pixels).any()
