"""Image builders shared by tests."""

import io

from PIL import Image, ImageDraw


def make_png(
    width: int = 32,
    height: int = 32,
    color: tuple[int, ...] = (255, 255, 255),
    mode: str = "RGB",
) -> bytes:
    """Encode a solid-colour image as PNG bytes."""
    image = Image.new(mode, (width, height), color)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def make_pattern_png(width: int = 64, height: int = 64, offset: int = 0) -> bytes:
    """PNG with a few coloured blocks, shifted right by ``offset`` pixels."""
    image = Image.new("RGB", (width, height), (255, 255, 255))
    draw = ImageDraw.Draw(image)
    draw.rectangle((4 + offset, 4, 28 + offset, 20), fill=(30, 90, 200))
    draw.rectangle((8 + offset, 30, 40 + offset, 44), fill=(220, 40, 40))
    draw.line((0, height - 4, width, height - 4), fill=(0, 0, 0), width=2)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
