"""Best-effort structured extraction from capability text.

Capability answers arrive as free text that usually, but not always,
contains JSON, often wrapped in prose or code fences. Everything here
degrades to an empty result instead of raising; callers only ever see
validated, typed values.
"""

import json
import math
from typing import Any

from ..checkpoint.types import BoundingBox, ComponentIdentification
from ..extractor_logging import LogCategory, get_category_logger

logger = get_category_logger(LogCategory.VISION)

_decoder = json.JSONDecoder()


def _extract_json(text: str, opener: str, closer: str, expected: type) -> Any | None:
    """Find the first JSON value of ``expected`` type delimited by opener/closer.

    The widest span (first opener to last closer) is tried first; if that is
    not valid JSON, each opener position is tried in turn.
    """
    if not isinstance(text, str):
        return None

    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end <= start:
        return None

    try:
        value = json.loads(text[start : end + 1])
        if isinstance(value, expected):
            return value
    except ValueError:
        # JSONDecodeError, or an integer literal past the digit limit
        pass

    position = start
    while position != -1:
        try:
            value, _ = _decoder.raw_decode(text, position)
            if isinstance(value, expected):
                return value
        except ValueError:
            pass
        position = text.find(opener, position + 1)
    return None


def extract_json_array(text: str) -> list | None:
    """Return the first array-shaped JSON value in ``text``, or None."""
    return _extract_json(text, "[", "]", list)


def extract_json_object(text: str) -> dict | None:
    """Return the first object-shaped JSON value in ``text``, or None."""
    return _extract_json(text, "{", "}", dict)


def is_number(value: Any) -> bool:
    """True for finite ints and floats; booleans do not count.

    Integers too large to convert to a float are rejected.
    """
    if not isinstance(value, int | float) or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return min(high, max(low, value))


def parse_component(item: Any) -> ComponentIdentification | None:
    """Validate one candidate element; None when it fails shape checks."""
    if not isinstance(item, dict):
        return None
    if not isinstance(item.get("type"), str) or not isinstance(item.get("name"), str):
        return None

    box = item.get("boundingBox")
    if not isinstance(box, dict):
        return None
    if not all(is_number(box.get(key)) for key in ("x", "y", "width", "height")):
        return None

    confidence = item.get("confidence")
    if not is_number(confidence):
        return None

    return ComponentIdentification(
        type=item["type"],
        name=item["name"],
        bounding_box=BoundingBox(
            x=max(0, box["x"]),
            y=max(0, box["y"]),
            width=max(0, box["width"]),
            height=max(0, box["height"]),
        ),
        confidence=clamp(float(confidence)),
    )


def parse_components(text: str) -> list[ComponentIdentification]:
    """Parse a component list from capability text.

    Args:
        text: Raw capability answer.

    Returns:
        Components that passed validation, in answer order. Empty when no
        array is found or it cannot be parsed.
    """
    items = extract_json_array(text)
    if items is None:
        logger.warning("No JSON array found in vision response, returning no components")
        return []

    components = [c for c in (parse_component(item) for item in items) if c is not None]
    dropped = len(items) - len(components)
    if dropped:
        logger.debug(f"Dropped {dropped} malformed component candidates")
    return components
