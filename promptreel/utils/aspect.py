"""
Aspect Ratio Helpers
Parsing "W:H" strings and deriving even output dimensions
"""

from typing import Tuple

from .logger import get_logger

logger = get_logger()

DEFAULT_ASPECT_RATIO = 16 / 9
BASE_SIDE = 1080


def parse_aspect_ratio(value: str) -> float:
    """'9:16' -> 0.5625; malformed values fall back to 16:9"""
    try:
        width, height = (float(part) for part in value.split(":"))
        if width <= 0 or height <= 0:
            raise ValueError(value)
        return width / height
    except (AttributeError, ValueError):
        logger.warning(f"Invalid aspect ratio '{value}', using 16:9")
        return DEFAULT_ASPECT_RATIO


def _even(value: float) -> int:
    rounded = int(round(value))
    return rounded if rounded % 2 == 0 else rounded + 1


def output_dimensions(aspect_ratio: float, base: int = BASE_SIDE) -> Tuple[int, int]:
    """
    Shared render size for a target aspect ratio.

    The short side is fixed at `base` and the long side is rounded up to an
    even number, so 9:16 -> 1080x1920 and 16:9 -> 1920x1080.
    """
    if aspect_ratio >= 1:
        return _even(base * aspect_ratio), base
    return base, _even(base / aspect_ratio)


def orientation_of(aspect_ratio: float) -> str:
    if aspect_ratio < 1:
        return "portrait"
    if aspect_ratio > 1:
        return "landscape"
    return "square"
