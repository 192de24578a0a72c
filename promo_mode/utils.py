from __future__ import annotations

import math
from functools import lru_cache
from pathlib import Path
from typing import Tuple

from PIL import ImageFont

_FALLBACK_FONTS = (
    "DejaVuSans-Bold.ttf",
    "Arial Bold.ttf",
    "Arial.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/System/Library/Fonts/Supplemental/Arial Bold.ttf",
)


def hex_to_rgb(value: str | None, fallback: Tuple[int, int, int] = (255, 255, 255)) -> Tuple[int, int, int]:
    if not value:
        return fallback
    text = value.strip().lstrip("#")
    if len(text) not in (3, 6, 8):
        return fallback
    if len(text) == 3:
        text = "".join(ch * 2 for ch in text)
    if len(text) == 8:
        text = text[:6]
    try:
        r = int(text[0:2], 16)
        g = int(text[2:4], 16)
        b = int(text[4:6], 16)
        return (r, g, b)
    except ValueError:
        return fallback


def with_alpha(rgb: Tuple[int, int, int], opacity: float) -> Tuple[int, int, int, int]:
    alpha = int(round(min(max(opacity, 0.0), 1.0) * 255))
    return (rgb[0], rgb[1], rgb[2], alpha)


@lru_cache(maxsize=32)
def load_font(path: str | None, size: int) -> ImageFont.FreeTypeFont:
    size = max(1, int(size))
    if path:
        try:
            font_path = Path(path).expanduser()
            if font_path.exists():
                return ImageFont.truetype(str(font_path), size=size)
        except OSError:
            pass
    for candidate in _FALLBACK_FONTS:
        try:
            return ImageFont.truetype(candidate, size=size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def ease_out_cubic(t: float) -> float:
    return 1.0 - math.pow(1.0 - t, 3)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
