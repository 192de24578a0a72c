from __future__ import annotations

import re
from typing import List, Sequence, Tuple

from .models import ImageAsset, SlideSpec

_LINE_SPLIT = re.compile(r"\r?\n")


def parse_benefit_lines(text: str | None) -> Tuple[str, ...]:
    """Split benefit text into trimmed, non-empty lines."""
    if not text:
        return ()
    return tuple(line.strip() for line in _LINE_SPLIT.split(text) if line.strip())


def slide_count(text: str | None) -> int:
    return max(len(parse_benefit_lines(text)), 1)


def build_deck(benefits_text: str | None, images: Sequence[ImageAsset] = ()) -> List[SlideSpec]:
    """Derive the ordered slide list and pair slides with images by upload order.

    Images beyond the slide count are ignored; slides beyond the image count
    carry no image.
    """
    lines = parse_benefit_lines(benefits_text)
    texts = list(lines) if lines else [""]
    slides: List[SlideSpec] = []
    for index, text in enumerate(texts):
        image_id = images[index].asset_id if index < len(images) else None
        slides.append(SlideSpec(index=index, text=text, image_id=image_id))
    return slides
