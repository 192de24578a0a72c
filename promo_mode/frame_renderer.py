from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Tuple

import numpy as np
from PIL import Image, ImageDraw

from logging_utils import get_logger

from .errors import AcquisitionFailure
from .models import DecodedImage, SlideSpec, StyleConfig
from .utils import hex_to_rgb, load_font, round_half_up, with_alpha

logger = get_logger(__name__)

GRADIENT_END = (17, 24, 39)  # #111827
WHITE = (255, 255, 255)
WATERMARK_TEXT = "#affiliate"
BACKDROP_OPACITY = 0.25
BACKDROP_CACHE_SIZE = 4
TITLE_ENTRANCE_OFFSET_PX = 16


class DrawingSurface:
    """Fixed-size pixel buffer the frame renderer draws into."""

    def __init__(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise AcquisitionFailure(f"Invalid drawing surface size: {width}x{height}")
        try:
            self.image = Image.new("RGB", (int(width), int(height)), (0, 0, 0))
        except (ValueError, MemoryError) as exc:
            raise AcquisitionFailure(f"Could not allocate {width}x{height} drawing surface") from exc

    @classmethod
    def for_style(cls, style: StyleConfig) -> "DrawingSurface":
        width, height = style.canvas_size
        return cls(width, height)

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size

    @property
    def width(self) -> int:
        return self.image.size[0]

    @property
    def height(self) -> int:
        return self.image.size[1]

    def tobytes(self) -> bytes:
        """Raw rgb24 pixels, row-major."""
        return self.image.tobytes()


@dataclass(frozen=True)
class SlideLayout:
    """Pixel metrics for one surface size. Everything scales with height."""

    width: int
    height: int
    title_size: int
    subtitle_size: int
    benefit_size: int
    cta_size: int
    watermark_size: int
    text_x: int
    title_base_y: float
    block_x: int
    block_y: int
    block_width: int
    card_height: int
    card_radius: int = 24
    card_pad_x: int = 16
    card_pad_top: int = 24
    pill_pad_x: int = 18
    pill_height: int = 0
    pill_bottom_gap: int = 20
    watermark_margin: int = 24

    @classmethod
    def for_size(cls, width: int, height: int) -> "SlideLayout":
        return cls(
            width=width,
            height=height,
            title_size=round_half_up(height * 0.05),
            subtitle_size=round_half_up(height * 0.028),
            benefit_size=round_half_up(height * 0.04),
            cta_size=round_half_up(height * 0.028),
            watermark_size=round_half_up(height * 0.02),
            text_x=round_half_up(width * 0.08),
            title_base_y=height * 0.12,
            block_x=round_half_up(width * 0.08),
            block_y=round_half_up(height * 0.35),
            block_width=round_half_up(width * 0.84),
            card_height=round_half_up(height * 0.32),
            pill_height=round_half_up(height * 0.05),
        )

    @property
    def line_height(self) -> int:
        return round_half_up(self.benefit_size * 1.25)

    @property
    def card_box(self) -> Tuple[int, int, int, int]:
        x0 = self.block_x - self.card_pad_x
        y0 = self.block_y - self.card_pad_top
        return (x0, y0, x0 + self.block_width + self.card_pad_x * 2, y0 + self.card_height)

    def title_y(self, progress: float) -> int:
        return round_half_up(self.title_base_y + (1.0 - progress) * TITLE_ENTRANCE_OFFSET_PX)


@lru_cache(maxsize=8)
def linear_gradient(size: Tuple[int, int], start: Tuple[int, int, int], end: Tuple[int, int, int]) -> Image.Image:
    """Gradient along the top-left to bottom-right diagonal."""
    width, height = size
    xs = np.arange(width, dtype=np.float32)[np.newaxis, :]
    ys = np.arange(height, dtype=np.float32)[:, np.newaxis]
    t = (xs * width + ys * height) / float(width * width + height * height)
    t = np.clip(t, 0.0, 1.0)[..., np.newaxis]
    start_arr = np.asarray(start, dtype=np.float32)
    end_arr = np.asarray(end, dtype=np.float32)
    pixels = start_arr * (1.0 - t) + end_arr * t
    return Image.fromarray(np.round(pixels).astype(np.uint8))


def cover_fit(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """Scale to fill ``size`` preserving aspect, centered and cropped."""
    width, height = size
    src_w, src_h = image.size
    scale = max(width / src_w, height / src_h)
    scaled_w = max(width, int(round(src_w * scale)))
    scaled_h = max(height, int(round(src_h * scale)))
    resampling = getattr(Image, "Resampling", Image)
    scaled = image.convert("RGB").resize((scaled_w, scaled_h), resampling.LANCZOS)
    left = (scaled_w - width) // 2
    top = (scaled_h - height) // 2
    return scaled.crop((left, top, left + width, top + height))


def wrap_text(text: str, font, max_width: float) -> List[str]:
    """Greedy word wrap.

    A word joins the current line while the line still fits ``max_width``.
    A word that alone is wider than ``max_width`` gets a line of its own.
    """
    words = text.split()
    if not words:
        return [""]
    lines: List[str] = []
    current = ""
    for word in words:
        candidate = f"{current} {word}" if current else word
        if not current or font.getlength(candidate) <= max_width:
            current = candidate
        else:
            lines.append(current)
            current = word
    lines.append(current)
    return lines


class FrameRenderer:
    """Draw one complete slide frame. Every call repaints the whole surface."""

    def __init__(self, *, font_path: str | None = None) -> None:
        self.font_path = font_path
        self._backdrops: OrderedDict[Tuple[str, int, int], Image.Image] = OrderedDict()

    def render(
        self,
        surface: DrawingSurface,
        slide: SlideSpec,
        progress: float,
        style: StyleConfig,
        image: Optional[DecodedImage] = None,
    ) -> None:
        progress = min(max(progress, 0.0), 1.0)
        layout = SlideLayout.for_size(surface.width, surface.height)
        brand = hex_to_rgb(style.brand_color, fallback=(59, 130, 246))

        surface.image.paste(linear_gradient(surface.size, brand, GRADIENT_END))
        if image is not None:
            self._draw_backdrop(surface, image)

        draw = ImageDraw.Draw(surface.image, "RGBA")
        self._draw_heading(draw, layout, style, progress)
        self._draw_card(draw, layout)
        self._draw_benefit(draw, layout, slide.text)
        self._draw_cta(draw, layout, style.call_to_action, brand)
        self._draw_watermark(draw, layout)

    # ------------------------------------------------------------------

    def _draw_backdrop(self, surface: DrawingSurface, image: DecodedImage) -> None:
        key = (image.asset_id, surface.width, surface.height)
        backdrop = self._backdrops.get(key)
        if backdrop is None:
            backdrop = cover_fit(image.image, surface.size)
            self._backdrops[key] = backdrop
            while len(self._backdrops) > BACKDROP_CACHE_SIZE:
                self._backdrops.popitem(last=False)
        else:
            self._backdrops.move_to_end(key)
        surface.image.paste(Image.blend(surface.image, backdrop, BACKDROP_OPACITY))

    def _draw_heading(self, draw: ImageDraw.ImageDraw, layout: SlideLayout, style: StyleConfig, progress: float) -> None:
        title_font = load_font(self.font_path, layout.title_size)
        subtitle_font = load_font(self.font_path, layout.subtitle_size)
        title_y = layout.title_y(progress)
        if style.title:
            draw.text((layout.text_x, title_y), style.title, font=title_font, fill=with_alpha(WHITE, 1.0), anchor="ls")
        if style.subtitle:
            draw.text(
                (layout.text_x, title_y + layout.subtitle_size + 10),
                style.subtitle,
                font=subtitle_font,
                fill=with_alpha(WHITE, 0.9),
                anchor="ls",
            )

    def _draw_card(self, draw: ImageDraw.ImageDraw, layout: SlideLayout) -> None:
        draw.rounded_rectangle(layout.card_box, radius=layout.card_radius, fill=with_alpha(WHITE, 0.08))

    def _draw_benefit(self, draw: ImageDraw.ImageDraw, layout: SlideLayout, text: str) -> None:
        font = load_font(self.font_path, layout.benefit_size)
        cursor_y = layout.block_y + layout.line_height
        for line in wrap_text(text, font, layout.block_width):
            if line:
                draw.text((layout.block_x, cursor_y), line, font=font, fill=with_alpha(WHITE, 1.0), anchor="ls")
            cursor_y += layout.line_height

    def _draw_cta(self, draw: ImageDraw.ImageDraw, layout: SlideLayout, text: str, brand: Tuple[int, int, int]) -> None:
        font = load_font(self.font_path, layout.cta_size)
        pill_w = round_half_up(font.getlength(text) + layout.pill_pad_x * 2)
        pill_h = layout.pill_height
        pill_x = layout.block_x
        pill_y = layout.block_y + layout.card_height - pill_h - layout.pill_bottom_gap
        draw.rounded_rectangle(
            (pill_x, pill_y, pill_x + pill_w, pill_y + pill_h),
            radius=pill_h // 2,
            fill=with_alpha(WHITE, 1.0),
        )
        if text:
            draw.text(
                (pill_x + pill_w / 2, pill_y + pill_h / 2),
                text,
                font=font,
                fill=with_alpha(brand, 1.0),
                anchor="mm",
            )

    def _draw_watermark(self, draw: ImageDraw.ImageDraw, layout: SlideLayout) -> None:
        font = load_font(self.font_path, layout.watermark_size)
        draw.text(
            (layout.width - layout.watermark_margin, layout.height - layout.watermark_margin),
            WATERMARK_TEXT,
            font=font,
            fill=with_alpha(WHITE, 0.7),
            anchor="rs",
        )
