from __future__ import annotations

import io
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from .errors import DecodeFailure
from .resources import ResourceHandle

MIN_SECONDS_PER_SLIDE = 1.0
MAX_SECONDS_PER_SLIDE = 8.0
MAX_IMAGES = 20

ARTIFACT_DOWNLOAD_NAME = "faceless-affiliate.webm"
ARTIFACT_MEDIA_TYPE = "video/webm"
RECORDING_NAME = "voiceover.webm"
RECORDING_MEDIA_TYPE = "audio/webm"

DEFAULT_BENEFITS = (
    "One-tap setup",
    "Long-lasting battery",
    "Seamless integration",
    "Budget-friendly",
)


class AspectPreset(str, Enum):
    PORTRAIT = "9:16"
    SQUARE = "1:1"
    LANDSCAPE = "16:9"

    @property
    def size(self) -> Tuple[int, int]:
        return _ASPECT_SIZES[self]

    @classmethod
    def parse(cls, value: "AspectPreset | str") -> "AspectPreset":
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for preset in cls:
            if preset.value == text or preset.name.lower() == text.lower():
                return preset
        raise ValueError(f"Unknown aspect preset: {value!r} (expected one of 9:16, 1:1, 16:9)")


_ASPECT_SIZES: Dict[AspectPreset, Tuple[int, int]] = {
    AspectPreset.PORTRAIT: (1080, 1920),
    AspectPreset.SQUARE: (1080, 1080),
    AspectPreset.LANDSCAPE: (1920, 1080),
}


def clamp_seconds_per_slide(value: Any) -> float:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return 2.5
    if seconds != seconds:  # NaN
        return 2.5
    return min(max(seconds, MIN_SECONDS_PER_SLIDE), MAX_SECONDS_PER_SLIDE)


@dataclass(frozen=True)
class StyleConfig:
    """Editor-supplied parameters for one render. Immutable once submitted."""

    title: str = "Amazing Gadget 3000"
    subtitle: str = "Boost productivity with zero effort"
    benefits_text: str = "\n".join(DEFAULT_BENEFITS)
    call_to_action: str = "Grab yours today - link in bio"
    brand_color: str = "#3B82F6"
    aspect: AspectPreset = AspectPreset.PORTRAIT
    seconds_per_slide: float = 2.5

    def __post_init__(self) -> None:
        object.__setattr__(self, "aspect", AspectPreset.parse(self.aspect))
        object.__setattr__(self, "seconds_per_slide", clamp_seconds_per_slide(self.seconds_per_slide))

    @property
    def canvas_size(self) -> Tuple[int, int]:
        return self.aspect.size

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "StyleConfig":
        if not isinstance(data, dict):
            return cls()
        defaults = cls()
        benefits = data.get("benefits", data.get("benefits_text", defaults.benefits_text))
        if isinstance(benefits, (list, tuple)):
            benefits = "\n".join(str(item) for item in benefits if item is not None)
        return cls(
            title=str(data.get("title", defaults.title)),
            subtitle=str(data.get("subtitle", defaults.subtitle)),
            benefits_text=str(benefits),
            call_to_action=str(data.get("call_to_action", data.get("cta", defaults.call_to_action))),
            brand_color=str(data.get("brand_color", defaults.brand_color)),
            aspect=data.get("aspect", defaults.aspect),
            seconds_per_slide=data.get("seconds_per_slide", defaults.seconds_per_slide),
        )


@dataclass(frozen=True)
class SlideSpec:
    index: int
    text: str
    image_id: Optional[str] = None

    @property
    def ordinal(self) -> int:
        return self.index + 1


@dataclass(frozen=True)
class DecodedImage:
    asset_id: str
    image: Image.Image


@dataclass
class ImageAsset:
    asset_id: str
    handle: ResourceHandle
    dimensions: Optional[Tuple[int, int]] = None

    def decode(self) -> DecodedImage:
        try:
            with Image.open(io.BytesIO(self.handle.read_bytes())) as img:
                img.load()
                rgb = img.convert("RGB")
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            raise DecodeFailure(f"Could not decode image {self.handle.name}: {exc}") from exc
        self.dimensions = rgb.size
        return DecodedImage(asset_id=self.asset_id, image=rgb)

    def handles(self) -> List[ResourceHandle]:
        return [self.handle]


@dataclass
class VoiceAsset:
    handle: ResourceHandle
    source: str = "upload"
    preview: Optional[ResourceHandle] = None

    def handles(self) -> List[ResourceHandle]:
        owned = [self.handle]
        if self.preview is not None:
            owned.append(self.preview)
        return owned


@dataclass
class OutputArtifact:
    handle: ResourceHandle
    session_id: str
    frame_count: int
    duration: float
    download_name: str = ARTIFACT_DOWNLOAD_NAME
    media_type: str = ARTIFACT_MEDIA_TYPE
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def url(self) -> str:
        return self.handle.url

    def handles(self) -> List[ResourceHandle]:
        return [self.handle]
