from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from logging_utils import get_logger

from .models import MAX_IMAGES, MAX_SECONDS_PER_SLIDE, MIN_SECONDS_PER_SLIDE, AspectPreset, StyleConfig

logger = get_logger(__name__)

_HEX_COLOR = re.compile(r"^#?(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


@dataclass(frozen=True)
class PromoJob:
    style: StyleConfig
    image_paths: Tuple[Path, ...] = ()
    voice_path: Optional[Path] = None
    music_enabled: bool = True
    source_path: Optional[Path] = field(default=None, compare=False)


def _resolve_path(raw: Any, *, name: str, base_dir: Path) -> Path:
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError(f"{name} must be a non-empty string path")
    path = Path(raw.strip()).expanduser()
    if not path.is_absolute():
        path = (base_dir / path).resolve()
    if not path.exists():
        raise FileNotFoundError(f"{name} not found: {path}")
    return path


def _parse_text(raw: Dict[str, Any], key: str, default: str) -> str:
    value = raw.get(key, default)
    if value is None:
        return ""
    if not isinstance(value, (str, int, float)):
        raise ValueError(f"style.{key} must be a string")
    return str(value)


def _parse_style(raw: Dict[str, Any] | None) -> StyleConfig:
    if raw is None:
        return StyleConfig()
    if not isinstance(raw, dict):
        raise ValueError("style must be an object")
    defaults = StyleConfig()

    benefits_raw = raw.get("benefits", raw.get("benefits_text", defaults.benefits_text))
    if isinstance(benefits_raw, (list, tuple)):
        for idx, item in enumerate(benefits_raw, start=1):
            if item is not None and not isinstance(item, str):
                raise ValueError(f"style.benefits must contain strings only (item {idx})")
        benefits = "\n".join(item for item in benefits_raw if item)
    elif isinstance(benefits_raw, str):
        benefits = benefits_raw
    elif benefits_raw is None:
        benefits = ""
    else:
        raise ValueError("style.benefits must be a string or an array of strings")

    color = raw.get("brand_color", defaults.brand_color)
    if not isinstance(color, str) or not _HEX_COLOR.match(color.strip()):
        raise ValueError(f"style.brand_color must be a hex color like #3B82F6 (got {color!r})")
    color = color.strip()
    if not color.startswith("#"):
        color = "#" + color

    try:
        aspect = AspectPreset.parse(raw.get("aspect", defaults.aspect))
    except ValueError as exc:
        raise ValueError(f"style.aspect: {exc}") from exc

    seconds_raw = raw.get("seconds_per_slide", defaults.seconds_per_slide)
    try:
        seconds = float(seconds_raw)
    except (TypeError, ValueError):
        raise ValueError("style.seconds_per_slide must be numeric")
    if not MIN_SECONDS_PER_SLIDE <= seconds <= MAX_SECONDS_PER_SLIDE:
        logger.warning(
            "seconds_per_slide %.2f out of range; clamping to %.0f-%.0f",
            seconds,
            MIN_SECONDS_PER_SLIDE,
            MAX_SECONDS_PER_SLIDE,
        )

    return StyleConfig(
        title=_parse_text(raw, "title", defaults.title),
        subtitle=_parse_text(raw, "subtitle", defaults.subtitle),
        benefits_text=benefits,
        call_to_action=_parse_text(raw, "call_to_action", raw.get("cta", defaults.call_to_action)),
        brand_color=color,
        aspect=aspect,
        seconds_per_slide=seconds,
    )


def _parse_music(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError("music must be a boolean")


def parse_job(raw: Dict[str, Any], *, base_dir: Path) -> PromoJob:
    if not isinstance(raw, dict):
        raise ValueError("Job root must be an object")

    style = _parse_style(raw.get("style"))

    images_raw = raw.get("images") or []
    if not isinstance(images_raw, (list, tuple)):
        raise ValueError("images must be an array of paths")
    images: List[Path] = [
        _resolve_path(item, name=f"images[{idx}]", base_dir=base_dir) for idx, item in enumerate(images_raw)
    ]
    if len(images) > MAX_IMAGES:
        logger.warning("Job lists %d images; only the first %d are used", len(images), MAX_IMAGES)
        images = images[:MAX_IMAGES]

    voice_raw = raw.get("voice")
    voice = _resolve_path(voice_raw, name="voice", base_dir=base_dir) if voice_raw is not None else None

    return PromoJob(
        style=style,
        image_paths=tuple(images),
        voice_path=voice,
        music_enabled=_parse_music(raw.get("music")),
    )


def load_promo_job(path: Path | str) -> PromoJob:
    """Load a YAML or JSON job file. Relative media paths resolve against its directory."""
    job_path = Path(path).expanduser().resolve()
    if not job_path.exists():
        raise FileNotFoundError(f"Job file not found: {job_path}")

    text = job_path.read_text(encoding="utf-8")
    if job_path.suffix.lower() == ".json":
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Failed to parse JSON ({exc})") from exc
    else:
        try:
            raw = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ValueError(f"Failed to parse YAML ({exc})") from exc

    job = parse_job(raw, base_dir=job_path.parent)
    return replace(job, source_path=job_path)
