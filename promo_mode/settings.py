"""Helpers for resolving promo pipeline settings from the loaded config."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from config_loader import AppConfig

from .recorder import RecorderConfig


def _to_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lower = value.strip().lower()
        if lower in {"true", "1", "yes", "on"}:
            return True
        if lower in {"false", "0", "no", "off"}:
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    return default


@dataclass(frozen=True)
class PromoSettings:
    temp_dir: Path
    realtime: bool = True
    font_path: Optional[str] = None
    release_delay: float = 0.25
    recorder: RecorderConfig = field(default_factory=RecorderConfig)

    @classmethod
    def from_config(cls, config: AppConfig) -> "PromoSettings":
        video_cfg = config.video
        font_path = video_cfg.get("font_path")
        return cls(
            temp_dir=config.temp_dir,
            realtime=_to_bool(video_cfg.get("realtime"), True),
            font_path=str(font_path) if font_path else None,
            recorder=RecorderConfig.from_config(video_cfg),
        )
