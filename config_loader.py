"""Configuration loader for the promo video composer."""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

try:
    import yaml  # type: ignore
except ModuleNotFoundError as exc:  # pragma: no cover - import guard
    raise RuntimeError(
        "PyYAML is required. Please install it with `pip install pyyaml`."
    ) from exc


@dataclass
class AppConfig:
    """Wrapper around raw configuration with resolved paths."""

    raw: Dict[str, Any]
    config_path: Path | None
    project_root: Path
    output_dir: Path
    temp_dir: Path
    log_file: Path

    @property
    def logging_level(self) -> str:
        logging_cfg = self.raw.get("logging", {}) if isinstance(self.raw.get("logging"), dict) else {}
        level = logging_cfg.get("level") or logging_cfg.get("LEVEL") or "INFO"
        return str(level).upper()

    @property
    def video(self) -> Dict[str, Any]:
        video_cfg = self.raw.get("video", {})
        return video_cfg if isinstance(video_cfg, dict) else {}

    def to_debug_dict(self) -> Dict[str, Any]:
        return {
            "config_path": str(self.config_path) if self.config_path else None,
            "output_dir": str(self.output_dir),
            "temp_dir": str(self.temp_dir),
            "log_file": str(self.log_file),
        }

    def dumps(self) -> str:
        """Return a JSON string for diagnostics."""
        return json.dumps(self.to_debug_dict(), ensure_ascii=False, indent=2)


def build_config(raw: Dict[str, Any] | None, *, project_root: Path, config_path: Path | None = None) -> AppConfig:
    """Resolve key directories of an already parsed configuration mapping."""
    raw = raw if isinstance(raw, dict) else {}
    root = project_root.resolve()

    output_cfg = raw.get("output", {}) if isinstance(raw.get("output"), dict) else {}
    logging_cfg = raw.get("logging", {}) if isinstance(raw.get("logging"), dict) else {}

    output_dir = (root / output_cfg.get("directory", "output")).resolve()
    temp_dir = (root / output_cfg.get("temp_directory", "temp")).resolve()
    log_file = (root / logging_cfg.get("file", "logs/run.log")).resolve()

    return AppConfig(
        raw=raw,
        config_path=config_path,
        project_root=root,
        output_dir=output_dir,
        temp_dir=temp_dir,
        log_file=log_file,
    )


def load_config(path: Path | str, project_root: Path | None = None) -> AppConfig:
    """Load YAML config and resolve key directories."""
    config_path = Path(path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}

    root = project_root if project_root else config_path.parent
    return build_config(raw, project_root=root, config_path=config_path)
