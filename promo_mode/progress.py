from __future__ import annotations

import sys
import time
from dataclasses import dataclass
from typing import TextIO


def format_hms(seconds: float) -> str:
    if seconds < 0:
        seconds = 0
    seconds = int(round(seconds))
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    if h > 0:
        return f"{h:02d}:{m:02d}:{s:02d}"
    return f"{m:02d}:{s:02d}"


@dataclass
class ConsoleBar:
    """Single-line frame counter with elapsed time and ETA."""

    total_frames: int
    label: str = "Render"
    width: int = 24
    stream: TextIO = sys.stderr
    min_interval: float = 0.1

    def __post_init__(self) -> None:
        self.start_time = time.time()
        self.last_render = 0.0
        self.current = 0
        self._draw(0)

    def update(self, frame: int, total: int | None = None) -> None:
        if total is not None:
            self.total_frames = total
        self.current = frame
        now = time.time()
        # Rate-limit redraws; a 30 fps render would otherwise flood the terminal.
        if now - self.last_render < self.min_interval and frame < self.total_frames:
            return
        self.last_render = now
        self._draw(frame)

    def finish(self) -> None:
        self._draw(self.total_frames)
        self.stream.write("\n")
        self.stream.flush()

    # ------------------------------------------------------------------
    def _draw(self, frame: int) -> None:
        total = max(self.total_frames, 1)
        cur = min(max(frame, 0), total)
        frac = cur / total
        filled = int(round(self.width * frac))
        bar = "█" * filled + "·" * (self.width - filled)
        elapsed = time.time() - self.start_time
        eta = 0.0 if frac <= 0.0001 else elapsed * (1.0 / frac - 1.0)
        msg = (
            f"[{bar}] {int(frac * 100):3d}% | "
            f"frame {cur}/{total} | "
            f"{format_hms(elapsed)} elapsed | "
            f"ETA {format_hms(eta)} | {self.label}"
        )
        self.stream.write("\r" + msg)
        self.stream.flush()
