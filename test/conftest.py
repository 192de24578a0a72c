from __future__ import annotations

import asyncio
import sys
import wave
from pathlib import Path
from typing import List, Optional

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import numpy as np
import pytest

from promo_mode.errors import EncodingFailure
from promo_mode.frame_renderer import DrawingSurface
from promo_mode.recorder import CaptureStream, RecorderConfig
from promo_mode.settings import PromoSettings

SAMPLE_RATE = 8000


def make_settings(tmp_path: Path) -> PromoSettings:
    return PromoSettings(
        temp_dir=tmp_path / "temp",
        realtime=False,
        release_delay=0.0,
        recorder=RecorderConfig(audio_sample_rate=SAMPLE_RATE),
    )


def small_surface(style) -> DrawingSurface:
    width, height = style.canvas_size
    return DrawingSurface(width // 30, height // 30)


class FakeRecorder:
    """Counts frames and reads back the audio sink instead of encoding."""

    def __init__(self, work_dir: Path, *, fail_on_stop: bool = False, fail_on_frame: Optional[int] = None) -> None:
        self.work_dir = work_dir
        self.fail_on_stop = fail_on_stop
        self.fail_on_frame = fail_on_frame
        self.stream: Optional[CaptureStream] = None
        self.frames = 0
        self.frame_sizes: set = set()
        self.audio: Optional[np.ndarray] = None
        self.aborted = False

    async def start(self, stream: CaptureStream) -> None:
        self.stream = stream

    async def write_frame(self, surface: DrawingSurface) -> None:
        if self.fail_on_frame is not None and self.frames >= self.fail_on_frame:
            # Yield first so the audio worker thread is already running.
            await asyncio.sleep(0.01)
            raise EncodingFailure("encoder pipe broke")
        self.frames += 1
        self.frame_sizes.add(surface.size)

    def stop(self) -> "asyncio.Task[bytes]":
        return asyncio.ensure_future(self._finish())

    async def abort(self) -> None:
        self.aborted = True

    async def _finish(self) -> bytes:
        assert self.stream is not None
        sink = await self.stream.audio.wait()
        with wave.open(str(sink), "rb") as wav_file:
            pcm = wav_file.readframes(wav_file.getnframes())
        self.audio = np.frombuffer(pcm, dtype="<i2")
        if self.fail_on_stop:
            raise EncodingFailure("encoder exploded")
        return b"WEBM" + self.frames.to_bytes(4, "big")


class RecorderFactory:
    def __init__(self, *, fail_on_stop: bool = False, fail_on_frame: Optional[int] = None) -> None:
        self.fail_on_stop = fail_on_stop
        self.fail_on_frame = fail_on_frame
        self.created: List[FakeRecorder] = []

    def __call__(self, work_dir: Path) -> FakeRecorder:
        recorder = FakeRecorder(work_dir, fail_on_stop=self.fail_on_stop, fail_on_frame=self.fail_on_frame)
        self.created.append(recorder)
        return recorder


@pytest.fixture
def settings(tmp_path: Path) -> PromoSettings:
    return make_settings(tmp_path)


@pytest.fixture
def recorders() -> RecorderFactory:
    return RecorderFactory()


@pytest.fixture
def failing_recorders() -> RecorderFactory:
    return RecorderFactory(fail_on_stop=True)


@pytest.fixture
def surface_factory():
    return small_surface


@pytest.fixture
def midstream_failing_recorders() -> RecorderFactory:
    return RecorderFactory(fail_on_frame=3)
