from __future__ import annotations

import asyncio
import wave
from pathlib import Path
from typing import Optional

import numpy as np
from moviepy.audio.io.AudioFileClip import AudioFileClip

from logging_utils import get_logger

from .errors import PlaybackAutoplayBlock
from .music import synthesize_calm_music

logger = get_logger(__name__)

MUSIC_GAIN = 0.15
VOICE_GAIN = 0.9


def load_voice_samples(path: Path, sample_rate: int) -> np.ndarray:
    """Decode a voice file to mono float32 at its natural playback rate."""
    try:
        clip = AudioFileClip(str(path), fps=sample_rate)
    except Exception as exc:
        raise PlaybackAutoplayBlock(f"Voice track could not be opened: {path.name}") from exc
    try:
        array = clip.to_soundarray(fps=sample_rate)
    except Exception as exc:
        raise PlaybackAutoplayBlock(f"Voice track could not be decoded: {path.name}") from exc
    finally:
        clip.close()

    samples = np.asarray(array, dtype=np.float32)
    if samples.ndim == 2:
        samples = samples.mean(axis=1)
    return samples


def write_wav(path: Path, samples: np.ndarray, sample_rate: int) -> Path:
    pcm = (np.clip(samples, -1.0, 1.0) * 32767.0).astype("<i2")
    with wave.open(str(path), "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm.tobytes())
    return path


def _fit(samples: np.ndarray, length: int) -> np.ndarray:
    if samples.size >= length:
        return samples[:length]
    padded = np.zeros(length, dtype=np.float32)
    padded[: samples.size] = samples
    return padded


class AudioMixGraph:
    """Music bus and voice bus summed into one sink at fixed gains."""

    def __init__(
        self,
        *,
        music_enabled: bool,
        music_duration: float,
        voice_path: Optional[Path] = None,
        sample_rate: int = 48000,
    ) -> None:
        self.music_enabled = bool(music_enabled)
        self.music_duration = float(music_duration)
        self.voice_path = voice_path
        self.sample_rate = int(sample_rate)
        self.voice_active = voice_path is not None
        self.sink_path: Optional[Path] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def render(self, capture_duration: float) -> np.ndarray:
        """Mix both buses over exactly ``capture_duration`` seconds."""
        length = int(round(capture_duration * self.sample_rate))
        mixed = np.zeros(length, dtype=np.float32)

        if self.music_enabled:
            music = synthesize_calm_music(self.music_duration, self.sample_rate)
            mixed += MUSIC_GAIN * _fit(music, length)

        if self.voice_path is not None:
            try:
                voice = load_voice_samples(self.voice_path, self.sample_rate)
            except PlaybackAutoplayBlock as exc:
                self.voice_active = False
                logger.warning("Voice playback unavailable; continuing without voice: %s", exc)
            else:
                mixed += VOICE_GAIN * _fit(voice, length)

        return np.clip(mixed, -1.0, 1.0)

    def render_to_wav(self, path: Path, capture_duration: float) -> Path:
        write_wav(path, self.render(capture_duration), self.sample_rate)
        self.sink_path = path
        return path

    def start(self, path: Path, capture_duration: float) -> asyncio.Task:
        """Begin generating the sink in a worker thread."""
        if self._task is not None:
            raise RuntimeError("Audio mix graph already started")
        self._task = asyncio.ensure_future(asyncio.to_thread(self.render_to_wav, path, capture_duration))
        logger.debug(
            "Audio mix started (music=%s, voice=%s, %.2fs)",
            self.music_enabled,
            self.voice_path is not None,
            capture_duration,
        )
        return self._task

    async def wait(self) -> Path:
        if self._task is None:
            raise RuntimeError("Audio mix graph was never started")
        return await self._task

    async def aclose(self) -> None:
        """Wait for the worker thread to settle, then release the sink.

        A running ``to_thread`` job cannot be cancelled, so it must finish
        before its output directory is removed.
        """
        if self._task is not None and not self._task.done():
            await asyncio.gather(self._task, return_exceptions=True)
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if self.sink_path is not None:
            try:
                self.sink_path.unlink(missing_ok=True)
            except OSError:
                logger.warning("Failed to delete audio sink: %s", self.sink_path)
        logger.debug("Audio mix graph released")
