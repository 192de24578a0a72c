from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Dict, List, Optional, Protocol

from logging_utils import get_logger

from .errors import EncodingFailure
from .ffmpeg_runner import log_stderr_tail, run_ffmpeg, spawn_ffmpeg
from .frame_renderer import DrawingSurface
from .mixer import AudioMixGraph

logger = get_logger(__name__)


@dataclass(frozen=True)
class RecorderConfig:
    ffmpeg_binary: str = "ffmpeg"
    codec: str = "libvpx-vp9"
    crf: Optional[int] = 32
    deadline: str = "realtime"
    cpu_used: int = 8
    audio_codec: str = "libopus"
    audio_bitrate: Optional[str] = "128k"
    audio_sample_rate: int = 48000

    @classmethod
    def from_config(cls, video_cfg: Dict[str, Any] | None) -> "RecorderConfig":
        cfg = video_cfg if isinstance(video_cfg, dict) else {}
        defaults = cls()

        def _int(key: str, default: Optional[int]) -> Optional[int]:
            value = cfg.get(key, default)
            if value is None:
                return None
            try:
                return int(value)
            except (TypeError, ValueError):
                logger.warning("Invalid video.%s=%r; using %r", key, value, default)
                return default

        return cls(
            ffmpeg_binary=str(cfg.get("ffmpeg_binary") or defaults.ffmpeg_binary),
            codec=str(cfg.get("codec") or defaults.codec),
            crf=_int("crf", defaults.crf),
            deadline=str(cfg.get("deadline") or defaults.deadline),
            cpu_used=_int("cpu_used", defaults.cpu_used) or 0,
            audio_codec=str(cfg.get("audio_codec") or defaults.audio_codec),
            audio_bitrate=str(cfg["audio_bitrate"]) if cfg.get("audio_bitrate") else defaults.audio_bitrate,
            audio_sample_rate=_int("audio_sample_rate", defaults.audio_sample_rate) or defaults.audio_sample_rate,
        )


@dataclass(frozen=True)
class CaptureStream:
    """The live pair the encoder consumes: surface geometry plus the audio sink."""

    width: int
    height: int
    fps: int
    duration: float
    audio: AudioMixGraph


class StreamRecorder(Protocol):
    async def start(self, stream: CaptureStream) -> None:
        ...

    async def write_frame(self, surface: DrawingSurface) -> None:
        ...

    def stop(self) -> "asyncio.Task[bytes]":
        ...

    async def abort(self) -> None:
        ...


class FFmpegStreamRecorder:
    """Encode piped rgb24 frames to VP9, then mux the audio sink as Opus into WebM."""

    def __init__(self, config: RecorderConfig, work_dir: Path) -> None:
        self.config = config
        self.work_dir = work_dir
        self.video_path = work_dir / "video_only.webm"
        self.output_path = work_dir / "capture.webm"
        self.stderr_path = work_dir / "ffmpeg_video.log"
        self.frames_written = 0
        self._stream: Optional[CaptureStream] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stderr: Optional[IO[bytes]] = None
        self._stop_task: Optional[asyncio.Task] = None

    async def start(self, stream: CaptureStream) -> None:
        if self._process is not None:
            raise RuntimeError("Recorder already started")
        self.work_dir.mkdir(parents=True, exist_ok=True)
        self._stream = stream
        self._stderr = self.stderr_path.open("wb")
        try:
            self._process = await spawn_ffmpeg(
                self.config.ffmpeg_binary,
                self._video_args(stream),
                stdin_pipe=True,
                stderr_file=self._stderr,
            )
        except EncodingFailure:
            self._close_stderr()
            raise
        logger.info("Recorder started: %dx%d @ %dfps", stream.width, stream.height, stream.fps)

    async def write_frame(self, surface: DrawingSurface) -> None:
        proc = self._process
        if proc is None or proc.stdin is None:
            raise RuntimeError("Recorder not started")
        if proc.returncode is not None:
            raise EncodingFailure(self._failure_message("exited early"))
        try:
            proc.stdin.write(surface.tobytes())
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise EncodingFailure(self._failure_message("pipe broken")) from exc
        self.frames_written += 1

    def stop(self) -> "asyncio.Task[bytes]":
        """Close the frame pipe; the returned task resolves with the final container bytes."""
        if self._stop_task is None:
            self._stop_task = asyncio.ensure_future(self._finalize())
        return self._stop_task

    async def abort(self) -> None:
        proc = self._process
        if proc is not None and proc.returncode is None:
            proc.kill()
            await proc.wait()
        self._close_stderr()
        for path in (self.video_path, self.output_path):
            path.unlink(missing_ok=True)
        logger.info("Recorder aborted; partial capture discarded")

    # ------------------------------------------------------------------

    async def _finalize(self) -> bytes:
        proc = self._process
        stream = self._stream
        if proc is None or stream is None:
            raise RuntimeError("Recorder not started")

        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()
            try:
                await proc.stdin.wait_closed()
            except (BrokenPipeError, ConnectionResetError):
                pass
        returncode = await proc.wait()
        self._close_stderr()
        if returncode != 0:
            raise EncodingFailure(self._failure_message(f"exit code {returncode}"))
        logger.info("Video stream closed after %d frames", self.frames_written)

        audio_path = await stream.audio.wait()
        await run_ffmpeg(self.config.ffmpeg_binary, self._mux_args(audio_path, stream.duration))

        data = self.output_path.read_bytes() if self.output_path.exists() else b""
        if not data:
            raise EncodingFailure("Muxer produced an empty artifact")
        return data

    def _video_args(self, stream: CaptureStream) -> List[str]:
        cfg = self.config
        args: List[str] = [
            "-y",
            "-f",
            "rawvideo",
            "-pix_fmt",
            "rgb24",
            "-s",
            f"{stream.width}x{stream.height}",
            "-r",
            str(stream.fps),
            "-i",
            "-",
            "-an",
            "-c:v",
            cfg.codec,
        ]
        if cfg.crf is not None:
            args += ["-crf", str(cfg.crf), "-b:v", "0"]
        if cfg.codec.startswith("libvpx"):
            args += ["-deadline", cfg.deadline, "-cpu-used", str(cfg.cpu_used), "-row-mt", "1"]
        args += ["-pix_fmt", "yuv420p", "-f", "webm", str(self.video_path)]
        return args

    def _mux_args(self, audio_path: Path, duration: float) -> List[str]:
        cfg = self.config
        args: List[str] = [
            "-y",
            "-i",
            str(self.video_path),
            "-i",
            str(audio_path),
            "-map",
            "0:v:0",
            "-map",
            "1:a:0",
            "-c:v",
            "copy",
            "-c:a",
            cfg.audio_codec,
            "-ar",
            str(cfg.audio_sample_rate),
        ]
        if cfg.audio_bitrate:
            args += ["-b:a", cfg.audio_bitrate]
        args += ["-t", f"{duration:.6f}", "-f", "webm", str(self.output_path)]
        return args

    def _close_stderr(self) -> None:
        if self._stderr is not None and not self._stderr.closed:
            self._stderr.close()

    def _failure_message(self, reason: str) -> str:
        self._close_stderr()
        try:
            log_stderr_tail(self.stderr_path.read_text(encoding="utf-8", errors="replace"))
        except OSError:
            pass
        return f"Video encoder failed ({reason})"
