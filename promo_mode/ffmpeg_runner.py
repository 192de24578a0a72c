from __future__ import annotations

import asyncio
from pathlib import Path
from typing import IO, List, Optional, Sequence

from logging_utils import get_logger

from .errors import EncodingFailure

logger = get_logger(__name__)

QUIET_ARGS = ("-hide_banner", "-loglevel", "error", "-nostats")


def build_command(binary: str, args: Sequence[str]) -> List[str]:
    # Keep ffmpeg quiet: only errors; no stats; no banner
    return [binary, *QUIET_ARGS, *args]


def pretty_command(cmd: Sequence[str]) -> str:
    return " ".join(a if " " not in a else f"'{a}'" for a in cmd)


def log_stderr_tail(stderr: str, *, limit: int = 50) -> None:
    for line in stderr.splitlines()[-limit:]:
        logger.error("ffmpeg: %s", line)


async def spawn_ffmpeg(
    binary: str,
    args: Sequence[str],
    *,
    stdin_pipe: bool = False,
    stderr_file: Optional[IO[bytes]] = None,
) -> asyncio.subprocess.Process:
    """Start ffmpeg without waiting for it. Raises EncodingFailure if it cannot be launched."""
    cmd = build_command(binary, args)
    logger.debug("FFmpeg(spawn): %s", pretty_command(cmd))
    try:
        return await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE if stdin_pipe else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=stderr_file if stderr_file is not None else asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as exc:
        raise EncodingFailure(f"ffmpeg binary not usable: {binary}") from exc


async def run_ffmpeg(binary: str, args: Sequence[str], *, cwd: Path | None = None) -> None:
    """Run ffmpeg to completion, raising EncodingFailure on a non-zero exit."""
    cmd = build_command(binary, args)
    logger.debug("FFmpeg: %s", pretty_command(cmd))
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd) if cwd else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as exc:
        raise EncodingFailure(f"ffmpeg binary not usable: {binary}") from exc
    _, stderr = await proc.communicate()
    if proc.returncode != 0:
        log_stderr_tail((stderr or b"").decode("utf-8", errors="replace"))
        raise EncodingFailure(f"ffmpeg failed with exit code {proc.returncode}")
