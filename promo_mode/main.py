from __future__ import annotations

import argparse
import asyncio
import mimetypes
from dataclasses import replace
from pathlib import Path

from config_loader import load_config
from logging_utils import configure_logging, get_logger

from .job_loader import PromoJob, load_promo_job
from .progress import ConsoleBar
from .session import RenderState
from .settings import PromoSettings
from .workspace import Workspace

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Faceless affiliate promo video composer")
    parser.add_argument("job", help="Path to a YAML or JSON job file")
    parser.add_argument(
        "--config",
        default="config.yaml",
        help="Path to YAML configuration (default: config.yaml)",
    )
    parser.add_argument(
        "--output-dir",
        help="Override output directory defined in config.yaml",
    )
    parser.add_argument(
        "--no-music",
        action="store_true",
        help="Disable the background music regardless of the job file",
    )
    parser.add_argument(
        "--fast",
        action="store_true",
        help="Render as fast as possible instead of pacing frames in real time",
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Hide the console progress bar",
    )
    return parser


def load_inputs(workspace: Workspace, job: PromoJob) -> None:
    for path in job.image_paths:
        media_type = mimetypes.guess_type(path.name)[0] or "image/*"
        workspace.add_image(path.read_bytes(), name=path.name, media_type=media_type)
    if job.voice_path is not None:
        media_type = mimetypes.guess_type(job.voice_path.name)[0] or "audio/*"
        workspace.set_voice_file(job.voice_path.read_bytes(), name=job.voice_path.name, media_type=media_type)
    workspace.music_enabled = job.music_enabled


async def run_job(workspace: Workspace, job: PromoJob, output_dir: Path, *, show_progress: bool = True) -> Path | None:
    bar: ConsoleBar | None = None

    def on_frame(frame: int, total: int) -> None:
        nonlocal bar
        if bar is None:
            bar = ConsoleBar(total_frames=total, label=job.style.title)
        bar.update(frame, total)

    session = await workspace.render(job.style, on_frame=on_frame if show_progress else None)
    if bar is not None:
        bar.finish()
    await workspace.wait_released()

    if session.state is not RenderState.COMPLETE or workspace.artifact is None:
        logger.error("Render failed: %s", session.error)
        return None

    artifact = workspace.artifact
    output_dir.mkdir(parents=True, exist_ok=True)
    out_path = output_dir / artifact.download_name
    out_path.write_bytes(artifact.handle.read_bytes())
    logger.info(
        "Promo video written: %s (%d frames, %.2fs, %s)",
        out_path,
        artifact.frame_count,
        artifact.duration,
        artifact.metadata.get("aspect"),
    )
    return out_path


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)
    if args.output_dir:
        output_override = Path(args.output_dir).expanduser().resolve()
        output_override.mkdir(parents=True, exist_ok=True)
        config.output_dir = output_override

    configure_logging(level=config.logging_level, log_file=config.log_file)

    job = load_promo_job(args.job)
    settings = PromoSettings.from_config(config)
    if args.fast:
        settings = replace(settings, realtime=False)

    workspace = Workspace(settings)
    load_inputs(workspace, job)
    if args.no_music:
        workspace.music_enabled = False

    out_path = asyncio.run(run_job(workspace, job, config.output_dir, show_progress=not args.no_progress))
    workspace.reset()
    return 0 if out_path is not None else 1


if __name__ == "__main__":
    raise SystemExit(main())
