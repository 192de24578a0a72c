"""Render session lifecycle: prepare, capture, finalize, publish.

``RenderSession`` is the state value owned by the workspace.
``CaptureSession`` drives one session from ``Idle`` to ``Complete`` or
``Failed``; a failed session never carries an artifact.
"""
from __future__ import annotations

import asyncio
import shutil
import tempfile
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from logging_utils import get_logger

from .errors import DecodeFailure, EncodingFailure, InvalidStateTransition
from .frame_renderer import DrawingSurface, FrameRenderer
from .mixer import AudioMixGraph
from .models import (
    ARTIFACT_DOWNLOAD_NAME,
    ARTIFACT_MEDIA_TYPE,
    DecodedImage,
    ImageAsset,
    OutputArtifact,
    SlideSpec,
    StyleConfig,
    VoiceAsset,
)
from .recorder import CaptureStream, FFmpegStreamRecorder, StreamRecorder
from .resources import ResourceRegistry
from .scheduler import AnimationScheduler, FrameClock, FramePlan, FramePosition
from .settings import PromoSettings

logger = get_logger(__name__)


class RenderState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    RENDERING = "rendering"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"


ACTIVE_STATES = frozenset({RenderState.PREPARING, RenderState.RENDERING, RenderState.FINALIZING})

_TRANSITIONS: Dict[RenderState, frozenset] = {
    RenderState.IDLE: frozenset({RenderState.PREPARING}),
    RenderState.PREPARING: frozenset({RenderState.RENDERING, RenderState.FAILED}),
    RenderState.RENDERING: frozenset({RenderState.FINALIZING, RenderState.FAILED}),
    RenderState.FINALIZING: frozenset({RenderState.COMPLETE, RenderState.FAILED}),
    RenderState.COMPLETE: frozenset(),
    RenderState.FAILED: frozenset(),
}


@dataclass
class RenderSession:
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: RenderState = RenderState.IDLE
    error: Optional[BaseException] = None
    artifact: Optional[OutputArtifact] = None
    rendered_frames: int = 0
    emitted_frames: int = 0
    history: List[RenderState] = field(default_factory=lambda: [RenderState.IDLE])

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    def transition(self, new_state: RenderState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidStateTransition(f"{self.state.value} -> {new_state.value}")
        logger.info("Render %s: %s -> %s", self.session_id[:8], self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)


@dataclass(frozen=True)
class RenderRequest:
    """Snapshot of everything a render reads from the workspace."""

    style: StyleConfig
    slides: Tuple[SlideSpec, ...]
    images: Tuple[ImageAsset, ...] = ()
    voice: Optional[VoiceAsset] = None
    music_enabled: bool = True


RecorderFactory = Callable[[Path], StreamRecorder]
SurfaceFactory = Callable[[StyleConfig], DrawingSurface]


class CaptureSession:
    """Run one render request through prepare, capture and finalize."""

    def __init__(
        self,
        session: RenderSession,
        request: RenderRequest,
        *,
        registry: ResourceRegistry,
        settings: PromoSettings,
        recorder_factory: Optional[RecorderFactory] = None,
        surface_factory: Optional[SurfaceFactory] = None,
        renderer: Optional[FrameRenderer] = None,
        on_frame: Optional[Callable[[int, int], None]] = None,
    ) -> None:
        self.session = session
        self.request = request
        self.registry = registry
        self.settings = settings
        self.recorder_factory = recorder_factory or (lambda work_dir: FFmpegStreamRecorder(settings.recorder, work_dir))
        self.surface_factory = surface_factory or DrawingSurface.for_style
        self.renderer = renderer or FrameRenderer(font_path=settings.font_path)
        self.on_frame = on_frame
        self.release_task: Optional[asyncio.Task] = None

    async def run(self) -> RenderSession:
        session = self.session
        request = self.request
        style = request.style
        work_dir: Optional[Path] = None
        recorder: Optional[StreamRecorder] = None
        mix: Optional[AudioMixGraph] = None

        try:
            session.transition(RenderState.PREPARING)
            decoded = self._decode_images()
            surface = self.surface_factory(style)
            plan = FramePlan.build(style.seconds_per_slide, len(request.slides))
            logger.info(
                "Render plan: %d slides x %d frames + %d tail = %d frames (%s, %dx%d)",
                plan.slide_count,
                plan.frames_per_slide,
                plan.tail_frames,
                plan.total_frames,
                style.aspect.value,
                surface.width,
                surface.height,
            )

            work_dir = self._make_work_dir()
            voice_path = request.voice.handle.materialize(work_dir / "voice") if request.voice else None
            mix = AudioMixGraph(
                music_enabled=request.music_enabled,
                music_duration=plan.slide_count * style.seconds_per_slide,
                voice_path=voice_path,
                sample_rate=self.settings.recorder.audio_sample_rate,
            )
            stream = CaptureStream(
                width=surface.width,
                height=surface.height,
                fps=plan.fps,
                duration=plan.duration,
                audio=mix,
            )
            recorder = self.recorder_factory(work_dir)

            session.transition(RenderState.RENDERING)
            await recorder.start(stream)
            mix.start(work_dir / "mix.wav", plan.duration)

            def draw(position: FramePosition) -> None:
                slide = request.slides[position.slide_index]
                image = decoded.get(slide.image_id) if slide.image_id else None
                self.renderer.render(surface, slide, position.progress, style, image)

            scheduler = AnimationScheduler(
                plan,
                FrameClock(plan.fps, realtime=self.settings.realtime),
                on_frame=self.on_frame,
            )
            result = await scheduler.run(draw, surface, recorder)
            session.rendered_frames = result.rendered_frames
            session.emitted_frames = result.emitted_frames

            session.transition(RenderState.FINALIZING)
            data = await recorder.stop()
            if not data:
                raise EncodingFailure("Recorder returned no data")

            handle = self.registry.acquire(data, media_type=ARTIFACT_MEDIA_TYPE, name=ARTIFACT_DOWNLOAD_NAME)
            session.artifact = OutputArtifact(
                handle=handle,
                session_id=session.session_id,
                frame_count=result.emitted_frames,
                duration=plan.duration,
                metadata={
                    "slides": plan.slide_count,
                    "aspect": style.aspect.value,
                    "music": request.music_enabled,
                    "voice": bool(mix.voice_active),
                },
            )
            session.transition(RenderState.COMPLETE)
            self.release_task = asyncio.ensure_future(self._release_later(mix, work_dir))
            logger.info("Render complete: %s (%d bytes)", handle.url, len(data))
        except Exception as exc:
            logger.exception("Render %s failed", session.session_id[:8])
            session.error = exc
            session.artifact = None
            if recorder is not None:
                try:
                    await recorder.abort()
                except Exception:
                    logger.warning("Recorder abort raised during failure cleanup", exc_info=True)
            session.transition(RenderState.FAILED)
            await self._release(mix, work_dir)
        return session

    # ------------------------------------------------------------------

    def _decode_images(self) -> Dict[str, DecodedImage]:
        wanted = {slide.image_id for slide in self.request.slides if slide.image_id}
        decoded: Dict[str, DecodedImage] = {}
        for asset in self.request.images:
            if asset.asset_id not in wanted:
                continue
            try:
                decoded[asset.asset_id] = asset.decode()
            except DecodeFailure as exc:
                logger.warning("Slide image skipped: %s", exc)
        if wanted and not decoded:
            logger.warning("No slide image could be decoded; rendering text-only")
        return decoded

    def _make_work_dir(self) -> Path:
        root = self.settings.temp_dir
        root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"render_{self.session.session_id[:8]}_", dir=str(root)))

    async def _release_later(self, mix: Optional[AudioMixGraph], work_dir: Optional[Path]) -> None:
        # Give the encoder's trailing buffer time before tearing down audio.
        try:
            await asyncio.sleep(self.settings.release_delay)
        finally:
            await self._release(mix, work_dir)

    async def _release(self, mix: Optional[AudioMixGraph], work_dir: Optional[Path]) -> None:
        # The mix thread writes into work_dir; it has to finish before the rmtree.
        if mix is not None:
            await mix.aclose()
        if work_dir is not None:
            shutil.rmtree(work_dir, ignore_errors=True)
