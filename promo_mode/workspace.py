from __future__ import annotations

import asyncio
import uuid
from typing import Callable, Iterable, List, Optional, Tuple

from logging_utils import get_logger

from .deck import build_deck
from .errors import ConcurrentRenderRejected, WorkspaceBusyError
from .frame_renderer import FrameRenderer
from .models import (
    MAX_IMAGES,
    RECORDING_MEDIA_TYPE,
    RECORDING_NAME,
    ImageAsset,
    OutputArtifact,
    StyleConfig,
    VoiceAsset,
)
from .resources import ExclusiveSlot, ResourceHandle, ResourceRegistry
from .session import CaptureSession, RecorderFactory, RenderRequest, RenderSession, RenderState, SurfaceFactory
from .settings import PromoSettings

logger = get_logger(__name__)


class Workspace:
    """Owns the inputs, the current render session and the single output artifact."""

    def __init__(
        self,
        settings: PromoSettings,
        *,
        registry: Optional[ResourceRegistry] = None,
        recorder_factory: Optional[RecorderFactory] = None,
        surface_factory: Optional[SurfaceFactory] = None,
        renderer: Optional[FrameRenderer] = None,
    ) -> None:
        self.settings = settings
        self.registry = registry or ResourceRegistry()
        self.recorder_factory = recorder_factory
        self.surface_factory = surface_factory
        self.renderer = renderer
        self.music_enabled = True
        self.images: List[ImageAsset] = []
        self.session = RenderSession()
        self._voice: ExclusiveSlot[VoiceAsset] = ExclusiveSlot(lambda voice: voice.handles())
        self._artifact: ExclusiveSlot[OutputArtifact] = ExclusiveSlot(lambda artifact: artifact.handles())
        self._task: Optional[asyncio.Task] = None
        self._capture: Optional[CaptureSession] = None

    # ------------------------------------------------------------------
    # State

    @property
    def state(self) -> RenderState:
        return self.session.state

    @property
    def is_rendering(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def voice(self) -> Optional[VoiceAsset]:
        return self._voice.value

    @property
    def voice_preview(self) -> Optional[ResourceHandle]:
        voice = self._voice.value
        return voice.preview if voice is not None else None

    @property
    def artifact(self) -> Optional[OutputArtifact]:
        return self._artifact.value

    def _ensure_idle(self, action: str) -> None:
        if self.is_rendering:
            raise WorkspaceBusyError(f"Cannot {action} while a render is active")

    # ------------------------------------------------------------------
    # Inputs

    def add_image(self, data: bytes, *, name: str = "image", media_type: str = "image/*") -> Optional[ImageAsset]:
        """Append one image in upload order. Returns None once the cap is reached."""
        self._ensure_idle("add images")
        if len(self.images) >= MAX_IMAGES:
            logger.warning("Image limit of %d reached; dropping %s", MAX_IMAGES, name)
            return None
        handle = self.registry.acquire(data, media_type=media_type, name=name)
        asset = ImageAsset(asset_id=uuid.uuid4().hex, handle=handle)
        self.images.append(asset)
        return asset

    def add_images(self, files: Iterable[Tuple[str, bytes]]) -> List[ImageAsset]:
        added: List[ImageAsset] = []
        for name, data in files:
            asset = self.add_image(data, name=name)
            if asset is not None:
                added.append(asset)
        return added

    def remove_image(self, asset_id: str) -> bool:
        self._ensure_idle("remove images")
        for asset in self.images:
            if asset.asset_id == asset_id:
                self.images.remove(asset)
                asset.handle.release()
                return True
        return False

    def set_voice_file(self, data: bytes, *, name: str = "voice", media_type: str = "audio/*") -> VoiceAsset:
        self._ensure_idle("replace the voice track")
        handle = self.registry.acquire(data, media_type=media_type, name=name)
        voice = VoiceAsset(handle=handle, source="upload")
        self._voice.replace(voice)
        return voice

    def complete_voice_recording(self, data: bytes) -> VoiceAsset:
        """Adopt a finished microphone take; it also gets its own preview handle."""
        self._ensure_idle("replace the voice track")
        handle = self.registry.acquire(data, media_type=RECORDING_MEDIA_TYPE, name=RECORDING_NAME)
        preview = self.registry.acquire(data, media_type=RECORDING_MEDIA_TYPE, name=RECORDING_NAME)
        voice = VoiceAsset(handle=handle, source="recording", preview=preview)
        self._voice.replace(voice)
        return voice

    def clear_voice(self) -> None:
        self._ensure_idle("clear the voice track")
        self._voice.clear()

    # ------------------------------------------------------------------
    # Rendering

    def start_render(
        self,
        style: StyleConfig,
        *,
        on_frame: Optional[Callable[[int, int], None]] = None,
    ) -> "asyncio.Task[RenderSession]":
        """Schedule a render on the running loop.

        Raises ConcurrentRenderRejected, without touching any state, when a
        render is already in flight.
        """
        if self.is_rendering:
            raise ConcurrentRenderRejected(f"Render {self.session.session_id[:8]} is still {self.session.state.value}")

        images = tuple(self.images)
        request = RenderRequest(
            style=style,
            slides=tuple(build_deck(style.benefits_text, images)),
            images=images,
            voice=self._voice.value,
            music_enabled=self.music_enabled,
        )
        session = RenderSession()
        capture = CaptureSession(
            session,
            request,
            registry=self.registry,
            settings=self.settings,
            recorder_factory=self.recorder_factory,
            surface_factory=self.surface_factory,
            renderer=self.renderer,
            on_frame=on_frame,
        )
        self.session = session
        self._capture = capture
        self._task = asyncio.get_running_loop().create_task(self._run(capture))
        return self._task

    async def render(
        self,
        style: StyleConfig,
        *,
        on_frame: Optional[Callable[[int, int], None]] = None,
    ) -> RenderSession:
        return await self.start_render(style, on_frame=on_frame)

    async def _run(self, capture: CaptureSession) -> RenderSession:
        session = await capture.run()
        if session.state is RenderState.COMPLETE and session.artifact is not None:
            self._artifact.replace(session.artifact)
        return session

    async def wait_released(self) -> None:
        """Wait for the delayed teardown of the last session's audio resources."""
        capture = self._capture
        if capture is not None and capture.release_task is not None:
            await capture.release_task

    def reset(self) -> None:
        """Revoke every handle and return to Idle with no artifact."""
        self._ensure_idle("reset the workspace")
        self._artifact.clear()
        self._voice.clear()
        for asset in self.images:
            asset.handle.release()
        self.images = []
        leaked = self.registry.release_all()
        if leaked:
            logger.warning("Released %d untracked resource handles during reset", leaked)
        self.session = RenderSession()
        self._capture = None
        self._task = None
        logger.info("Workspace reset")
