from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol

from logging_utils import get_logger

from .frame_renderer import DrawingSurface
from .utils import ease_out_cubic, round_half_up

logger = get_logger(__name__)

FPS = 30
TAIL_SECONDS = 0.3
ENTRANCE_ACCELERATION = 1.2


class FrameSink(Protocol):
    def write_frame(self, surface: DrawingSurface) -> Awaitable[None]:
        ...


@dataclass(frozen=True)
class FramePosition:
    frame: int
    slide_index: int
    within: float
    progress: float


@dataclass(frozen=True)
class FramePlan:
    slide_count: int
    frames_per_slide: int
    tail_frames: int
    fps: int = FPS

    @classmethod
    def build(cls, seconds_per_slide: float, slide_count: int, fps: int = FPS) -> "FramePlan":
        if slide_count < 1:
            raise ValueError("A render needs at least one slide")
        return cls(
            slide_count=slide_count,
            frames_per_slide=max(1, round_half_up(seconds_per_slide * fps)),
            tail_frames=round_half_up(TAIL_SECONDS * fps),
            fps=fps,
        )

    @property
    def slide_frames(self) -> int:
        return self.frames_per_slide * self.slide_count

    @property
    def total_frames(self) -> int:
        return self.slide_frames + self.tail_frames

    @property
    def slides_duration(self) -> float:
        return self.slide_frames / self.fps

    @property
    def duration(self) -> float:
        return self.total_frames / self.fps

    def position(self, frame: int) -> FramePosition:
        if frame < 0 or frame >= self.slide_frames:
            raise IndexError(f"Frame {frame} is outside the slide range 0..{self.slide_frames - 1}")
        slide_index = frame // self.frames_per_slide
        within = (frame % self.frames_per_slide) / self.frames_per_slide
        progress = ease_out_cubic(min(1.0, within * ENTRANCE_ACCELERATION))
        return FramePosition(frame=frame, slide_index=slide_index, within=within, progress=progress)


class FrameClock:
    """Tick source for the scheduler.

    In realtime mode ticks are paced against the event loop clock at ``fps``;
    a late tick is not made up for. Otherwise each tick just yields once.
    """

    def __init__(self, fps: int = FPS, *, realtime: bool = True) -> None:
        self.fps = fps
        self.realtime = realtime
        self.late_ticks = 0
        self._origin = 0.0
        self._ticks = 0

    def start(self) -> None:
        self._origin = asyncio.get_running_loop().time()
        self._ticks = 0
        self.late_ticks = 0

    async def tick(self) -> None:
        self._ticks += 1
        if not self.realtime:
            await asyncio.sleep(0)
            return
        deadline = self._origin + self._ticks / self.fps
        delay = deadline - asyncio.get_running_loop().time()
        if delay > 0:
            await asyncio.sleep(delay)
        else:
            self.late_ticks += 1
            await asyncio.sleep(0)


@dataclass(frozen=True)
class ScheduleResult:
    rendered_frames: int
    emitted_frames: int
    late_ticks: int


class AnimationScheduler:
    """Drive the renderer once per tick, then hold the last frame for the tail."""

    def __init__(
        self,
        plan: FramePlan,
        clock: FrameClock,
        *,
        on_frame: Optional[Callable[[int, int], None]] = None,
    ) -> None:
        self.plan = plan
        self.clock = clock
        self.on_frame = on_frame

    async def run(
        self,
        draw: Callable[[FramePosition], None],
        surface: DrawingSurface,
        sink: FrameSink,
    ) -> ScheduleResult:
        plan = self.plan
        rendered = 0
        emitted = 0
        self.clock.start()

        for frame in range(plan.slide_frames):
            draw(plan.position(frame))
            rendered += 1
            await sink.write_frame(surface)
            emitted += 1
            self._report(emitted)
            await self.clock.tick()

        for _ in range(plan.tail_frames):
            await sink.write_frame(surface)
            emitted += 1
            self._report(emitted)
            await self.clock.tick()

        if self.clock.late_ticks:
            logger.info("Scheduler ran behind on %d of %d ticks", self.clock.late_ticks, emitted)
        return ScheduleResult(rendered_frames=rendered, emitted_frames=emitted, late_ticks=self.clock.late_ticks)

    def _report(self, emitted: int) -> None:
        if self.on_frame is not None:
            self.on_frame(emitted, self.plan.total_frames)
