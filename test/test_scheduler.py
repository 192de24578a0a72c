from __future__ import annotations

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from promo_mode.frame_renderer import DrawingSurface
from promo_mode.scheduler import AnimationScheduler, FrameClock, FramePlan


class RecordingSink:
    def __init__(self) -> None:
        self.frames: list[bytes] = []

    async def write_frame(self, surface: DrawingSurface) -> None:
        self.frames.append(surface.tobytes())


def test_frame_plan_for_four_slides_at_two_and_a_half_seconds() -> None:
    plan = FramePlan.build(2.5, 4)
    assert plan.frames_per_slide == 75
    assert plan.tail_frames == 9
    assert plan.total_frames == 309
    assert plan.duration == pytest.approx(10.3)


@pytest.mark.parametrize("seconds, slides", [(1.0, 1), (2.5, 3), (7.9, 2), (8.0, 5)])
def test_total_frames_formula(seconds: float, slides: int) -> None:
    plan = FramePlan.build(seconds, slides)
    assert plan.total_frames == int(seconds * 30 + 0.5) * slides + 9


def test_frame_plan_requires_a_slide() -> None:
    with pytest.raises(ValueError):
        FramePlan.build(2.5, 0)


def test_progress_starts_at_zero_and_reaches_one_within_each_slide() -> None:
    plan = FramePlan.build(2.5, 2)
    for slide in range(plan.slide_count):
        frames = range(slide * plan.frames_per_slide, (slide + 1) * plan.frames_per_slide)
        positions = [plan.position(frame) for frame in frames]
        assert all(p.slide_index == slide for p in positions)
        progress = [p.progress for p in positions]
        assert progress[0] == 0.0
        assert all(a <= b for a, b in zip(progress, progress[1:]))
        assert progress[-1] == 1.0


def test_position_outside_slide_range_raises() -> None:
    plan = FramePlan.build(1.0, 1)
    with pytest.raises(IndexError):
        plan.position(plan.slide_frames)


def test_scheduler_holds_last_frame_for_tail() -> None:
    plan = FramePlan.build(1.0, 2)
    surface = DrawingSurface(4, 4)
    sink = RecordingSink()
    drawn: list[int] = []
    reports: list[tuple[int, int]] = []

    def draw(position) -> None:
        drawn.append(position.frame)
        shade = position.frame % 256
        surface.image.paste((shade, shade, shade), (0, 0, 4, 4))

    scheduler = AnimationScheduler(plan, FrameClock(realtime=False), on_frame=lambda f, t: reports.append((f, t)))
    result = asyncio.run(scheduler.run(draw, surface, sink))

    assert result.rendered_frames == 60
    assert result.emitted_frames == 69
    assert drawn == list(range(60))
    assert len(sink.frames) == 69
    assert all(frame == sink.frames[59] for frame in sink.frames[60:])
    assert reports[-1] == (69, 69)


def test_realtime_clock_paces_ticks() -> None:
    plan = FramePlan(slide_count=1, frames_per_slide=3, tail_frames=0, fps=100)
    surface = DrawingSurface(2, 2)

    async def timed() -> float:
        loop = asyncio.get_running_loop()
        started = loop.time()
        await AnimationScheduler(plan, FrameClock(100, realtime=True)).run(lambda p: None, surface, RecordingSink())
        return loop.time() - started

    assert asyncio.run(timed()) >= 0.025
