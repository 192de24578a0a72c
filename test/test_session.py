from __future__ import annotations

import asyncio
import io
import sys
from dataclasses import replace
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import numpy as np
from PIL import Image

from promo_mode import mixer
from promo_mode.deck import build_deck
from promo_mode.errors import AcquisitionFailure, EncodingFailure, PlaybackAutoplayBlock
from promo_mode.models import ImageAsset, StyleConfig, VoiceAsset
from promo_mode.recorder import RecorderConfig
from promo_mode.resources import ResourceRegistry
from promo_mode.session import CaptureSession, RenderRequest, RenderSession, RenderState


def _png(color) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), color).save(buf, format="PNG")
    return buf.getvalue()


def _run(capture: CaptureSession) -> RenderSession:
    async def _go() -> RenderSession:
        session = await capture.run()
        if capture.release_task is not None:
            await capture.release_task
        return session

    return asyncio.run(_go())


def _capture(settings, recorders, surface_factory, *, style=None, images=(), voice=None, music=True, registry=None):
    style = style or StyleConfig()
    request = RenderRequest(
        style=style,
        slides=tuple(build_deck(style.benefits_text, images)),
        images=tuple(images),
        voice=voice,
        music_enabled=music,
    )
    return CaptureSession(
        RenderSession(),
        request,
        registry=registry or ResourceRegistry(),
        settings=settings,
        recorder_factory=recorders,
        surface_factory=surface_factory,
    )


def test_default_render_completes_with_309_frames(settings, recorders, surface_factory) -> None:
    capture = _capture(settings, recorders, surface_factory)
    session = _run(capture)

    assert session.state is RenderState.COMPLETE
    assert session.history == [
        RenderState.IDLE,
        RenderState.PREPARING,
        RenderState.RENDERING,
        RenderState.FINALIZING,
        RenderState.COMPLETE,
    ]
    assert session.error is None
    assert session.emitted_frames == 309
    assert session.rendered_frames == 300
    recorder = recorders.created[0]
    assert recorder.frames == 309
    assert recorder.frame_sizes == {(36, 64)}

    artifact = session.artifact
    assert artifact is not None
    assert artifact.frame_count == 309
    assert artifact.download_name == "faceless-affiliate.webm"
    assert artifact.media_type == "video/webm"
    assert artifact.handle.read_bytes().startswith(b"WEBM")
    assert artifact.metadata["slides"] == 4


def test_work_dir_and_audio_released_after_completion(settings, recorders, surface_factory) -> None:
    capture = _capture(settings, recorders, surface_factory)
    _run(capture)
    assert list(settings.temp_dir.iterdir()) == []
    assert recorders.created[0].stream.audio.closed


def test_music_off_and_no_voice_gives_silent_audio(settings, recorders, surface_factory) -> None:
    style = StyleConfig(benefits_text="one", seconds_per_slide=1.0)
    session = _run(_capture(settings, recorders, surface_factory, style=style, music=False))
    assert session.state is RenderState.COMPLETE
    audio = recorders.created[0].audio
    assert audio.size == round(1.3 * 8000)
    assert not np.any(audio)
    assert recorders.created[0].frames == 39


def test_music_on_gives_audible_audio(settings, recorders, surface_factory) -> None:
    style = StyleConfig(benefits_text="one", seconds_per_slide=1.0)
    _run(_capture(settings, recorders, surface_factory, style=style, music=True))
    assert np.any(recorders.created[0].audio)


def test_surface_acquisition_failure_fails_before_capture(settings, recorders) -> None:
    def _no_surface(style):
        raise AcquisitionFailure("no canvas")

    session = _run(_capture(settings, recorders, _no_surface))
    assert session.state is RenderState.FAILED
    assert isinstance(session.error, AcquisitionFailure)
    assert session.artifact is None
    assert session.history == [RenderState.IDLE, RenderState.PREPARING, RenderState.FAILED]
    assert recorders.created == []


def test_encoding_failure_discards_partial_output(settings, failing_recorders, surface_factory) -> None:
    registry = ResourceRegistry()
    style = StyleConfig(benefits_text="one", seconds_per_slide=1.0)
    session = _run(_capture(settings, failing_recorders, surface_factory, style=style, registry=registry))

    assert session.state is RenderState.FAILED
    assert isinstance(session.error, EncodingFailure)
    assert session.artifact is None
    assert failing_recorders.created[0].aborted
    assert registry.live_handles == []
    assert list(settings.temp_dir.iterdir()) == []


def test_undecodable_image_is_skipped(settings, recorders, surface_factory) -> None:
    registry = ResourceRegistry()
    images = [
        ImageAsset(asset_id="bad", handle=registry.acquire(b"garbage", media_type="image/png", name="bad.png")),
        ImageAsset(asset_id="good", handle=registry.acquire(_png((255, 0, 0)), media_type="image/png", name="ok.png")),
    ]
    style = StyleConfig(benefits_text="a\nb", seconds_per_slide=1.0)
    session = _run(_capture(settings, recorders, surface_factory, style=style, images=images, registry=registry))

    assert session.state is RenderState.COMPLETE
    assert session.emitted_frames == 69
    assert images[1].dimensions == (8, 8)
    assert images[0].dimensions is None


def test_failure_mid_capture_waits_for_audio_thread_before_cleanup(settings, midstream_failing_recorders, surface_factory) -> None:
    settings = replace(settings, recorder=RecorderConfig(audio_sample_rate=48000))
    recorders = midstream_failing_recorders
    style = StyleConfig(benefits_text="\n".join(f"benefit {i}" for i in range(20)), seconds_per_slide=8.0)
    capture = _capture(settings, recorders, surface_factory, style=style, music=True)
    session = _run(capture)

    assert session.state is RenderState.FAILED
    assert isinstance(session.error, EncodingFailure)
    assert recorders.created[0].aborted
    assert recorders.created[0].stream.audio.closed
    assert list(settings.temp_dir.rglob("*")) == []


def test_oversized_image_is_skipped(monkeypatch, settings, recorders, surface_factory) -> None:
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 16)
    registry = ResourceRegistry()
    images = [
        ImageAsset(asset_id="huge", handle=registry.acquire(_png((0, 255, 0)), media_type="image/png", name="huge.png")),
    ]
    style = StyleConfig(benefits_text="a", seconds_per_slide=1.0)
    session = _run(_capture(settings, recorders, surface_factory, style=style, images=images, registry=registry))

    assert session.state is RenderState.COMPLETE
    assert session.emitted_frames == 39
    assert images[0].dimensions is None


def test_voice_that_cannot_play_is_dropped(monkeypatch, settings, recorders, surface_factory) -> None:
    def _blocked(path, sample_rate):
        raise PlaybackAutoplayBlock("blocked")

    monkeypatch.setattr(mixer, "load_voice_samples", _blocked)
    registry = ResourceRegistry()
    voice = VoiceAsset(handle=registry.acquire(b"junk", media_type="audio/webm", name="voiceover.webm"))
    style = StyleConfig(benefits_text="one", seconds_per_slide=1.0)
    session = _run(_capture(settings, recorders, surface_factory, style=style, voice=voice, music=False))

    assert session.state is RenderState.COMPLETE
    assert session.artifact.metadata["voice"] is False
    assert not np.any(recorders.created[0].audio)


def test_voice_is_mixed_at_voice_gain(monkeypatch, settings, recorders, surface_factory) -> None:
    monkeypatch.setattr(mixer, "load_voice_samples", lambda path, sr: np.full(sr, 0.5, dtype=np.float32))
    registry = ResourceRegistry()
    voice = VoiceAsset(handle=registry.acquire(b"RIFF", media_type="audio/wav", name="voice.wav"))
    style = StyleConfig(benefits_text="one", seconds_per_slide=1.0)
    session = _run(_capture(settings, recorders, surface_factory, style=style, voice=voice, music=False))

    assert session.artifact.metadata["voice"] is True
    audio = recorders.created[0].audio
    assert abs(int(audio[100]) - int(0.5 * mixer.VOICE_GAIN * 32767)) <= 1
    assert not np.any(audio[8000:])
