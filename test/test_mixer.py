from __future__ import annotations

import asyncio
import sys
import wave
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import numpy as np
import pytest

from promo_mode import mixer
from promo_mode.errors import PlaybackAutoplayBlock
from promo_mode.mixer import MUSIC_GAIN, VOICE_GAIN, AudioMixGraph

SR = 8000


def test_silent_when_music_off_and_no_voice() -> None:
    graph = AudioMixGraph(music_enabled=False, music_duration=2.0, sample_rate=SR)
    samples = graph.render(2.3)
    assert samples.size == round(2.3 * SR)
    assert not np.any(samples)


def test_music_bus_is_attenuated() -> None:
    graph = AudioMixGraph(music_enabled=True, music_duration=1.0, sample_rate=SR)
    samples = graph.render(1.3)
    assert samples.size == round(1.3 * SR)
    peak = np.abs(samples).max()
    assert 0 < peak <= MUSIC_GAIN * 0.4 + 1e-6


def test_voice_bus_gain_and_padding(monkeypatch, tmp_path: Path) -> None:
    voice_file = tmp_path / "voice.wav"
    voice_file.write_bytes(b"stub")
    monkeypatch.setattr(mixer, "load_voice_samples", lambda path, sr: np.full(SR // 2, 0.5, dtype=np.float32))

    graph = AudioMixGraph(music_enabled=False, music_duration=1.0, voice_path=voice_file, sample_rate=SR)
    samples = graph.render(1.0)
    assert graph.voice_active
    assert np.allclose(samples[: SR // 2], 0.5 * VOICE_GAIN)
    assert not np.any(samples[SR // 2 :])


def test_voice_failure_is_absorbed(monkeypatch, tmp_path: Path) -> None:
    voice_file = tmp_path / "voice.webm"
    voice_file.write_bytes(b"not audio")

    def _fail(path, sr):
        raise PlaybackAutoplayBlock("blocked")

    monkeypatch.setattr(mixer, "load_voice_samples", _fail)
    graph = AudioMixGraph(music_enabled=False, music_duration=1.0, voice_path=voice_file, sample_rate=SR)
    samples = graph.render(1.0)
    assert graph.voice_active is False
    assert not np.any(samples)


def test_sink_written_in_background_and_removed_on_close(tmp_path: Path) -> None:
    graph = AudioMixGraph(music_enabled=True, music_duration=1.0, sample_rate=SR)
    sink = tmp_path / "mix.wav"

    async def _run() -> Path:
        graph.start(sink, 1.3)
        return await graph.wait()

    path = asyncio.run(_run())
    assert path == sink
    with wave.open(str(sink), "rb") as wav_file:
        assert wav_file.getnchannels() == 1
        assert wav_file.getframerate() == SR
        assert wav_file.getnframes() == round(1.3 * SR)

    graph.close()
    graph.close()
    assert graph.closed
    assert not sink.exists()


def test_write_wav_does_not_recreate_missing_directory(tmp_path: Path) -> None:
    target = tmp_path / "removed" / "mix.wav"
    with pytest.raises(FileNotFoundError):
        mixer.write_wav(target, np.zeros(10, dtype=np.float32), SR)
    assert not target.parent.exists()


def test_aclose_waits_for_running_worker(tmp_path: Path) -> None:
    graph = AudioMixGraph(music_enabled=True, music_duration=60.0, sample_rate=48000)
    sink = tmp_path / "mix.wav"

    async def _run() -> None:
        task = graph.start(sink, 60.3)
        await asyncio.sleep(0)
        await graph.aclose()
        assert task.done()

    asyncio.run(_run())
    assert graph.closed
    assert not sink.exists()
    assert list(tmp_path.iterdir()) == []
