from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import numpy as np
import pytest

from promo_mode.music import (
    CHORD_ROOTS,
    PEAK_GAIN,
    beat_envelope,
    beat_schedule,
    music_length,
    synthesize_calm_music,
)


def test_music_length_has_margin_and_minimum() -> None:
    assert music_length(10.0) == pytest.approx(10.6)
    assert music_length(0.1) == 1.0


def test_chord_advances_every_four_beats() -> None:
    beats = beat_schedule(10.0)
    assert len(beats) == 22
    roots = [beat.root for beat in beats]
    assert roots[:4] == [220.0] * 4
    assert roots[4:8] == [247.0] * 4
    assert roots[8:12] == [196.0] * 4
    assert roots[12:16] == [262.0] * 4
    assert roots[16] == CHORD_ROOTS[0]
    assert [beat.start for beat in beats[:3]] == [0.0, 0.5, 1.0]


def test_envelope_shape() -> None:
    sr = 8000
    env = beat_envelope(sr)
    assert env.size == 4000
    assert env[0] == 0.0
    assert env.max() == pytest.approx(PEAK_GAIN, rel=1e-3)
    assert np.all(env[2000:] == 0.0)


def test_synthesized_music_is_bounded_and_beats_do_not_overlap() -> None:
    sr = 8000
    music = synthesize_calm_music(0.4, sr)
    assert music.dtype == np.float32
    assert music.size == 8000
    assert np.abs(music).max() <= 2 * PEAK_GAIN + 1e-6
    assert np.abs(music).max() > 0
    for beat in range(2):
        start = beat * 4000
        assert np.all(music[start + 2000 : start + 4000] == 0.0)
