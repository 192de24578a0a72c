"""Procedural ambient background music.

A bounded sequence of half-second beats. Each beat plays a sine at the chord
root plus a triangle a fifth above through an attack/release envelope that
returns to silence before the beat ends, so beats never overlap.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List

import numpy as np

BEAT_SECONDS = 0.5
BEATS_PER_CHORD = 4
CHORD_ROOTS = (220.0, 247.0, 196.0, 262.0)
FIFTH_RATIO = 1.5
ATTACK_SECONDS = 0.05
RELEASE_SECONDS = 0.25
PEAK_GAIN = 0.2
TRAILING_MARGIN = 0.6
MIN_LENGTH = 1.0


@dataclass(frozen=True)
class Beat:
    index: int
    start: float
    root: float


def music_length(duration: float) -> float:
    return max(MIN_LENGTH, float(duration) + TRAILING_MARGIN)


def beat_schedule(duration: float) -> List[Beat]:
    """Beats covering ``duration`` plus the trailing margin."""
    length = music_length(duration)
    beats: List[Beat] = []
    index = 0
    while index * BEAT_SECONDS < length:
        chord = (index // BEATS_PER_CHORD) % len(CHORD_ROOTS)
        beats.append(Beat(index=index, start=index * BEAT_SECONDS, root=CHORD_ROOTS[chord]))
        index += 1
    return beats


def beat_envelope(sample_rate: int) -> np.ndarray:
    """Gain curve for one beat: ramp up, ramp down, then silence."""
    samples = int(round(BEAT_SECONDS * sample_rate))
    t = np.arange(samples, dtype=np.float64) / sample_rate
    release_end = BEAT_SECONDS - RELEASE_SECONDS
    envelope = np.zeros(samples, dtype=np.float64)

    rising = t < ATTACK_SECONDS
    envelope[rising] = PEAK_GAIN * t[rising] / ATTACK_SECONDS

    falling = (t >= ATTACK_SECONDS) & (t < release_end)
    envelope[falling] = PEAK_GAIN * (1.0 - (t[falling] - ATTACK_SECONDS) / (release_end - ATTACK_SECONDS))
    return envelope


def _triangle(phase: np.ndarray) -> np.ndarray:
    # Starts at zero and rises, like an oscillator with zero initial phase.
    return 1.0 - 4.0 * np.abs(np.mod(phase + 0.25, 1.0) - 0.5)


def synthesize_calm_music(duration: float, sample_rate: int = 48000) -> np.ndarray:
    """Render the ambient loop as mono float32 samples.

    The result is exactly ``music_length(duration)`` seconds long.
    """
    total = int(math.ceil(music_length(duration) * sample_rate))
    out = np.zeros(total, dtype=np.float64)
    envelope = beat_envelope(sample_rate)
    t = np.arange(envelope.size, dtype=np.float64) / sample_rate

    for beat in beat_schedule(duration):
        start = int(round(beat.start * sample_rate))
        if start >= total:
            break
        tone = np.sin(2.0 * math.pi * beat.root * t) + _triangle(beat.root * FIFTH_RATIO * t)
        end = min(start + envelope.size, total)
        out[start:end] += (tone * envelope)[: end - start]
    return out.astype(np.float32)
