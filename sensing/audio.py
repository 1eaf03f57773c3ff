"""
Per-sample audio features from analyser byte buffers.

Inputs are one frequency-domain and one time-domain byte array of equal length N.
Volume, clarity and a pitch proxy are derived from the spectrum; they feed fixed
linear blends for the emotional tone, sentiment and toxicity.
"""
from __future__ import annotations

import math
import logging
from dataclasses import dataclass

import numpy as np

from sensing.errors import TransientFrameFailure
from sensing.models import AudioAnalysisResult, EmotionalState, clamp01

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Spectrum constants
# -----------------------------------------------------------------------------
CLARITY_BAND_START = 0.6       # clarity = energy in the top 40% of bins
PITCH_BAND_FRACTION = 4        # pitch peak searched in the lowest quarter
PITCH_LOW_HZ = 85.0
PITCH_HIGH_HZ = 255.0
# -----------------------------------------------------------------------------


@dataclass
class AudioScoringPolicy:
    """Linear blends of (volume, clarity, pitch). Engineering placeholders, kept verbatim."""

    def emotion(self, volume: float, clarity: float, pitch: float) -> EmotionalState:
        return EmotionalState.blend(
            joy=pitch * 0.4 + volume * 0.3 + clarity * 0.3,
            sadness=(1 - pitch) * 0.4 + (1 - volume) * 0.4,
            anger=volume * 0.5 + pitch * 0.3,
            fear=pitch * 0.4 + volume * 0.3,
            surprise=pitch * 0.5 + volume * 0.3,
        )

    def sentiment(self, clarity: float, emo: EmotionalState) -> float:
        positive = emo.joy * 0.5 + emo.surprise * 0.2 + clarity * 0.2
        negative = emo.sadness * 0.4 + emo.anger * 0.4 + emo.fear * 0.2
        return clamp01(0.5 + positive - negative)

    def toxicity(self, volume: float, pitch: float, variability: float) -> float:
        return clamp01(volume * 0.3 + (pitch * 0.4 if pitch > 0.7 else 0.0) + variability * 0.3)


def fallback_result() -> AudioAnalysisResult:
    return AudioAnalysisResult(
        sentiment=0.5,
        toxicity=0.0,
        emotional_tone=EmotionalState.neutral_state(),
        volume=0.0,
        clarity=0.0,
        pitch=0.0,
    )


def _as_bytes(data, name: str) -> np.ndarray:
    arr = np.asarray(data)
    if arr.ndim != 1 or arr.size == 0:
        raise TransientFrameFailure(f"{name} must be a non-empty 1-D array, got shape {arr.shape}")
    if arr.dtype != np.uint8:
        if np.any(arr < 0) or np.any(arr > 255):
            raise TransientFrameFailure(f"{name} values must be bytes in [0, 255]")
    return arr.astype(np.float64)


def calculate_volume(freq: np.ndarray) -> float:
    return clamp01(float(np.sum(freq)) / (freq.size * 255.0))


def calculate_clarity(freq: np.ndarray) -> float:
    total = float(np.sum(freq))
    if total <= 0:
        return 0.0
    start = int(math.floor(freq.size * CLARITY_BAND_START))
    return clamp01(float(np.sum(freq[start:])) / total)


def peak_frequency_hz(freq: np.ndarray, sample_rate: float) -> float:
    """Frequency of the strongest bin in indices 1 .. ceil(N/4)-1 (first wins; 0 when silent)."""
    n = freq.size
    band = freq[1:int(math.ceil(n / PITCH_BAND_FRACTION))]
    index = 0
    if band.size and float(np.max(band)) > 0:
        index = int(np.argmax(band)) + 1
    return index * float(sample_rate) / (2.0 * n)


def calculate_pitch(freq: np.ndarray, sample_rate: float) -> float:
    hz = peak_frequency_hz(freq, sample_rate)
    return clamp01((hz - PITCH_LOW_HZ) / (PITCH_HIGH_HZ - PITCH_LOW_HZ))


def calculate_variability(time_domain: np.ndarray) -> float:
    if time_domain.size < 2:
        return 0.0
    return float(np.sum(np.abs(np.diff(time_domain)))) / (time_domain.size * 255.0)


class AudioFeatureExtractor:
    """Turns one pair of analyser byte buffers into an AudioAnalysisResult."""
    def __init__(self, policy: AudioScoringPolicy | None = None):
        self.policy = policy or AudioScoringPolicy()

    def analyze(self, frequency_data, time_domain_data, sample_rate: float) -> AudioAnalysisResult:
        try:
            return self.extract(frequency_data, time_domain_data, sample_rate)
        except TransientFrameFailure as e:
            logger.warning(f"[audio] sample skipped: {e}")
        except Exception:
            logger.exception("[audio] sample extraction failed; using neutral fallback")
        return fallback_result()

    def extract(self, frequency_data, time_domain_data, sample_rate: float) -> AudioAnalysisResult:
        freq = _as_bytes(frequency_data, "frequency data")
        td = _as_bytes(time_domain_data, "time-domain data")
        if freq.size != td.size:
            raise TransientFrameFailure(f"buffer length mismatch: {freq.size} != {td.size}")
        if not sample_rate or sample_rate <= 0:
            raise TransientFrameFailure(f"invalid sample rate {sample_rate}")

        volume = calculate_volume(freq)
        clarity = calculate_clarity(freq)
        pitch = calculate_pitch(freq, sample_rate)
        variability = calculate_variability(td)

        if float(np.sum(freq)) == 0.0:
            # a silent spectrum carries no affect signal
            tone = EmotionalState.neutral_state()
        else:
            tone = self.policy.emotion(volume, clarity, pitch)

        return AudioAnalysisResult(
            sentiment=self.policy.sentiment(clarity, tone),
            toxicity=self.policy.toxicity(volume, pitch, variability),
            emotional_tone=tone,
            volume=volume,
            clarity=clarity,
            pitch=pitch,
        )
