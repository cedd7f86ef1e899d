"""
Waveform Module

Decodes overlay audio and reduces it to min/max peaks for display.
Decoding failures never touch the fragment model.
"""

import io
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import soundfile as sf

from smiltune.overlay.errors import AudioDecodeError
from smiltune.overlay.model import AudioFile
from smiltune.utils.config import config


@dataclass
class Waveform:
    """Peak envelope of an audio payload."""

    src: str
    sample_rate: int
    duration: float
    peaks: np.ndarray  # Shape (bins, 2): min, max per bin

    def time_of_bin(self, index: int) -> float:
        if len(self.peaks) == 0:
            return 0.0
        return self.duration * index / len(self.peaks)


def decode_audio(audio_file: AudioFile) -> Tuple[np.ndarray, int]:
    """
    Decode an audio payload to mono float samples.

    Raises:
        AudioDecodeError: If libsndfile cannot read the data
    """
    try:
        samples, sample_rate = sf.read(io.BytesIO(audio_file.data), dtype="float32")
    except RuntimeError as e:
        raise AudioDecodeError(f"Cannot decode {audio_file.src}: {e}") from e

    if samples.ndim > 1:
        samples = samples.mean(axis=1)
    return samples, sample_rate


def compute_peaks(samples: np.ndarray, bins: int) -> np.ndarray:
    """Min and max sample value for each of `bins` equal slices."""
    if bins <= 0 or samples.size == 0:
        return np.zeros((0, 2), dtype=np.float32)

    bins = min(bins, samples.size)
    edges = np.linspace(0, samples.size, bins + 1, dtype=np.int64)
    # Edges are strictly increasing while bins <= samples.size
    starts = edges[:-1]
    return np.stack(
        [np.minimum.reduceat(samples, starts), np.maximum.reduceat(samples, starts)],
        axis=1,
    ).astype(np.float32)


def load_waveform(audio_file: AudioFile, bins: Optional[int] = None) -> Waveform:
    """Decode audio and compute its peak envelope."""
    samples, sample_rate = decode_audio(audio_file)
    duration = samples.size / sample_rate if sample_rate else 0.0
    if not audio_file.duration:
        audio_file.duration = duration
    return Waveform(
        src=audio_file.src,
        sample_rate=sample_rate,
        duration=duration,
        peaks=compute_peaks(samples, bins or config.waveform_peaks),
    )
