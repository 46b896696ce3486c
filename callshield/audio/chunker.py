"""
callshield/audio/chunker.py
============================
Audio Chunker — CallShield

Responsibility:
    - Split a decoded recording into consecutive fixed-duration chunks
      (default 2.5 s) for per-chunk analysis
    - Carry each chunk's start time so results can be placed on a timeline

Chunks do not overlap and are yielded in temporal order; the last chunk
may be shorter than the nominal duration.

This module does NOT:
    - Decode or resample audio (see normalizer.py)
    - Drop silent chunks; silence is a valid analysis input
"""

import logging
from dataclasses import dataclass
from typing import Iterator

import numpy as np

logger = logging.getLogger("callshield.audio.chunker")

DEFAULT_CHUNK_DURATION_SEC: float = 2.5
DEFAULT_SAMPLE_RATE: int = 24000


@dataclass
class AudioChunk:
    """A window of mono float PCM."""

    samples: np.ndarray
    sample_rate: int = DEFAULT_SAMPLE_RATE
    start_time: float = 0.0

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


def split_into_chunks(
    samples,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    chunk_duration: float = DEFAULT_CHUNK_DURATION_SEC,
) -> Iterator[AudioChunk]:
    """
    Yield consecutive AudioChunks covering *samples*.

    Raises:
        ValueError: If sample_rate or chunk_duration is not positive.
    """
    if sample_rate <= 0:
        raise ValueError(f"sample_rate must be positive, got {sample_rate}")
    if chunk_duration <= 0:
        raise ValueError(f"chunk_duration must be positive, got {chunk_duration}")

    data = np.asarray(samples, dtype=np.float32).ravel()
    chunk_size = max(1, int(round(chunk_duration * sample_rate)))

    logger.debug(
        "Splitting %d samples into %.2fs chunks (%d samples each)",
        len(data), chunk_duration, chunk_size,
    )

    for offset in range(0, len(data), chunk_size):
        yield AudioChunk(
            samples=data[offset : offset + chunk_size],
            sample_rate=sample_rate,
            start_time=offset / sample_rate,
        )
