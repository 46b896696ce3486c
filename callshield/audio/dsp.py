"""
callshield/audio/dsp.py
========================
Shared signal helpers — CallShield audio layer

Responsibility:
    - Bounded normalization used by every acoustic feature
    - Framing helpers (fixed-size frames, frame RMS)
    - Autocorrelation pitch contour (25 ms frames, 10 ms hop, 50–500 Hz)
    - Zero-crossing rate and harmonic-to-noise ratio estimates

Both the acoustic feature extractor and the speaker tracker build on
these helpers so that pitch and voice quality are measured the same way
everywhere.

This module does NOT:
    - Hold any state between calls
    - Classify, score, or fuse anything
"""

import numpy as np

# ---------------------------------------------------------------------------
# Pitch search bounds
# ---------------------------------------------------------------------------

PITCH_MIN_HZ: float = 50.0
PITCH_MAX_HZ: float = 500.0
PITCH_FRAME_SEC: float = 0.025
PITCH_HOP_SEC: float = 0.010

# Autocorrelation lags skipped before searching for the HNR peak
HNR_LEAD_IN: int = 20
HNR_MAX_DB: float = 20.0


def normalize(value: float, min_value: float, max_value: float) -> float:
    """Map *value* from [min_value, max_value] onto [0, 1], clamped."""
    if max_value == min_value:
        return 0.0
    scaled = (value - min_value) / (max_value - min_value)
    if np.isnan(scaled):
        return 0.0
    return float(min(1.0, max(0.0, scaled)))


def as_samples(audio) -> np.ndarray:
    """Coerce any sample buffer into a 1-D float64 array."""
    data = np.asarray(audio, dtype=np.float64)
    if data.ndim == 2:
        # Mix down to mono; channels are the shorter axis
        data = data.mean(axis=1) if data.shape[0] >= data.shape[1] else data.mean(axis=0)
    return np.ravel(data)


def frame_starts(n_samples: int, frame_size: int, hop: int) -> range:
    """
    Start offsets of every full frame that ends strictly before the end
    of the buffer.
    """
    if frame_size <= 0 or hop <= 0 or n_samples <= frame_size:
        return range(0)
    return range(0, n_samples - frame_size, hop)


def frame_matrix(data: np.ndarray, frame_size: int, hop: int) -> np.ndarray:
    """Stack the frames described by frame_starts() into a 2-D array."""
    starts = frame_starts(len(data), frame_size, hop)
    if len(starts) == 0:
        return np.empty((0, max(frame_size, 0)), dtype=np.float64)
    return np.stack([data[s : s + frame_size] for s in starts])


def frame_rms(data: np.ndarray, frame_size: int, hop: int | None = None) -> np.ndarray:
    """RMS of each frame (non-overlapping when *hop* is omitted)."""
    frames = frame_matrix(data, frame_size, hop or frame_size)
    if frames.size == 0:
        return np.empty(0, dtype=np.float64)
    return np.sqrt(np.mean(frames ** 2, axis=1))


def zero_crossings(data: np.ndarray) -> int:
    """Count sign changes, treating 0 as non-negative."""
    if len(data) < 2:
        return 0
    non_negative = data >= 0
    return int(np.count_nonzero(non_negative[1:] != non_negative[:-1]))


def zero_crossing_rate(data: np.ndarray) -> float:
    """Zero crossings per sample."""
    if len(data) == 0:
        return 0.0
    return zero_crossings(data) / len(data)


def _autocorrelate_rows(frames: np.ndarray) -> np.ndarray:
    """Raw (unnormalized) autocorrelation of each row, lags 0..n-1."""
    n = frames.shape[-1]
    size = 1 << int(np.ceil(np.log2(max(2 * n - 1, 1))))
    spectrum = np.fft.rfft(frames, n=size, axis=-1)
    return np.fft.irfft(spectrum * np.conj(spectrum), n=size, axis=-1)[..., :n]


def pitch_contour(data: np.ndarray, sample_rate: int) -> np.ndarray:
    """
    Estimate a pitch contour (Hz) with frame-wise autocorrelation.

    Each 25 ms frame (10 ms hop) picks the lag with the highest positive
    correlation inside the 50–500 Hz lag range. Frames whose estimate is
    not strictly inside (50, 500) Hz are dropped, so unvoiced or silent
    audio produces an empty contour.
    """
    frame_size = int(sample_rate * PITCH_FRAME_SEC)
    hop = int(sample_rate * PITCH_HOP_SEC)
    frames = frame_matrix(data, frame_size, hop)
    if frames.shape[0] == 0:
        return np.empty(0, dtype=np.float64)

    min_lag = int(sample_rate / PITCH_MAX_HZ)
    max_lag = min(int(sample_rate / PITCH_MIN_HZ), frame_size)
    if max_lag <= min_lag:
        return np.empty(0, dtype=np.float64)

    corr = _autocorrelate_rows(frames)[:, min_lag:max_lag]
    best = np.argmax(corr, axis=1)
    peak = corr[np.arange(corr.shape[0]), best]

    voiced = peak > 1e-12
    pitches = sample_rate / (best[voiced] + min_lag)
    in_range = (pitches > PITCH_MIN_HZ) & (pitches < PITCH_MAX_HZ)
    return pitches[in_range].astype(np.float64)


def harmonic_to_noise_ratio(data: np.ndarray) -> float:
    """
    Harmonic-to-noise ratio (dB) from the energy-normalized
    autocorrelation peak beyond a short lead-in.

    Returns 0.0 for silent or too-short buffers.
    """
    energy = float(np.sum(data ** 2))
    if energy <= 0.0 or len(data) <= HNR_LEAD_IN:
        return 0.0

    corr = _autocorrelate_rows(data[np.newaxis, :])[0] / energy
    peak = float(np.max(corr[HNR_LEAD_IN:]))
    if peak <= 0.0:
        return 0.0
    noise = 1.0 - peak
    if noise <= 0.0:
        return HNR_MAX_DB
    return float(10.0 * np.log10(peak / noise))


def linear_slope(values: np.ndarray) -> float:
    """Least-squares slope of *values* against their index."""
    n = len(values)
    if n < 2:
        return 0.0
    x = np.arange(n, dtype=np.float64)
    sum_x = x.sum()
    sum_y = float(np.sum(values))
    sum_xy = float(np.dot(x, values))
    sum_x2 = float(np.dot(x, x))
    denominator = n * sum_x2 - sum_x * sum_x
    if denominator == 0:
        return 0.0
    return float((n * sum_xy - sum_x * sum_y) / denominator)
