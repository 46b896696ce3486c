"""
callshield/audio/normalizer.py
===============================
Audio Ingest — CallShield

Responsibility:
    - Validate uploaded audio (.wav / .mp3, non-empty, at most 30 minutes)
    - Decode with pydub, downmix to mono, resample to the analysis rate
    - Return float32 PCM samples in [-1, 1] ready for chunking

This module does NOT:
    - Split audio into chunks (see chunker.py)
    - Extract features or score anything
"""

import io
import logging
import os

import numpy as np
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

logger = logging.getLogger("callshield.audio.normalizer")


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ALLOWED_EXTENSIONS = {".wav", ".mp3"}
TARGET_SAMPLE_RATE = 24000  # Hz
TARGET_CHANNELS = 1
MAX_DURATION_SECONDS = 1800


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class AudioValidationError(Exception):
    """Raised when an uploaded audio file is rejected."""


class AudioNormalizationError(Exception):
    """Raised when decoding or conversion fails unexpectedly."""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_extension(filename: str) -> str:
    """
    Return the upload's extension (lower-case, with the dot).

    Raises:
        AudioValidationError: No filename, or a format other than .wav/.mp3.
    """
    if not filename:
        raise AudioValidationError("Upload has no filename.")

    ext = os.path.splitext(filename)[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        allowed = ", ".join(sorted(ALLOWED_EXTENSIONS))
        raise AudioValidationError(f"Call audio must be one of {allowed}; got '{ext or filename}'.")
    return ext


def validate_duration(audio: AudioSegment) -> float:
    """Return the decoded duration in seconds, rejecting empty or over-long calls."""
    seconds = audio.duration_seconds
    if seconds <= 0:
        raise AudioValidationError("Call audio contains no samples.")
    if seconds > MAX_DURATION_SECONDS:
        raise AudioValidationError(
            f"Call audio lasts {seconds:.1f}s; the limit is {MAX_DURATION_SECONDS}s."
        )
    return seconds


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def normalize_audio(
    audio_bytes: bytes,
    filename: str,
    sample_rate: int = TARGET_SAMPLE_RATE,
) -> np.ndarray:
    """
    Validate and decode one uploaded file into analysis-ready samples.

    Args:
        audio_bytes: Raw bytes of the upload.
        filename:    Original filename (used for the format check).
        sample_rate: Output sample rate in Hz.

    Returns:
        1-D float32 array of mono samples in [-1, 1].

    Raises:
        AudioValidationError:    Bad extension, empty file, corrupt data,
                                 zero or excessive duration.
        AudioNormalizationError: Any other decoding/conversion failure.
    """
    ext = validate_extension(filename)
    if not audio_bytes:
        raise AudioValidationError("Uploaded call audio is empty.")

    segment = _decode(audio_bytes, ext)
    seconds = validate_duration(segment)
    segment = segment.set_channels(TARGET_CHANNELS).set_frame_rate(sample_rate)

    try:
        full_scale = float(1 << (8 * segment.sample_width - 1))
        samples = np.array(segment.get_array_of_samples(), dtype=np.float32) / full_scale
    except (ValueError, TypeError) as exc:
        raise AudioNormalizationError(f"Could not convert decoded audio to PCM: {exc}") from exc

    logger.info(
        "Normalized %s: %.2fs -> %d Hz mono, %d samples",
        filename, seconds, sample_rate, len(samples),
    )
    return np.clip(samples, -1.0, 1.0)


def _decode(audio_bytes: bytes, ext: str) -> AudioSegment:
    try:
        return AudioSegment.from_file(io.BytesIO(audio_bytes), format=ext[1:])
    except CouldntDecodeError as exc:
        raise AudioValidationError("Call audio is corrupt or in an unreadable encoding.") from exc
    except Exception as exc:
        raise AudioNormalizationError(f"Decoder failed: {exc}") from exc
