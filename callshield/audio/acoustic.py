"""
callshield/audio/acoustic.py
=============================
Acoustic Feature Extractor — CallShield

Responsibility:
    - Turn one raw audio chunk (mono float PCM) into ~18 bounded features
    - Pitch, energy, voice stress, spectral, temporal, background noise
    - Composite stress and audio-quality scores

Every continuous output is mapped onto [0, 1] with fixed, feature-specific
bounds (see the *_BOUNDS constants). Downstream thresholds in the fusion
layer assume exactly these bounds.

State:
    The extractor keeps a single "previous spectrum" slot, used only for
    spectral flux. reset() clears it.

This module does NOT:
    - Score fraud or classify speakers
    - Perform speech-to-text
    - Call any external API
"""

import logging
from dataclasses import asdict, dataclass
from enum import Enum

import numpy as np

from callshield.audio import dsp
from callshield.audio.dsp import normalize

logger = logging.getLogger("callshield.audio.acoustic")


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_SAMPLE_RATE: int = 24000
DEFAULT_WINDOW_SIZE: int = 2048

_ENERGY_FRAME: int = 512
_PAUSE_FRAME: int = 256
_PAUSE_RMS_THRESHOLD: float = 0.02
_ENVELOPE_WINDOW_SEC: float = 0.020
_ENVELOPE_HOP_SEC: float = 0.010
_SYLLABLE_PEAK_THRESHOLD: float = 0.1

# ---------------------------------------------------------------------------
# Normalization bounds — (min, max) per raw feature
# ---------------------------------------------------------------------------

PITCH_MEAN_BOUNDS = (50.0, 400.0)
PITCH_STD_BOUNDS = (0.0, 100.0)
PITCH_RANGE_BOUNDS = (0.0, 200.0)
PITCH_SLOPE_BOUNDS = (-50.0, 50.0)
ENERGY_MEAN_BOUNDS = (0.0, 0.5)
ENERGY_STD_BOUNDS = (0.0, 0.2)
DYNAMIC_RANGE_DB_BOUNDS = (0.0, 60.0)
JITTER_BOUNDS = (0.0, 0.05)
SHIMMER_BOUNDS = (0.0, 0.1)
HNR_DB_BOUNDS = (0.0, 20.0)
FLUX_BOUNDS = (0.0, 10.0)
SPEECH_RATE_BOUNDS = (0.0, 8.0)
ARTICULATION_RATE_BOUNDS = (0.0, 10.0)
ZCR_BOUNDS = (0.0, 0.3)

# Band split (spectrum bin indices) for background classification
_LOW_BAND_END: int = 20
_MID_BAND_END: int = 100


class NoiseType(str, Enum):
    """Background noise classes."""

    CLEAN = "clean"
    OFFICE = "office"
    OUTDOOR = "outdoor"
    CALL_CENTER = "call_center"
    UNKNOWN = "unknown"


@dataclass
class AcousticFeatures:
    """Bounded acoustic features for one chunk."""

    # Pitch
    pitch_mean: float = 0.0
    pitch_variance: float = 0.0
    pitch_range: float = 0.0
    pitch_slope: float = 0.0
    # Energy
    energy_mean: float = 0.0
    energy_variance: float = 0.0
    energy_spikes: float = 0.0
    energy_dynamic_range: float = 0.0
    # Voice stress
    voice_stress: float = 0.0
    jitter: float = 0.0
    shimmer: float = 0.0
    harmonic_to_noise_ratio: float = 0.0
    # Spectral
    spectral_centroid: float = 0.0
    spectral_flatness: float = 0.0
    spectral_rolloff: float = 0.0
    spectral_flux: float = 0.0
    # Temporal
    speech_rate: float = 0.0
    articulation_rate: float = 0.0
    pause_ratio: float = 0.0
    zero_crossing_rate: float = 0.0
    # Background
    background_entropy: float = 0.0
    background_noise_type: NoiseType = NoiseType.CLEAN
    # Composite
    overall_stress_score: float = 0.0
    audio_quality_score: float = 0.0

    def feature_vector(self) -> list[float]:
        """The 18 numeric features, in a fixed order."""
        return [
            self.pitch_mean,
            self.pitch_variance,
            self.pitch_range,
            self.pitch_slope,
            self.energy_mean,
            self.energy_variance,
            self.energy_spikes,
            self.energy_dynamic_range,
            self.voice_stress,
            self.jitter,
            self.shimmer,
            self.harmonic_to_noise_ratio,
            self.spectral_centroid,
            self.spectral_flatness,
            self.spectral_rolloff,
            self.spectral_flux,
            self.speech_rate,
            self.zero_crossing_rate,
        ]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["background_noise_type"] = self.background_noise_type.value
        return data


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class AcousticFeatureExtractor:
    """
    Per-chunk acoustic feature extraction.

    Args:
        sample_rate: Nominal sample rate of incoming chunks (Hz).
        window_size: Upper bound on the number of samples used for the
            magnitude spectrum.
    """

    def __init__(
        self,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        window_size: int = DEFAULT_WINDOW_SIZE,
    ) -> None:
        self.sample_rate = sample_rate
        self.window_size = window_size
        self._previous_spectrum: np.ndarray | None = None

    # -- public -------------------------------------------------------------

    def extract(self, samples) -> AcousticFeatures:
        """
        Extract all acoustic features from one chunk.

        Empty or very short buffers degrade to zero-valued features; they
        never raise.
        """
        data = dsp.as_samples(samples)

        contour = dsp.pitch_contour(data, self.sample_rate)
        frame_energies = dsp.frame_rms(data, _ENERGY_FRAME)
        spectrum = self._compute_spectrum(data)

        pitch = self._pitch_features(contour)
        energy = self._energy_features(frame_energies)
        stress = self._stress_features(data, contour, frame_energies)
        spectral = self._spectral_features(spectrum)
        temporal = self._temporal_features(data)
        entropy, noise_type = self._background_features(spectrum)

        overall_stress = min(
            1.0,
            stress["voice_stress"] * 0.4
            + energy["energy_variance"] * 0.2
            + energy["energy_spikes"] * 0.15
            + pitch["pitch_variance"] * 0.25,
        )
        noise_quality = 1.0 if noise_type is NoiseType.CLEAN else 0.7
        audio_quality = noise_quality * 0.5 + (1.0 - entropy * 0.5) * 0.5

        features = AcousticFeatures(
            **pitch,
            **energy,
            **stress,
            **spectral,
            **temporal,
            background_entropy=entropy,
            background_noise_type=noise_type,
            overall_stress_score=float(overall_stress),
            audio_quality_score=float(audio_quality),
        )

        logger.debug(
            "Acoustic features: stress=%.3f quality=%.3f noise=%s (%d samples)",
            features.overall_stress_score,
            features.audio_quality_score,
            noise_type.value,
            len(data),
        )
        return features

    def reset(self) -> None:
        """Forget the previous spectrum (spectral flux restarts at 0)."""
        self._previous_spectrum = None

    # -- pitch --------------------------------------------------------------

    def _pitch_features(self, contour: np.ndarray) -> dict[str, float]:
        if len(contour) == 0:
            return {
                "pitch_mean": 0.0,
                "pitch_variance": 0.0,
                "pitch_range": 0.0,
                "pitch_slope": 0.0,
            }

        mean = float(np.mean(contour))
        std = float(np.sqrt(np.mean((contour - mean) ** 2)))
        pitch_range = float(np.max(contour) - np.min(contour))
        slope = dsp.linear_slope(contour)

        return {
            "pitch_mean": normalize(mean, *PITCH_MEAN_BOUNDS),
            "pitch_variance": normalize(std, *PITCH_STD_BOUNDS),
            "pitch_range": normalize(pitch_range, *PITCH_RANGE_BOUNDS),
            "pitch_slope": normalize(slope, *PITCH_SLOPE_BOUNDS),
        }

    # -- energy -------------------------------------------------------------

    def _energy_features(self, energies: np.ndarray) -> dict[str, float]:
        if len(energies) == 0:
            return {
                "energy_mean": 0.0,
                "energy_variance": 0.0,
                "energy_spikes": 0.0,
                "energy_dynamic_range": 0.0,
            }

        mean = float(np.mean(energies))
        std = float(np.std(energies))
        spikes = int(np.count_nonzero(energies > mean + 2 * std))

        max_energy = float(np.max(energies))
        min_energy = max(0.0001, float(np.min(energies)))
        dynamic_range = 20.0 * np.log10(max_energy / min_energy) if max_energy > 0 else 0.0

        return {
            "energy_mean": normalize(mean, *ENERGY_MEAN_BOUNDS),
            "energy_variance": normalize(std, *ENERGY_STD_BOUNDS),
            "energy_spikes": min(1.0, spikes / 10),
            "energy_dynamic_range": normalize(dynamic_range, *DYNAMIC_RANGE_DB_BOUNDS),
        }

    # -- voice stress -------------------------------------------------------

    def _stress_features(
        self,
        data: np.ndarray,
        contour: np.ndarray,
        energies: np.ndarray,
    ) -> dict[str, float]:
        # Silence carries no voice, hence no stress
        if len(data) == 0 or not np.any(data):
            return {
                "voice_stress": 0.0,
                "jitter": 0.0,
                "shimmer": 0.0,
                "harmonic_to_noise_ratio": 0.0,
            }

        jitter = _perturbation(contour)
        shimmer = _perturbation(energies)
        hnr = normalize(dsp.harmonic_to_noise_ratio(data), *HNR_DB_BOUNDS)

        jitter_n = normalize(jitter, *JITTER_BOUNDS)
        shimmer_n = normalize(shimmer, *SHIMMER_BOUNDS)
        voice_stress = min(1.0, jitter_n * 0.3 + shimmer_n * 0.3 + (1.0 - hnr) * 0.4)

        return {
            "voice_stress": float(voice_stress),
            "jitter": jitter_n,
            "shimmer": shimmer_n,
            "harmonic_to_noise_ratio": hnr,
        }

    # -- spectral -----------------------------------------------------------

    def _compute_spectrum(self, data: np.ndarray) -> np.ndarray:
        """
        Magnitude spectrum over the first min(window_size, n) samples,
        n // 2 bins, scaled by 1/n.
        """
        n = min(self.window_size, len(data))
        if n < 2:
            return np.empty(0, dtype=np.float64)
        magnitudes = np.abs(np.fft.fft(data[:n]))[: n // 2]
        return magnitudes / n

    def _bin_frequencies(self, spectrum: np.ndarray) -> np.ndarray:
        return np.arange(len(spectrum)) * self.sample_rate / (2 * len(spectrum))

    def _spectral_features(self, spectrum: np.ndarray) -> dict[str, float]:
        flux = self._spectral_flux(spectrum)
        self._previous_spectrum = spectrum.copy()

        total = float(np.sum(spectrum))
        if len(spectrum) == 0 or total <= 0.0:
            return {
                "spectral_centroid": 0.0,
                "spectral_flatness": 0.0,
                "spectral_rolloff": 0.0,
                "spectral_flux": normalize(flux, *FLUX_BOUNDS),
            }

        freqs = self._bin_frequencies(spectrum)
        centroid = float(np.dot(freqs, spectrum) / total)

        positive = spectrum[spectrum > 0]
        geometric_mean = float(np.exp(np.mean(np.log(positive + 1e-10))))
        arithmetic_mean = float(np.mean(positive))
        flatness = geometric_mean / arithmetic_mean if arithmetic_mean > 0 else 0.0

        cumulative = np.cumsum(spectrum)
        rolloff_bin = int(np.searchsorted(cumulative, 0.95 * total))
        rolloff = float(freqs[min(rolloff_bin, len(freqs) - 1)])

        return {
            "spectral_centroid": normalize(centroid, 0.0, self.sample_rate / 4),
            "spectral_flatness": min(1.0, flatness),
            "spectral_rolloff": normalize(rolloff, 0.0, self.sample_rate / 2),
            "spectral_flux": normalize(flux, *FLUX_BOUNDS),
        }

    def _spectral_flux(self, spectrum: np.ndarray) -> float:
        if self._previous_spectrum is None:
            return 0.0
        overlap = min(len(spectrum), len(self._previous_spectrum))
        if overlap == 0:
            return 0.0
        diff = spectrum[:overlap] - self._previous_spectrum[:overlap]
        return float(np.sqrt(np.sum(np.square(diff[diff > 0]))))

    # -- temporal -----------------------------------------------------------

    def _temporal_features(self, data: np.ndarray) -> dict[str, float]:
        zcr = dsp.zero_crossing_rate(data)

        pause_energies = dsp.frame_rms(data, _PAUSE_FRAME)
        if len(pause_energies) > 0:
            pause_ratio = float(np.count_nonzero(pause_energies <= _PAUSE_RMS_THRESHOLD) / len(pause_energies))
        else:
            pause_ratio = 0.0

        syllables = self._count_syllables(data)
        duration = len(data) / self.sample_rate if self.sample_rate else 0.0
        speech_rate = syllables / duration if duration > 0 else 0.0
        articulation_rate = speech_rate / (1.0 - pause_ratio) if pause_ratio < 1.0 else 0.0

        return {
            "speech_rate": normalize(speech_rate, *SPEECH_RATE_BOUNDS),
            "articulation_rate": normalize(articulation_rate, *ARTICULATION_RATE_BOUNDS),
            "pause_ratio": min(1.0, pause_ratio),
            "zero_crossing_rate": normalize(zcr, *ZCR_BOUNDS),
        }

    def _count_syllables(self, data: np.ndarray) -> int:
        """Local maxima of the 20 ms / 10 ms energy envelope above 0.1."""
        envelope = dsp.frame_rms(
            data,
            int(self.sample_rate * _ENVELOPE_WINDOW_SEC),
            int(self.sample_rate * _ENVELOPE_HOP_SEC),
        )
        if len(envelope) < 3:
            return 0
        middle = envelope[1:-1]
        peaks = (
            (middle > envelope[:-2])
            & (middle > envelope[2:])
            & (middle > _SYLLABLE_PEAK_THRESHOLD)
        )
        return int(np.count_nonzero(peaks))

    # -- background ---------------------------------------------------------

    def _background_features(self, spectrum: np.ndarray) -> tuple[float, NoiseType]:
        total = float(np.sum(spectrum))
        entropy = 0.0
        if total > 0 and len(spectrum) > 1:
            p = spectrum[spectrum > 0] / total
            entropy = float(-np.sum(p * np.log2(p)) / np.log2(len(spectrum)))
        entropy = min(1.0, max(0.0, entropy))
        return entropy, classify_noise_type(spectrum, entropy)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _perturbation(values: np.ndarray) -> float:
    """Mean absolute successive difference relative to the mean."""
    if len(values) < 2:
        return 0.0
    mean = float(np.mean(values))
    if mean <= 0:
        return 0.0
    return float(np.mean(np.abs(np.diff(values))) / mean)


def classify_noise_type(spectrum: np.ndarray, entropy: float) -> NoiseType:
    """
    Classify background noise from band energy ratios and spectral entropy.

    Rules are evaluated in order; the first that holds wins.
    """
    low = float(np.sum(spectrum[:_LOW_BAND_END]))
    mid = float(np.sum(spectrum[_LOW_BAND_END:_MID_BAND_END]))
    high = float(np.sum(spectrum[_MID_BAND_END:]))
    total = low + mid + high

    if total < 0.01:
        return NoiseType.CLEAN

    low_ratio = low / total
    high_ratio = high / total

    if entropy > 0.8 and high_ratio > 0.3:
        return NoiseType.CALL_CENTER
    if low_ratio > 0.6 and entropy < 0.5:
        return NoiseType.OUTDOOR
    if entropy > 0.6 and low_ratio < 0.4:
        return NoiseType.OFFICE
    if entropy < 0.3:
        return NoiseType.CLEAN
    return NoiseType.UNKNOWN
