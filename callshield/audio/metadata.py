"""
callshield/audio/metadata.py
=============================
Contextual Metadata Feed — CallShield

Responsibility:
    - Maintain five low-rate metadata channels alongside the main
      analysis: confidence, noise, amplitude, stress, quality
    - Detect short-lived stress markers in the raw chunk
      (volume spikes, pitch breaks, speech hesitation)
    - Track signal quality indicators (SNR, clipping, silence, integrity)
    - Nudge the fused risk probability by audio context
      (apply_contextual_weighting)

Bounded state:
    - Each channel keeps its latest 100 entries (oldest evicted first)
    - Stress markers older than 5 seconds are pruned on every insert
    - Channel averages use the latest 20 entries, weighted

This module does NOT:
    - Extract acoustic or text features (see acoustic.py / text_features.py)
    - Decide risk levels or alerts
"""

import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable

import numpy as np

from callshield.audio import dsp

logger = logging.getLogger("callshield.audio.metadata")


# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

CHANNEL_CAPACITY: int = 100
CHANNEL_AVERAGE_WINDOW: int = 20
MARKER_WINDOW_SEC: float = 5.0
RECENT_STRESS_SEC: float = 2.0

_NOISE_FLOOR_FRACTION: float = 0.2
_NOISE_SCALE: float = 5.0
_AMPLITUDE_SCALE: float = 3.0

_SPIKE_PEAK_RATIO: float = 3.0
_SPIKE_MIN_PEAK: float = 0.5
_PITCH_BREAK_ZCR: float = 0.3
_HESITATION_LEVEL: float = 0.05
_HESITATION_MIN: float = 0.3
_HESITATION_MAX: float = 0.7

_SILENCE_LEVEL: float = 0.01
_CLIPPING_LEVEL: float = 0.99

_CONFIDENCE_WEIGHT: float = 1.2


class ChannelType(str, Enum):
    """Metadata channels."""

    CONFIDENCE = "confidence"
    NOISE = "noise"
    AMPLITUDE = "amplitude"
    STRESS = "stress"
    QUALITY = "quality"


class StressMarkerType(str, Enum):
    """Kinds of stress marker detected in raw audio."""

    VOLUME_SPIKE = "volume_spike"
    PITCH_BREAK = "pitch_break"
    SPEECH_HESITATION = "speech_hesitation"


@dataclass(frozen=True)
class ChannelEntry:
    """One observation on a metadata channel."""

    value: float
    timestamp: float
    weight: float = 1.0


@dataclass(frozen=True)
class StressMarker:
    """A transient stress cue; duration is in seconds."""

    type: StressMarkerType
    intensity: float
    timestamp: float
    duration: float


@dataclass
class QualityIndicators:
    """Signal quality of the most recent chunk."""

    signal_to_noise_ratio: float = 1.0
    clipping_detected: bool = False
    silence_ratio: float = 0.0
    audio_integrity: float = 1.0


@dataclass
class AggregatedMetadata:
    """Snapshot of all metadata channels, used by the fusion stage."""

    confidence_score: float
    background_noise_level: float
    average_amplitude: float
    stress_level: float
    signal_quality: float
    stress_markers: list[StressMarker]
    quality_indicators: QualityIndicators
    contextual_weight: float

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["stress_markers"] = [
            {**asdict(marker), "type": marker.type.value}
            for marker in self.stress_markers
        ]
        return data


@dataclass
class SpeakerContext:
    """Speaker-side context handed to the fusion layer."""

    speaker_id: str | None = None
    turn_count: int = 0
    speaking_duration: float = 0.0


@dataclass
class FusionInput:
    """Everything apply_contextual_weighting() looks at."""

    text_features: dict[str, float]
    audio_features: dict[str, float]
    metadata: AggregatedMetadata
    speaker_context: SpeakerContext = field(default_factory=SpeakerContext)


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------


class MetadataFeed:
    """
    Parallel metadata channels for one call session.

    Args:
        clock: Time source in seconds. Defaults to time.monotonic; tests
            inject a fake clock to control the marker window.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._channels: dict[ChannelType, deque[ChannelEntry]] = {
            channel: deque(maxlen=CHANNEL_CAPACITY) for channel in ChannelType
        }
        self._stress_markers: list[StressMarker] = []
        self._quality = QualityIndicators()

    # -- channels -----------------------------------------------------------

    def feed_channel(
        self,
        channel: ChannelType | str,
        value: float,
        weight: float = 1.0,
    ) -> None:
        """Append a value (clamped to [0, 1]) to a channel."""
        channel = ChannelType(channel)
        entry = ChannelEntry(
            value=min(1.0, max(0.0, float(value))),
            timestamp=self._clock(),
            weight=weight,
        )
        self._channels[channel].append(entry)

    def update_confidence(self, confidence: float) -> None:
        """Feed the analysis confidence; weighted above raw audio channels."""
        self.feed_channel(ChannelType.CONFIDENCE, confidence, _CONFIDENCE_WEIGHT)

    def channel_average(self, channel: ChannelType | str) -> float:
        """Weighted mean of the latest 20 entries (0 when empty)."""
        entries = list(self._channels[ChannelType(channel)])[-CHANNEL_AVERAGE_WINDOW:]
        total_weight = sum(e.weight for e in entries)
        if total_weight <= 0:
            return 0.0
        return sum(e.value * e.weight for e in entries) / total_weight

    def channel_size(self, channel: ChannelType | str) -> int:
        return len(self._channels[ChannelType(channel)])

    # -- audio --------------------------------------------------------------

    def process_audio_chunk(self, samples) -> None:
        """
        Derive noise, amplitude, stress and quality metadata from one
        raw chunk and feed the corresponding channels.
        """
        data = dsp.as_samples(samples)
        magnitudes = np.abs(data)

        self.feed_channel(ChannelType.NOISE, _estimate_noise_level(magnitudes))
        self.feed_channel(ChannelType.AMPLITUDE, _calculate_amplitude(data))

        self._detect_stress_markers(data, magnitudes)
        self.feed_channel(ChannelType.STRESS, self._recent_stress_level())

        self._update_quality_indicators(magnitudes)
        self.feed_channel(ChannelType.QUALITY, self._quality.audio_integrity)

    def _detect_stress_markers(self, data: np.ndarray, magnitudes: np.ndarray) -> None:
        if len(data) == 0:
            return

        now = self._clock()
        peak = float(np.max(magnitudes))
        mean = float(np.mean(magnitudes))

        if peak > mean * _SPIKE_PEAK_RATIO and peak > _SPIKE_MIN_PEAK:
            self._add_stress_marker(
                StressMarker(StressMarkerType.VOLUME_SPIKE, min(1.0, peak), now, 0.1)
            )

        zcr = dsp.zero_crossing_rate(data)
        if zcr > _PITCH_BREAK_ZCR:
            self._add_stress_marker(
                StressMarker(StressMarkerType.PITCH_BREAK, min(1.0, zcr), now, 0.05)
            )

        quiet_ratio = float(np.count_nonzero(magnitudes < _HESITATION_LEVEL) / len(data))
        if _HESITATION_MIN < quiet_ratio < _HESITATION_MAX:
            self._add_stress_marker(
                StressMarker(StressMarkerType.SPEECH_HESITATION, quiet_ratio, now, 0.2)
            )

    def _add_stress_marker(self, marker: StressMarker) -> None:
        self._stress_markers.append(marker)
        cutoff = self._clock() - MARKER_WINDOW_SEC
        self._stress_markers = [m for m in self._stress_markers if m.timestamp > cutoff]
        logger.debug("Stress marker: %s (%.2f)", marker.type.value, marker.intensity)

    def _recent_stress_level(self) -> float:
        now = self._clock()
        recent = [m for m in self._stress_markers if now - m.timestamp < RECENT_STRESS_SEC]
        if not recent:
            return 0.0
        avg_intensity = sum(m.intensity for m in recent) / len(recent)
        frequency = min(1.0, len(recent) / 5)
        return avg_intensity * 0.6 + frequency * 0.4

    def _update_quality_indicators(self, magnitudes: np.ndarray) -> None:
        if len(magnitudes) == 0:
            # Nothing heard: same record as a fully silent chunk
            snr, clipping, silence = 1.0, False, 1.0
        else:
            signal = float(np.max(magnitudes))
            noise = _estimate_noise_level(magnitudes)
            snr = min(10.0, signal / noise) / 10.0 if noise > 0 else 1.0
            clipping = bool(np.any(magnitudes > _CLIPPING_LEVEL))
            silence = float(np.count_nonzero(magnitudes < _SILENCE_LEVEL) / len(magnitudes))

        self._quality = QualityIndicators(
            signal_to_noise_ratio=snr,
            clipping_detected=clipping,
            silence_ratio=silence,
            audio_integrity=snr * 0.4 + (0.0 if clipping else 0.3) + (1.0 - silence) * 0.3,
        )

    # -- aggregation --------------------------------------------------------

    @property
    def stress_markers(self) -> list[StressMarker]:
        return list(self._stress_markers)

    @property
    def quality_indicators(self) -> QualityIndicators:
        return QualityIndicators(**asdict(self._quality))

    def contextual_weight(self) -> float:
        """Trust in the audio context: integrity, confidence, quietness."""
        return (
            self._quality.audio_integrity * 0.4
            + self.channel_average(ChannelType.CONFIDENCE) * 0.4
            + (1.0 - self.channel_average(ChannelType.NOISE)) * 0.2
        )

    def get_aggregated_metadata(self) -> AggregatedMetadata:
        return AggregatedMetadata(
            confidence_score=self.channel_average(ChannelType.CONFIDENCE),
            background_noise_level=self.channel_average(ChannelType.NOISE),
            average_amplitude=self.channel_average(ChannelType.AMPLITUDE),
            stress_level=self.channel_average(ChannelType.STRESS),
            signal_quality=self.channel_average(ChannelType.QUALITY),
            stress_markers=self.stress_markers,
            quality_indicators=self.quality_indicators,
            contextual_weight=self.contextual_weight(),
        )

    def prepare_fusion_input(
        self,
        text_features: dict[str, float],
        audio_features: dict[str, float],
        speaker_context: SpeakerContext,
    ) -> FusionInput:
        return FusionInput(
            text_features=text_features,
            audio_features=audio_features,
            metadata=self.get_aggregated_metadata(),
            speaker_context=speaker_context,
        )

    @staticmethod
    def apply_contextual_weighting(base_score: float, fusion_input: FusionInput) -> float:
        """
        Adjust a fused probability by audio context.

        +0.10 when more than 3 stress markers are live,
        -0.05 when audio integrity is below 0.5,
        +0.05 when background noise exceeds 0.6.
        The adjustment is scaled by the contextual weight; the result is
        clamped to [0, 1].
        """
        metadata = fusion_input.metadata
        adjustment = 0.0

        if len(metadata.stress_markers) > 3:
            adjustment += 0.1
        if metadata.quality_indicators.audio_integrity < 0.5:
            adjustment -= 0.05
        if metadata.background_noise_level > 0.6:
            adjustment += 0.05

        weighted = base_score + adjustment * metadata.contextual_weight
        return max(0.0, min(1.0, weighted))

    def reset(self) -> None:
        for channel in self._channels.values():
            channel.clear()
        self._stress_markers = []
        self._quality = QualityIndicators()


# ---------------------------------------------------------------------------
# Internal estimators
# ---------------------------------------------------------------------------


def _estimate_noise_level(magnitudes: np.ndarray) -> float:
    """Mean of the quietest 20% of sample magnitudes, scaled ×5, clamped."""
    count = int(len(magnitudes) * _NOISE_FLOOR_FRACTION)
    if count == 0:
        return 0.0
    floor = np.partition(magnitudes, count - 1)[:count]
    return min(1.0, float(np.mean(floor)) * _NOISE_SCALE)


def _calculate_amplitude(data: np.ndarray) -> float:
    """RMS ×3, clamped."""
    if len(data) == 0:
        return 0.0
    return min(1.0, float(np.sqrt(np.mean(data ** 2))) * _AMPLITUDE_SCALE)
