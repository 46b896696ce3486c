"""
callshield/risk/fusion.py
==========================
Signal Fusion — CallShield

Responsibility:
    - Combine text, audio, speaker and context signals of one chunk into
      a single fraud probability in [0, 1]
    - Compute a confidence for that probability from the signals present
    - Map a probability to a risk level (safe | warning | blocked)
    - Collect the explainable indicators that crossed their thresholds

Fusion:
    Each present signal contributes score × weight to a weighted sum and
    weight to a total; probability = sum / total (0 when nothing is
    present). Missing signals (stage disabled, no transcript) are simply
    left out, so the remaining weights renormalize.

This module does NOT:
    - Extract features (inputs arrive pre-computed)
    - Apply the metadata contextual weighting (see audio/metadata.py)
    - Hold state between chunks
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from callshield.audio.acoustic import AcousticFeatures, NoiseType
from callshield.audio.metadata import AggregatedMetadata
from callshield.diarization.tracker import SpeakerProfile
from callshield.nlp.text_features import TextFeatures

logger = logging.getLogger("callshield.risk.fusion")


# ---------------------------------------------------------------------------
# Weights and thresholds
# ---------------------------------------------------------------------------

DEFAULT_WEIGHTS: dict[str, float] = {
    "text":    0.35,
    "audio":   0.25,
    "speaker": 0.20,
    "context": 0.20,
}

RISK_THRESHOLD_BLOCKED: float = 0.8
RISK_THRESHOLD_WARNING: float = 0.5

TEXT_CONFIDENCE: float = 0.9

# Indicator thresholds
_AUTHORITY_THRESHOLD: float = 0.5
_URGENCY_THRESHOLD: float = 0.5
_PII_THRESHOLD: float = 0.5
_THREAT_THRESHOLD: float = 0.3
_BIGRAM_THRESHOLD: float = 0.7
_VOICE_STRESS_THRESHOLD: float = 0.7
_RAPID_SPEECH_THRESHOLD: float = 0.8
_AGGRESSIVE_SPIKES_THRESHOLD: float = 0.6
_HIGH_RISK_SPEAKER_THRESHOLD: float = 0.6
_STRESS_MARKER_LIMIT: int = 3


class RiskLevel(str, Enum):
    SAFE = "safe"
    WARNING = "warning"
    BLOCKED = "blocked"


@dataclass
class FusionResult:
    """Base probability, its confidence, and each signal's raw score."""

    probability: float
    confidence: float
    contributions: dict[str, float] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Per-signal scores
# ---------------------------------------------------------------------------


def audio_signal_score(audio: AcousticFeatures) -> float:
    return (
        audio.overall_stress_score * 0.4
        + audio.voice_stress * 0.3
        + (0.2 if audio.speech_rate > 0.7 else 0.0)
        + (0.1 if audio.energy_spikes > 0.5 else 0.0)
    )


def context_signal_score(metadata: AggregatedMetadata) -> float:
    return (
        (0.2 if metadata.stress_markers else 0.0)
        + (0.1 if metadata.background_noise_level > 0.5 else 0.0)
        + (1.0 - metadata.confidence_score) * 0.1
    )


# ---------------------------------------------------------------------------
# Fusion
# ---------------------------------------------------------------------------


def fuse_signals(
    text: TextFeatures | None,
    audio: AcousticFeatures | None,
    speaker: SpeakerProfile | None,
    metadata: AggregatedMetadata | None,
    weights: dict[str, float] = DEFAULT_WEIGHTS,
) -> FusionResult:
    """
    Weighted fusion over the signals that are present.

    Confidence is the mean of the per-signal confidences actually present
    (text 0.9, audio quality, speaker match confidence, metadata
    integrity); 0 when nothing is present.
    """
    scores: dict[str, float] = {}
    confidences: list[float] = []

    if text is not None:
        scores["text"] = text.text_fraud_score
        confidences.append(TEXT_CONFIDENCE)
    if audio is not None:
        scores["audio"] = audio_signal_score(audio)
        confidences.append(audio.audio_quality_score)
    if speaker is not None:
        scores["speaker"] = speaker.fraud_probability
        confidences.append(speaker.avg_confidence)
    if metadata is not None:
        scores["context"] = context_signal_score(metadata)
        confidences.append(metadata.quality_indicators.audio_integrity)

    total_weight = sum(weights[name] for name in scores)
    weighted_sum = sum(score * weights[name] for name, score in scores.items())

    probability = min(1.0, weighted_sum / total_weight) if total_weight > 0 else 0.0
    confidence = sum(confidences) / len(confidences) if confidences else 0.0

    logger.debug(
        "Fusion: probability=%.3f confidence=%.3f signals=%s",
        probability, confidence, sorted(scores),
    )
    return FusionResult(
        probability=float(probability),
        confidence=float(confidence),
        contributions={name: float(score) for name, score in scores.items()},
    )


def determine_risk_level(probability: float) -> RiskLevel:
    if probability >= RISK_THRESHOLD_BLOCKED:
        return RiskLevel.BLOCKED
    if probability >= RISK_THRESHOLD_WARNING:
        return RiskLevel.WARNING
    return RiskLevel.SAFE


def collect_indicators(
    text: TextFeatures | None,
    audio: AcousticFeatures | None,
    speaker: SpeakerProfile | None,
    metadata: AggregatedMetadata | None,
) -> list[str]:
    """Deduplicated, ordered list of indicators that crossed a threshold."""
    indicators: list[str] = []

    if text is not None:
        if text.authority_score > _AUTHORITY_THRESHOLD:
            indicators.append("authority_impersonation")
            indicators.extend(f"phrase: {p}" for p in text.authority_phrases)
        if text.urgency_score > _URGENCY_THRESHOLD:
            indicators.append("high_urgency")
        if text.pii_request_score > _PII_THRESHOLD:
            indicators.append("pii_solicitation")
            indicators.extend(f"pii_type: {t}" for t in text.pii_types)
        if text.threat_density > _THREAT_THRESHOLD:
            indicators.append("threat_language")
        if text.bigram_threat_score > _BIGRAM_THRESHOLD:
            indicators.append("dangerous_phrases")
        if text.harassment_indicators:
            indicators.append("harassment")
            indicators.extend(f"harassment: {h}" for h in text.harassment_indicators)

    if audio is not None:
        if audio.voice_stress > _VOICE_STRESS_THRESHOLD:
            indicators.append("high_voice_stress")
        if audio.speech_rate > _RAPID_SPEECH_THRESHOLD:
            indicators.append("rapid_speech")
        if audio.energy_spikes > _AGGRESSIVE_SPIKES_THRESHOLD:
            indicators.append("aggressive_tone")
        if audio.background_noise_type is NoiseType.CALL_CENTER:
            indicators.append("call_center_background")

    if speaker is not None and speaker.fraud_probability > _HIGH_RISK_SPEAKER_THRESHOLD:
        indicators.append(f"high_risk_speaker:{speaker.id}")

    if metadata is not None:
        if len(metadata.stress_markers) > _STRESS_MARKER_LIMIT:
            indicators.append("multiple_stress_markers")
        if metadata.quality_indicators.clipping_detected:
            indicators.append("audio_manipulation")

    return list(dict.fromkeys(indicators))
