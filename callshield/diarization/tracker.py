"""
callshield/diarization/tracker.py
==================================
Speaker Tracker — CallShield

Responsibility:
    - Best-effort diarization: give every audio segment a consistent
      speaker id by matching a deterministic acoustic fingerprint against
      the running averages of known speakers
    - Keep one SpeakerProfile per speaker (speaking time, turns, match
      confidence, fraud-probability EMA)
    - Merge consecutive same-speaker segments into SpeakerTurns
    - Emit speaker_change and fraud_update events

Fingerprint (per segment):
    average pitch / pitch range — autocorrelation contour shared with the
                                  acoustic extractor (callshield.audio.dsp)
    average energy              — min(1, 10 · mean |x|)
    speech rate                 — min(8, 100 · zero-crossing rate)
    voice quality               — harmonic-to-noise ratio mapped to [0, 1]

This module does NOT:
    - Perform biometric-grade speaker verification
    - Use any trained model or external service
    - Delete speakers during a call (reset() clears everything between calls)
"""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Callable

import numpy as np

from callshield.audio import dsp
from callshield.events import EventEmitter

logger = logging.getLogger("callshield.diarization.tracker")


# ---------------------------------------------------------------------------
# Matching parameters
# ---------------------------------------------------------------------------

MATCH_THRESHOLD: float = 0.6
NEW_SPEAKER_CONFIDENCE: float = 0.7
MAX_MATCH_CONFIDENCE: float = 0.95

PITCH_TOLERANCE_HZ: float = 200.0
MAX_SPEECH_RATE: float = 8.0

FRAUD_EMA_RETAIN: float = 0.7
FRAUD_EMA_NEW: float = 0.3

# Segment-level fraud heuristics: (label, pattern, score increment)
_FRAUD_CUES: list[tuple[str, re.Pattern[str], float]] = [
    ("urgency_language", re.compile(r"\b(?:urgent|immediately|now|hurry)\b", re.IGNORECASE), 0.2),
    ("financial_topic", re.compile(r"\b(?:bank|accounts?|transfer|money)\b", re.IGNORECASE), 0.15),
    ("authority_impersonation", re.compile(r"\b(?:irs|fbi|police|government)\b", re.IGNORECASE), 0.25),
    ("pii_request", re.compile(r"\b(?:ssn|social security|passwords?)\b", re.IGNORECASE), 0.3),
]
_RAPID_SPEECH_RATE: float = 6.0
_AGGRESSIVE_ENERGY: float = 0.8


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SpeakerFingerprint:
    average_pitch: float = 0.0
    pitch_range: tuple[float, float] = (0.0, 0.0)
    average_energy: float = 0.0
    speech_rate: float = 0.0
    voice_quality: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "average_pitch": self.average_pitch,
            "pitch_range": list(self.pitch_range),
            "average_energy": self.average_energy,
            "speech_rate": self.speech_rate,
            "voice_quality": self.voice_quality,
        }


@dataclass(frozen=True)
class SpeakerSegment:
    speaker_id: str
    start_time: float
    end_time: float
    confidence: float
    fingerprint: SpeakerFingerprint

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def to_dict(self) -> dict[str, Any]:
        return {
            "speaker_id": self.speaker_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "confidence": self.confidence,
            "fingerprint": self.fingerprint.to_dict(),
        }


@dataclass
class SpeakerProfile:
    id: str
    label: str
    segments: list[SpeakerSegment] = field(default_factory=list)
    fraud_probability: float = 0.0
    total_speaking_time: float = 0.0
    turn_count: int = 0
    avg_confidence: float = NEW_SPEAKER_CONFIDENCE

    def copy(self) -> "SpeakerProfile":
        """Detached copy; later segments do not change it."""
        return replace(self, segments=list(self.segments))

    def average_fingerprint(self) -> SpeakerFingerprint:
        """Mean fingerprint over all segments; pitch range from the first."""
        prints = [s.fingerprint for s in self.segments]
        if not prints:
            return SpeakerFingerprint()
        count = len(prints)
        return SpeakerFingerprint(
            average_pitch=sum(p.average_pitch for p in prints) / count,
            pitch_range=prints[0].pitch_range,
            average_energy=sum(p.average_energy for p in prints) / count,
            speech_rate=sum(p.speech_rate for p in prints) / count,
            voice_quality=sum(p.voice_quality for p in prints) / count,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "segment_count": len(self.segments),
            "fraud_probability": self.fraud_probability,
            "total_speaking_time": self.total_speaking_time,
            "turn_count": self.turn_count,
            "avg_confidence": self.avg_confidence,
        }


@dataclass
class SpeakerTurn:
    """Consecutive segments by one speaker."""

    speaker_id: str
    start_time: float
    end_time: float
    transcript: str | None = None
    fraud_indicators: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "speaker_id": self.speaker_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "transcript": self.transcript,
            "fraud_indicators": list(self.fraud_indicators),
        }


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class SpeakerTracker:
    """
    Speaker registry for one call.

    Args:
        sample_rate: Sample rate of incoming segments (Hz).
    """

    def __init__(self, sample_rate: int = 24000) -> None:
        self.sample_rate = sample_rate
        self.events = EventEmitter("speaker_tracker")
        self._speakers: dict[str, SpeakerProfile] = {}
        self._current_speaker: str | None = None
        self._turns: list[SpeakerTurn] = []

    # -- events -------------------------------------------------------------

    def on_speaker_change(self, listener: Callable[[str], Any]) -> Callable[[], None]:
        return self.events.subscribe("speaker_change", listener)

    def on_fraud_update(self, listener: Callable[[str, float], Any]) -> Callable[[], None]:
        return self.events.subscribe("fraud_update", listener)

    # -- processing ---------------------------------------------------------

    def process_segment(
        self,
        audio,
        start_time: float,
        end_time: float,
        transcript: str | None = None,
    ) -> SpeakerSegment:
        """Assign *audio* to a speaker and update that speaker's profile."""
        fingerprint = self.extract_fingerprint(audio)
        speaker_id, similarity = self._identify(fingerprint)
        profile = self._speakers[speaker_id]

        if profile.segments:
            confidence = min(MAX_MATCH_CONFIDENCE, 0.6 + similarity * 0.35)
        else:
            confidence = NEW_SPEAKER_CONFIDENCE

        segment = SpeakerSegment(
            speaker_id=speaker_id,
            start_time=start_time,
            end_time=end_time,
            confidence=confidence,
            fingerprint=fingerprint,
        )

        profile.segments.append(segment)
        profile.total_speaking_time += segment.duration
        profile.avg_confidence = sum(s.confidence for s in profile.segments) / len(profile.segments)

        if transcript:
            score = fraud_cue_score(transcript, fingerprint)
            profile.fraud_probability = (
                profile.fraud_probability * FRAUD_EMA_RETAIN + score * FRAUD_EMA_NEW
            )
            self.events.emit("fraud_update", speaker_id, profile.fraud_probability)

        self._record_turn(segment, transcript)
        return segment

    def extract_fingerprint(self, audio) -> SpeakerFingerprint:
        data = dsp.as_samples(audio)
        if len(data) == 0:
            return SpeakerFingerprint()

        contour = dsp.pitch_contour(data, self.sample_rate)
        if len(contour):
            average_pitch = float(np.mean(contour))
            pitch_range = (float(np.min(contour)), float(np.max(contour)))
        else:
            average_pitch, pitch_range = 0.0, (0.0, 0.0)

        return SpeakerFingerprint(
            average_pitch=average_pitch,
            pitch_range=pitch_range,
            average_energy=min(1.0, float(np.mean(np.abs(data))) * 10),
            speech_rate=min(MAX_SPEECH_RATE, dsp.zero_crossing_rate(data) * 100),
            voice_quality=dsp.normalize(dsp.harmonic_to_noise_ratio(data), 0.0, dsp.HNR_MAX_DB),
        )

    def _identify(self, fingerprint: SpeakerFingerprint) -> tuple[str, float]:
        best_id: str | None = None
        best_score = 0.0
        for speaker_id, profile in self._speakers.items():
            score = similarity(fingerprint, profile)
            if score > best_score and score > MATCH_THRESHOLD:
                best_id, best_score = speaker_id, score

        if best_id is None:
            best_id = self._create_profile()

        if best_id != self._current_speaker:
            self._switch_to(best_id)
        return best_id, best_score

    def _create_profile(self) -> str:
        number = len(self._speakers) + 1
        speaker_id = f"speaker_{number}"
        self._speakers[speaker_id] = SpeakerProfile(id=speaker_id, label=f"Speaker {number}")
        logger.info("New speaker: %s", speaker_id)
        return speaker_id

    def _switch_to(self, speaker_id: str) -> None:
        self._speakers[speaker_id].turn_count += 1
        self._current_speaker = speaker_id
        self.events.emit("speaker_change", speaker_id)

    def _record_turn(self, segment: SpeakerSegment, transcript: str | None) -> None:
        labels = turn_indicators(self._speakers[segment.speaker_id].fraud_probability)
        last = self._turns[-1] if self._turns else None

        if last is not None and last.speaker_id == segment.speaker_id:
            last.end_time = segment.end_time
            if transcript:
                last.transcript = f"{last.transcript} {transcript}" if last.transcript else transcript
            last.fraud_indicators = labels
            return

        self._turns.append(
            SpeakerTurn(
                speaker_id=segment.speaker_id,
                start_time=segment.start_time,
                end_time=segment.end_time,
                transcript=transcript or None,
                fraud_indicators=labels,
            )
        )

    # -- queries ------------------------------------------------------------

    def get_speaker(self, speaker_id: str) -> SpeakerProfile | None:
        return self._speakers.get(speaker_id)

    def current_speaker(self) -> SpeakerProfile | None:
        if self._current_speaker is None:
            return None
        return self._speakers.get(self._current_speaker)

    @property
    def current_speaker_id(self) -> str | None:
        return self._current_speaker

    def all_speakers(self) -> list[SpeakerProfile]:
        return [profile.copy() for profile in self._speakers.values()]

    def dominant_speaker(self) -> str | None:
        """Speaker with the most cumulative speaking time."""
        if not self._speakers:
            return None
        return max(self._speakers.values(), key=lambda p: p.total_speaking_time).id

    def turn_history(self) -> list[SpeakerTurn]:
        return [replace(turn, fraud_indicators=list(turn.fraud_indicators)) for turn in self._turns]

    def snapshot(self) -> dict[str, Any]:
        return {
            "speakers": [p.to_dict() for p in self._speakers.values()],
            "current_speaker": self._current_speaker,
            "turn_history": [t.to_dict() for t in self._turns],
        }

    def reset(self) -> None:
        """Forget all speakers and turns; listeners stay registered."""
        self._speakers = {}
        self._current_speaker = None
        self._turns = []


# ---------------------------------------------------------------------------
# Scoring helpers
# ---------------------------------------------------------------------------


def _closeness(delta: float, scale: float) -> float:
    return min(1.0, max(0.0, 1.0 - abs(delta) / scale))


def similarity(fingerprint: SpeakerFingerprint, profile: SpeakerProfile) -> float:
    """Weighted closeness to a profile's running averages (0 if it has no segments)."""
    if not profile.segments:
        return 0.0
    reference = profile.average_fingerprint()
    return (
        _closeness(fingerprint.average_pitch - reference.average_pitch, PITCH_TOLERANCE_HZ) * 0.4
        + _closeness(fingerprint.average_energy - reference.average_energy, 1.0) * 0.3
        + _closeness(fingerprint.speech_rate - reference.speech_rate, MAX_SPEECH_RATE) * 0.3
    )


def fraud_cue_score(transcript: str, fingerprint: SpeakerFingerprint) -> float:
    score = sum(step for _, pattern, step in _FRAUD_CUES if pattern.search(transcript))
    if fingerprint.speech_rate > _RAPID_SPEECH_RATE:
        score += 0.1
    if fingerprint.average_energy > _AGGRESSIVE_ENERGY:
        score += 0.1
    return min(1.0, score)


def turn_indicators(fraud_probability: float) -> list[str]:
    if fraud_probability > 0.8:
        return ["high_fraud_probability"]
    if fraud_probability > 0.6:
        return ["moderate_fraud_probability"]
    return []
