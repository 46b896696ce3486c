"""
callshield/nlp/context.py
==========================
Conversation Context Tracker — CallShield

Responsibility:
    - Follow the conversation's topic across chunks and report topic shifts
    - Score linguistic continuity of each transcript window
    - Map acoustic dimensions to an emotional state (valence / arousal /
      dominance + label) and keep a bounded emotional history
    - Report the emotional trend (escalating / de-escalating / stable)
    - Count speaker turns

State (one instance per call, reset between calls):
    ConversationState — topic history is append-only within a call; the
    emotional progression keeps the latest 50 states.

This module does NOT:
    - Extract features from audio or text (inputs arrive pre-computed)
    - Score fraud risk
"""

import logging
import re
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable

from callshield.nlp.text_features import split_sentences

logger = logging.getLogger("callshield.nlp.context")


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_EMOTIONAL_STATES: int = 50
TREND_WINDOW: int = 10
TREND_HALF: int = 5
TREND_THRESHOLD: float = 0.15

# Ordered: the first matching category wins.
_TOPIC_PATTERNS: dict[str, re.Pattern[str]] = {
    "financial": re.compile(r"\b(?:bank|account|money|transfer|payment|credit|debit)", re.IGNORECASE),
    "identity": re.compile(r"\b(?:ssn|social security|id|identity|passport|license)\b", re.IGNORECASE),
    "urgency": re.compile(r"\b(?:urgent|immediately|now|hurry|limited time|expire)", re.IGNORECASE),
    "authority": re.compile(r"\b(?:irs|fbi|police|government|official|department)\b", re.IGNORECASE),
    "technical": re.compile(r"\b(?:computer|virus|software|hack|password|login)", re.IGNORECASE),
    "prize_scam": re.compile(r"\b(?:winner|prize|lottery|congratulations|claim)", re.IGNORECASE),
    "romance": re.compile(r"\b(?:love|relationship|meet|dating|lonely)", re.IGNORECASE),
    "investment": re.compile(r"\b(?:invest|returns|crypto|bitcoin|opportunity)", re.IGNORECASE),
}

_TOPIC_KEYWORDS: dict[str, frozenset[str]] = {
    "financial": frozenset({"bank", "account", "money", "transfer", "payment"}),
    "identity": frozenset({"ssn", "social", "security", "identity", "passport"}),
    "urgency": frozenset({"urgent", "immediately", "now", "hurry", "expire"}),
    "authority": frozenset({"irs", "fbi", "police", "government", "official"}),
    "technical": frozenset({"computer", "virus", "software", "hack", "password"}),
    "prize_scam": frozenset({"winner", "prize", "lottery", "congratulations"}),
    "romance": frozenset({"love", "relationship", "meet", "dating"}),
    "investment": frozenset({"invest", "returns", "crypto", "bitcoin"}),
}


class EmotionLabel(str, Enum):
    NEUTRAL = "neutral"
    ANXIOUS = "anxious"
    ANGRY = "angry"
    FEARFUL = "fearful"
    CONFIDENT = "confident"
    STRESSED = "stressed"


class EmotionalTrend(str, Enum):
    ESCALATING = "escalating"
    DE_ESCALATING = "de-escalating"
    STABLE = "stable"


@dataclass(frozen=True)
class EmotionalState:
    """Valence in [-1, 1]; arousal and dominance in [0, 1]."""

    timestamp: float
    valence: float
    arousal: float
    dominance: float
    label: EmotionLabel

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "label": self.label.value}


@dataclass(frozen=True)
class TopicShift:
    from_topic: str | None
    to_topic: str
    timestamp: float
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ConversationState:
    topic_history: list[str] = field(default_factory=list)
    current_topic: str | None = None
    emotional_progression: list[EmotionalState] = field(default_factory=list)
    linguistic_continuity: float = 1.0
    turn_count: int = 0
    total_duration: float = 0.0
    last_update_time: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic_history": list(self.topic_history),
            "current_topic": self.current_topic,
            "emotional_progression": [s.to_dict() for s in self.emotional_progression],
            "linguistic_continuity": self.linguistic_continuity,
            "turn_count": self.turn_count,
            "total_duration": self.total_duration,
            "last_update_time": self.last_update_time,
        }


@dataclass
class ChunkContext:
    """What changed in the conversation while processing one chunk."""

    topic_shift: TopicShift | None = None
    emotional_state: EmotionalState | None = None
    linguistic_continuity: float = 1.0


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class ContextTracker:
    """
    Rolling conversational context for one call.

    Args:
        clock: Wall-clock time source (seconds) used for timestamps.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._topic_history: list[str] = []
        self._current_topic: str | None = None
        self._emotions: deque[EmotionalState] = deque(maxlen=MAX_EMOTIONAL_STATES)
        self._continuity = 1.0
        self._turn_count = 0
        self._total_duration = 0.0
        self._last_update = self._clock()
        self._last_speaker: str | None = None

    def process_chunk(
        self,
        transcript: str | None = None,
        duration: float = 0.0,
        speaker_id: str | None = None,
        audio_features: dict[str, float] | None = None,
    ) -> ChunkContext:
        """
        Fold one chunk into the conversation state.

        Args:
            transcript:     Text heard in this chunk, if any. None leaves
                            topic and continuity untouched.
            duration:       Chunk duration in seconds.
            speaker_id:     Active speaker, if diarization ran.
            audio_features: Keys pitch_variance, energy_level, speech_rate,
                            voice_stress (missing keys read as 0).
        """
        now = self._clock()
        self._total_duration += duration
        self._last_update = now

        if speaker_id is not None and speaker_id != self._last_speaker:
            self._turn_count += 1
            self._last_speaker = speaker_id

        result = ChunkContext(linguistic_continuity=self._continuity)

        if transcript is not None:
            result.topic_shift = self._update_topic(transcript, now)
            self._continuity = linguistic_continuity(transcript)
            result.linguistic_continuity = self._continuity

        if audio_features is not None:
            state = estimate_emotion(audio_features, now)
            self._emotions.append(state)
            result.emotional_state = state

        return result

    def increment_turn_count(self) -> None:
        self._turn_count += 1

    def _update_topic(self, transcript: str, timestamp: float) -> TopicShift | None:
        topic = detect_topic(transcript)
        if topic is None or topic == self._current_topic:
            return None

        shift = TopicShift(
            from_topic=self._current_topic,
            to_topic=topic,
            timestamp=timestamp,
            confidence=topic_confidence(transcript, topic),
        )
        self._topic_history.append(topic)
        self._current_topic = topic

        logger.info(
            "Topic shift: %s -> %s (confidence=%.2f)",
            shift.from_topic, shift.to_topic, shift.confidence,
        )
        return shift

    # -- queries ------------------------------------------------------------

    def get_state(self) -> ConversationState:
        """A copy of the current conversation state."""
        return ConversationState(
            topic_history=list(self._topic_history),
            current_topic=self._current_topic,
            emotional_progression=list(self._emotions),
            linguistic_continuity=self._continuity,
            turn_count=self._turn_count,
            total_duration=self._total_duration,
            last_update_time=self._last_update,
        )

    def latest_emotion(self) -> EmotionalState | None:
        return self._emotions[-1] if self._emotions else None

    def get_emotional_trend(self) -> EmotionalTrend:
        """
        Compare mean arousal of the earliest and latest five of the last
        ten emotional states.
        """
        recent = list(self._emotions)[-TREND_WINDOW:]
        if len(recent) < 2:
            return EmotionalTrend.STABLE

        early = recent[:TREND_HALF]
        late = recent[-TREND_HALF:]
        early_mean = sum(s.arousal for s in early) / len(early)
        late_mean = sum(s.arousal for s in late) / len(late)

        if late_mean - early_mean > TREND_THRESHOLD:
            return EmotionalTrend.ESCALATING
        if early_mean - late_mean > TREND_THRESHOLD:
            return EmotionalTrend.DE_ESCALATING
        return EmotionalTrend.STABLE

    def reset(self) -> None:
        self._topic_history = []
        self._current_topic = None
        self._emotions.clear()
        self._continuity = 1.0
        self._turn_count = 0
        self._total_duration = 0.0
        self._last_update = self._clock()
        self._last_speaker = None


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def detect_topic(transcript: str) -> str | None:
    for topic, pattern in _TOPIC_PATTERNS.items():
        if pattern.search(transcript):
            return topic
    return None


def topic_confidence(transcript: str, topic: str) -> float:
    """Keyword density: matching words / 3, capped at 1."""
    keywords = _TOPIC_KEYWORDS.get(topic, frozenset())
    words = re.findall(r"[a-z0-9']+", transcript.lower())
    return min(1.0, sum(w in keywords for w in words) / 3)


def linguistic_continuity(transcript: str) -> float:
    """
    Mean per-sentence score: 3–20 words scores 1, any other non-empty
    sentence 0.5. A transcript without sentences scores 0.5.
    """
    sentences = split_sentences(transcript)
    if not sentences:
        return 0.5

    total = 0.0
    for sentence in sentences:
        words = sentence.rstrip(".!?").split()
        if 3 <= len(words) <= 20:
            total += 1.0
        elif words:
            total += 0.5
    return min(1.0, total / len(sentences))


def estimate_emotion(audio_features: dict[str, float], timestamp: float) -> EmotionalState:
    pitch_variance = audio_features.get("pitch_variance", 0.0)
    energy = audio_features.get("energy_level", 0.0)
    speech_rate = audio_features.get("speech_rate", 0.0)
    stress = audio_features.get("voice_stress", 0.0)

    valence = max(-1.0, min(1.0, (0.5 - stress) * 2))
    arousal = min(1.0, (energy + pitch_variance + speech_rate) / 3)
    dominance = min(1.0, energy * 0.6 + (1.0 - stress) * 0.4)

    return EmotionalState(
        timestamp=timestamp,
        valence=float(valence),
        arousal=float(arousal),
        dominance=float(dominance),
        label=classify_emotion(valence, arousal, stress),
    )


def classify_emotion(valence: float, arousal: float, stress: float) -> EmotionLabel:
    if stress > 0.7:
        return EmotionLabel.STRESSED
    if valence < -0.3 and arousal > 0.6:
        return EmotionLabel.ANGRY
    if valence < -0.3 and arousal < 0.4:
        return EmotionLabel.FEARFUL
    if arousal > 0.6 and stress > 0.4:
        return EmotionLabel.ANXIOUS
    if valence > 0.3 and arousal > 0.5:
        return EmotionLabel.CONFIDENT
    return EmotionLabel.NEUTRAL
