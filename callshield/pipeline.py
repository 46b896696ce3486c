"""
callshield/pipeline.py
=======================
Fraud Analysis Pipeline — CallShield orchestration layer

Responsibility:
    1. Own one analysis session per call (no process-wide state)
    2. Sequence the per-chunk stages in a fixed order
    3. Fuse their outputs into one fraud probability and risk level
    4. Keep running statistics and dispatch result / alert / topic-shift /
       speaker-change events to registered listeners
    5. Produce a CallSummary when the call ends

Per-chunk stage order:
    1. Acoustic features        (enable_audio_features)
    2. Metadata feed            (enable_metadata_feed)
    3. Speaker tracking         (enable_diarization)
    4. Text features            (enable_text_analysis, transcript present)
    5. Conversation context     (always)
    6. Fusion                   → base probability + confidence
    7. Contextual weighting     (when metadata is present)
    8. Risk level + indicators
    9. Stats, events, alert check (final probability ≥ fraud_threshold)

State machine: idle → start() → active → stop() → idle.
process_chunk() on an idle session raises PipelineNotActiveError and
leaves every counter untouched.

This layer does NOT:
    - Capture audio or transcribe speech
    - Persist results (CallSummary is the hand-off record)
    - Call any LLM
"""

import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from callshield.audio import dsp
from callshield.audio.acoustic import AcousticFeatureExtractor, AcousticFeatures
from callshield.audio.metadata import AggregatedMetadata, MetadataFeed, SpeakerContext
from callshield.config import PipelineConfig
from callshield.diarization.tracker import SpeakerProfile, SpeakerTracker, SpeakerTurn
from callshield.events import EventEmitter
from callshield.nlp.context import (
    ContextTracker,
    ConversationState,
    EmotionalState,
    EmotionalTrend,
    TopicShift,
)
from callshield.nlp.text_features import TextFeatureExtractor, TextFeatures
from callshield.risk.fusion import (
    RiskLevel,
    collect_indicators,
    determine_risk_level,
    fuse_signals,
)

logger = logging.getLogger("callshield.pipeline")

LATENCY_WINDOW: int = 100


class PipelineNotActiveError(RuntimeError):
    """Raised when a chunk is submitted to a session that is not running."""


# =====================================================================
# Result records
# =====================================================================


@dataclass
class PipelineStats:
    total_chunks_processed: int = 0
    average_processing_time: float = 0.0  # ms, over the last 100 chunks
    peak_fraud_probability: float = 0.0
    dominant_speaker: str | None = None
    detected_topics: list[str] = field(default_factory=list)
    alerts_triggered: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AnalysisResult:
    """Everything the pipeline concluded about one chunk."""

    chunk_id: int
    timestamp: float
    text_features: TextFeatures | None
    audio_features: AcousticFeatures | None
    speaker_info: SpeakerProfile | None
    metadata: AggregatedMetadata | None
    conversation_state: ConversationState
    fraud_probability: float
    risk_level: RiskLevel
    confidence_score: float
    fraud_indicators: list[str]
    emotional_state: EmotionalState | None
    topic_shift: TopicShift | None
    processing_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation."""
        return {
            "chunk_id": self.chunk_id,
            "timestamp": self.timestamp,
            "text_features": _dict_or_none(self.text_features),
            "audio_features": _dict_or_none(self.audio_features),
            "speaker_info": _dict_or_none(self.speaker_info),
            "metadata": _dict_or_none(self.metadata),
            "conversation_state": self.conversation_state.to_dict(),
            "fraud_probability": self.fraud_probability,
            "risk_level": self.risk_level.value,
            "confidence_score": self.confidence_score,
            "fraud_indicators": list(self.fraud_indicators),
            "emotional_state": _dict_or_none(self.emotional_state),
            "topic_shift": _dict_or_none(self.topic_shift),
            "processing_time_ms": self.processing_time_ms,
        }


@dataclass
class CallSummary:
    """Final snapshot of a call, for an external persistence layer."""

    stats: PipelineStats
    speakers: list[SpeakerProfile]
    turn_history: list[SpeakerTurn]
    topic_history: list[str]
    emotional_trend: EmotionalTrend
    peak_risk_level: RiskLevel
    chunks_processed: int
    total_duration: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "stats": self.stats.to_dict(),
            "speakers": [s.to_dict() for s in self.speakers],
            "turn_history": [t.to_dict() for t in self.turn_history],
            "topic_history": list(self.topic_history),
            "emotional_trend": self.emotional_trend.value,
            "peak_risk_level": self.peak_risk_level.value,
            "chunks_processed": self.chunks_processed,
            "total_duration": self.total_duration,
        }


def _dict_or_none(record) -> dict[str, Any] | None:
    return record.to_dict() if record is not None else None


# =====================================================================
# Pipeline
# =====================================================================


class FraudAnalysisPipeline:
    """
    One live analysis session.

    Args:
        config: Session configuration; defaults to PipelineConfig().
        clock:  Monotonic time source for the metadata feed's marker
                window (injectable for tests).
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or PipelineConfig()

        self._acoustic = AcousticFeatureExtractor(
            sample_rate=self.config.sample_rate,
            window_size=self.config.window_size,
        )
        self._text = TextFeatureExtractor()
        self._speakers = SpeakerTracker(sample_rate=self.config.sample_rate)
        self._context = ContextTracker()
        self._metadata = MetadataFeed(clock=clock)

        self.events = EventEmitter("pipeline")
        self._speakers.on_speaker_change(
            lambda speaker_id: self.events.emit("speaker_change", speaker_id)
        )

        self._active = False
        self._chunk_counter = 0
        self._latencies: deque[float] = deque(maxlen=LATENCY_WINDOW)
        self._stats = PipelineStats()

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------

    def on_result(self, listener: Callable[[AnalysisResult], Any]) -> Callable[[], None]:
        return self.events.subscribe("result", listener)

    def on_alert(self, listener: Callable[[AnalysisResult], Any]) -> Callable[[], None]:
        return self.events.subscribe("alert", listener)

    def on_topic_shift(self, listener: Callable[[TopicShift], Any]) -> Callable[[], None]:
        return self.events.subscribe("topic_shift", listener)

    def on_speaker_change(self, listener: Callable[[str], Any]) -> Callable[[], None]:
        return self.events.subscribe("speaker_change", listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Reset every tracker and start accepting chunks."""
        self.reset()
        self._active = True
        logger.info("Pipeline started (threshold=%.2f)", self.config.fraud_threshold)

    def stop(self) -> None:
        self._active = False
        logger.info(
            "Pipeline stopped after %d chunks (%d alerts)",
            self._stats.total_chunks_processed,
            self._stats.alerts_triggered,
        )

    def reset(self) -> None:
        """Clear all per-call state. Listeners stay registered."""
        self._chunk_counter = 0
        self._latencies.clear()
        self._stats = PipelineStats()

        self._acoustic.reset()
        self._speakers.reset()
        self._context.reset()
        self._metadata.reset()
        logger.debug("Pipeline state reset")

    @property
    def is_running(self) -> bool:
        return self._active

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_chunk(self, audio, transcript: str | None = None) -> AnalysisResult:
        """
        Analyse one chunk of mono float PCM plus its optional transcript.

        Raises:
            PipelineNotActiveError: If start() has not been called.
        """
        if not self._active:
            raise PipelineNotActiveError("Pipeline is not active. Call start() first.")

        started = time.perf_counter()
        timestamp = time.time()
        chunk_id = self._chunk_counter
        self._chunk_counter += 1

        cfg = self.config
        data = dsp.as_samples(audio)
        if len(data) == 0:
            logger.warning("Chunk %d is empty; acoustic features default to zero", chunk_id)

        # 1. Acoustic features
        audio_features: AcousticFeatures | None = None
        if cfg.enable_audio_features:
            audio_features = self._acoustic.extract(data)

        # 2. Metadata feed
        metadata: AggregatedMetadata | None = None
        if cfg.enable_metadata_feed:
            self._metadata.process_audio_chunk(data)
            metadata = self._metadata.get_aggregated_metadata()

        # 3. Speaker tracking
        speaker: SpeakerProfile | None = None
        if cfg.enable_diarization:
            segment = self._speakers.process_segment(
                data,
                start_time=chunk_id * cfg.chunk_duration,
                end_time=(chunk_id + 1) * cfg.chunk_duration,
                transcript=transcript,
            )
            speaker = self._speakers.get_speaker(segment.speaker_id).copy()

        # 4. Text features
        text_features: TextFeatures | None = None
        if cfg.enable_text_analysis and transcript:
            text_features = self._text.extract(transcript)

        # 5. Conversation context
        chunk_context = self._context.process_chunk(
            transcript=transcript,
            duration=cfg.chunk_duration,
            speaker_id=speaker.id if speaker else None,
            audio_features=_emotion_inputs(audio_features),
        )
        conversation_state = self._context.get_state()
        if chunk_context.topic_shift is not None:
            self._record_topic(chunk_context.topic_shift.to_topic)
            self.events.emit("topic_shift", chunk_context.topic_shift)

        # 6. Fusion
        fusion = fuse_signals(text_features, audio_features, speaker, metadata)

        # 7. Contextual weighting
        probability = fusion.probability
        if metadata is not None:
            fusion_input = self._metadata.prepare_fusion_input(
                text_features=_numeric_map(text_features),
                audio_features=_numeric_map(audio_features),
                speaker_context=SpeakerContext(
                    speaker_id=speaker.id if speaker else None,
                    turn_count=conversation_state.turn_count,
                    speaking_duration=speaker.total_speaking_time if speaker else 0.0,
                ),
            )
            probability = self._metadata.apply_contextual_weighting(probability, fusion_input)
            self._metadata.update_confidence(fusion.confidence)

        # 8. Decision
        risk_level = determine_risk_level(probability)
        indicators = collect_indicators(text_features, audio_features, speaker, metadata)

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        self._update_stats(elapsed_ms, probability)

        result = AnalysisResult(
            chunk_id=chunk_id,
            timestamp=timestamp,
            text_features=text_features,
            audio_features=audio_features,
            speaker_info=speaker,
            metadata=metadata,
            conversation_state=conversation_state,
            fraud_probability=float(probability),
            risk_level=risk_level,
            confidence_score=fusion.confidence,
            fraud_indicators=indicators,
            emotional_state=chunk_context.emotional_state or self._context.latest_emotion(),
            topic_shift=chunk_context.topic_shift,
            processing_time_ms=elapsed_ms,
        )

        logger.debug(
            "Chunk %d: probability=%.3f risk=%s indicators=%d (%.1f ms)",
            chunk_id, probability, risk_level.value, len(indicators), elapsed_ms,
        )

        # 9. Events
        self.events.emit("result", result)
        if probability >= cfg.fraud_threshold:
            self._stats.alerts_triggered += 1
            logger.info(
                "ALERT chunk %d: probability=%.3f risk=%s indicators=%s",
                chunk_id, probability, risk_level.value, indicators,
            )
            self.events.emit("alert", result)

        return result

    def _record_topic(self, topic: str) -> None:
        if topic not in self._stats.detected_topics:
            self._stats.detected_topics.append(topic)

    def _update_stats(self, elapsed_ms: float, probability: float) -> None:
        stats = self._stats
        stats.total_chunks_processed += 1
        self._latencies.append(elapsed_ms)
        stats.average_processing_time = sum(self._latencies) / len(self._latencies)
        stats.peak_fraud_probability = max(stats.peak_fraud_probability, float(probability))
        stats.dominant_speaker = self._speakers.dominant_speaker()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_stats(self) -> PipelineStats:
        stats = self._stats
        return PipelineStats(
            total_chunks_processed=stats.total_chunks_processed,
            average_processing_time=stats.average_processing_time,
            peak_fraud_probability=stats.peak_fraud_probability,
            dominant_speaker=stats.dominant_speaker,
            detected_topics=list(stats.detected_topics),
            alerts_triggered=stats.alerts_triggered,
        )

    def get_speakers(self) -> list[SpeakerProfile]:
        return self._speakers.all_speakers()

    def get_diarization(self) -> dict[str, Any]:
        return self._speakers.snapshot()

    def get_conversation_state(self) -> ConversationState:
        return self._context.get_state()

    def get_emotional_trend(self) -> EmotionalTrend:
        return self._context.get_emotional_trend()

    def summarize(self) -> CallSummary:
        state = self._context.get_state()
        stats = self.get_stats()
        return CallSummary(
            stats=stats,
            speakers=self._speakers.all_speakers(),
            turn_history=self._speakers.turn_history(),
            topic_history=list(state.topic_history),
            emotional_trend=self._context.get_emotional_trend(),
            peak_risk_level=determine_risk_level(stats.peak_fraud_probability),
            chunks_processed=stats.total_chunks_processed,
            total_duration=state.total_duration,
        )


# =====================================================================
# Stage adapters
# =====================================================================


def _emotion_inputs(audio: AcousticFeatures | None) -> dict[str, float] | None:
    if audio is None:
        return None
    return {
        "pitch_variance": audio.pitch_variance,
        "energy_level": audio.energy_mean,
        "speech_rate": audio.speech_rate,
        "voice_stress": audio.voice_stress,
    }


def _numeric_map(features: TextFeatures | AcousticFeatures | None) -> dict[str, float]:
    if features is None:
        return {}
    return {f"f{i}": float(v) for i, v in enumerate(features.feature_vector())}
