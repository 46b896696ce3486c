"""
tests/test_pipeline.py
=======================
Fraud Analysis Pipeline Tests

Test categories:
    1. Lifecycle (idle → active → idle, reset)
    2. Per-chunk results (ids, bounds, JSON-safe records)
    3. Events (result, alert, topic_shift, speaker_change, unsubscribe,
       failing listeners)
    4. Stage toggles
    5. Statistics and call summary

Chunks are synthetic 2.5 s signals; transcripts are plain strings.
"""

import json
import os
import sys
import unittest

import numpy as np

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from callshield import FraudAnalysisPipeline, PipelineConfig, PipelineNotActiveError
from callshield.nlp.context import EmotionalTrend
from callshield.risk.fusion import RiskLevel

SR = 24000
CHUNK = int(SR * 2.5)


def _tone(freq: float = 180.0, amplitude: float = 0.3) -> np.ndarray:
    t = np.arange(CHUNK) / SR
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def _silence() -> np.ndarray:
    return np.zeros(CHUNK, dtype=np.float32)


def _started(**config) -> FraudAnalysisPipeline:
    pipeline = FraudAnalysisPipeline(PipelineConfig(**config))
    pipeline.start()
    return pipeline


# ===================================================================
# 1. Lifecycle
# ===================================================================

class TestLifecycle(unittest.TestCase):

    def test_idle_pipeline_rejects_chunks(self):
        pipeline = FraudAnalysisPipeline()
        self.assertFalse(pipeline.is_running)
        with self.assertRaises(PipelineNotActiveError):
            pipeline.process_chunk(_silence())
        self.assertEqual(pipeline.get_stats().total_chunks_processed, 0)

    def test_stopped_pipeline_rejects_chunks(self):
        pipeline = _started()
        pipeline.process_chunk(_silence())
        pipeline.stop()
        self.assertFalse(pipeline.is_running)
        with self.assertRaises(PipelineNotActiveError):
            pipeline.process_chunk(_silence())
        self.assertEqual(pipeline.get_stats().total_chunks_processed, 1)

    def test_start_resets_previous_call(self):
        pipeline = _started()
        pipeline.process_chunk(_tone(), "Send the money now")
        pipeline.stop()
        pipeline.start()

        stats = pipeline.get_stats()
        self.assertEqual(stats.total_chunks_processed, 0)
        self.assertEqual(stats.detected_topics, [])
        self.assertEqual(pipeline.get_speakers(), [])
        self.assertEqual(pipeline.process_chunk(_silence()).chunk_id, 0)

    def test_reset_matches_fresh_pipeline(self):
        used = _started()
        for _ in range(3):
            used.process_chunk(_tone(), "This is the police. Pay immediately.")
        used.reset()
        used.reset()
        fresh = _started()

        a = used.process_chunk(_tone(), "hello there friend")
        b = fresh.process_chunk(_tone(), "hello there friend")
        self.assertEqual(a.chunk_id, b.chunk_id)
        self.assertAlmostEqual(a.fraud_probability, b.fraud_probability)
        self.assertEqual(a.fraud_indicators, b.fraud_indicators)
        self.assertEqual(a.risk_level, b.risk_level)


# ===================================================================
# 2. Results
# ===================================================================

class TestResults(unittest.TestCase):

    def test_chunk_ids_are_sequential(self):
        pipeline = _started()
        ids = [pipeline.process_chunk(_silence()).chunk_id for _ in range(4)]
        self.assertEqual(ids, [0, 1, 2, 3])

    def test_probability_and_confidence_bounded(self):
        pipeline = _started()
        for audio, transcript in (
            (_silence(), None),
            (_tone(), "Hello, how are you?"),
            (np.clip(_tone(amplitude=4.0), -1, 1), "This is the IRS. Pay immediately with a gift card or face arrest."),
        ):
            result = pipeline.process_chunk(audio, transcript)
            self.assertGreaterEqual(result.fraud_probability, 0.0)
            self.assertLessEqual(result.fraud_probability, 1.0)
            self.assertGreaterEqual(result.confidence_score, 0.0)
            self.assertLessEqual(result.confidence_score, 1.0)

    def test_result_is_json_safe(self):
        pipeline = _started()
        result = pipeline.process_chunk(_tone(), "Your account has been suspended, verify your identity")
        encoded = json.dumps(result.to_dict())
        decoded = json.loads(encoded)
        self.assertEqual(decoded["chunk_id"], 0)
        self.assertIn(decoded["risk_level"], {"safe", "warning", "blocked"})
        self.assertIsNotNone(decoded["text_features"])
        self.assertIsNotNone(decoded["audio_features"])
        self.assertIsNotNone(decoded["speaker_info"])
        self.assertIsNotNone(decoded["metadata"])

    def test_no_transcript_means_no_text_features(self):
        result = _started().process_chunk(_tone())
        self.assertIsNone(result.text_features)
        self.assertIsNotNone(result.emotional_state)

    def test_harassment_surfaces_as_indicator(self):
        result = _started().process_chunk(_tone(), "You are so stupid, nobody likes you.")
        self.assertIn("harassment", result.fraud_indicators)
        self.assertIn("harassment: stupid", result.fraud_indicators)

    def test_speaker_info_fixed_after_later_chunks(self):
        pipeline = _started()
        transcript = "This is the IRS. Give me your SSN immediately."
        first = pipeline.process_chunk(_tone(), transcript)
        probability = first.speaker_info.fraud_probability
        segments = len(first.speaker_info.segments)
        speaking_time = first.speaker_info.total_speaking_time

        second = pipeline.process_chunk(_tone(), transcript)

        self.assertEqual(second.speaker_info.id, first.speaker_info.id)
        self.assertEqual(len(second.speaker_info.segments), segments + 1)
        self.assertNotEqual(second.speaker_info.fraud_probability, probability)
        self.assertEqual(first.speaker_info.fraud_probability, probability)
        self.assertEqual(len(first.speaker_info.segments), segments)
        self.assertEqual(first.speaker_info.total_speaking_time, speaking_time)

    def test_risk_level_matches_probability(self):
        pipeline = _started()
        result = pipeline.process_chunk(_tone(), "Hello")
        expected = (
            RiskLevel.BLOCKED if result.fraud_probability >= 0.8
            else RiskLevel.WARNING if result.fraud_probability >= 0.5
            else RiskLevel.SAFE
        )
        self.assertIs(result.risk_level, expected)


# ===================================================================
# 3. Events
# ===================================================================

class TestEvents(unittest.TestCase):

    def test_result_listener_receives_every_chunk(self):
        pipeline = _started()
        seen = []
        pipeline.on_result(seen.append)
        pipeline.process_chunk(_silence())
        pipeline.process_chunk(_silence())
        self.assertEqual([r.chunk_id for r in seen], [0, 1])

    def test_unsubscribe(self):
        pipeline = _started()
        seen = []
        unsubscribe = pipeline.on_result(seen.append)
        pipeline.process_chunk(_silence())
        unsubscribe()
        pipeline.process_chunk(_silence())
        self.assertEqual(len(seen), 1)

    def test_zero_threshold_alerts_on_every_chunk(self):
        pipeline = _started(fraud_threshold=0.0)
        alerts = []
        pipeline.on_alert(alerts.append)
        for _ in range(3):
            pipeline.process_chunk(_silence())
        self.assertEqual(len(alerts), 3)
        self.assertEqual(pipeline.get_stats().alerts_triggered, 3)

    def test_full_threshold_alerts_only_at_certainty(self):
        pipeline = _started(fraud_threshold=1.0)
        alerts = []
        pipeline.on_alert(alerts.append)
        pipeline.process_chunk(_tone(), "Hello there")
        self.assertEqual(alerts, [])

    def test_topic_shift_event(self):
        pipeline = _started()
        shifts = []
        pipeline.on_topic_shift(shifts.append)
        pipeline.process_chunk(_silence(), "Send the money to my bank account")
        pipeline.process_chunk(_silence(), "Your computer has a virus")

        self.assertEqual([s.to_topic for s in shifts], ["financial", "technical"])
        self.assertEqual(pipeline.get_stats().detected_topics, ["financial", "technical"])

    def test_speaker_change_event(self):
        pipeline = _started()
        changes = []
        pipeline.on_speaker_change(changes.append)
        pipeline.process_chunk(_tone(120.0, 0.05))
        pipeline.process_chunk(_tone(120.0, 0.05))
        pipeline.process_chunk(_tone(400.0, 0.8))
        self.assertEqual(changes, ["speaker_1", "speaker_2"])

    def test_failing_listener_is_logged_and_skipped(self):
        pipeline = _started()
        seen = []

        def broken(result):
            raise RuntimeError("listener bug")

        pipeline.on_result(broken)
        pipeline.on_result(seen.append)

        with self.assertLogs("callshield.events", level="ERROR"):
            result = pipeline.process_chunk(_silence())

        self.assertEqual(seen, [result])
        self.assertEqual(pipeline.get_stats().total_chunks_processed, 1)

    def test_non_callable_listener_rejected(self):
        with self.assertRaises(TypeError):
            FraudAnalysisPipeline().on_alert("not callable")

    def test_listeners_survive_restart(self):
        pipeline = _started()
        seen = []
        pipeline.on_result(seen.append)
        pipeline.stop()
        pipeline.start()
        pipeline.process_chunk(_silence())
        self.assertEqual(len(seen), 1)


# ===================================================================
# 4. Stage toggles
# ===================================================================

class TestStageToggles(unittest.TestCase):

    def test_everything_disabled(self):
        pipeline = _started(
            enable_diarization=False,
            enable_text_analysis=False,
            enable_audio_features=False,
            enable_metadata_feed=False,
        )
        result = pipeline.process_chunk(_tone(), "This is the IRS. Pay immediately.")
        self.assertEqual(result.fraud_probability, 0.0)
        self.assertEqual(result.confidence_score, 0.0)
        self.assertIs(result.risk_level, RiskLevel.SAFE)
        self.assertIsNone(result.text_features)
        self.assertIsNone(result.audio_features)
        self.assertIsNone(result.speaker_info)
        self.assertIsNone(result.metadata)
        self.assertEqual(result.fraud_indicators, [])

    def test_text_only_uses_text_score(self):
        pipeline = _started(
            enable_diarization=False,
            enable_audio_features=False,
            enable_metadata_feed=False,
        )
        transcript = "You are so stupid, nobody likes you."
        result = pipeline.process_chunk(_silence(), transcript)
        self.assertAlmostEqual(result.fraud_probability, 0.7)
        self.assertIs(result.risk_level, RiskLevel.WARNING)
        self.assertAlmostEqual(result.confidence_score, 0.9)

    def test_diarization_disabled_still_tracks_context(self):
        pipeline = _started(enable_diarization=False)
        pipeline.process_chunk(_silence(), "Send the money")
        self.assertEqual(pipeline.get_speakers(), [])
        self.assertEqual(pipeline.get_conversation_state().current_topic, "financial")


# ===================================================================
# 5. Stats / summary
# ===================================================================

class TestSummary(unittest.TestCase):

    def test_stats(self):
        pipeline = _started()
        probabilities = [
            pipeline.process_chunk(_tone(), t).fraud_probability
            for t in ("Hello", "This is the IRS. Pay immediately with a gift card or face arrest.")
        ]
        stats = pipeline.get_stats()
        self.assertEqual(stats.total_chunks_processed, 2)
        self.assertAlmostEqual(stats.peak_fraud_probability, max(probabilities))
        self.assertGreaterEqual(stats.average_processing_time, 0.0)
        self.assertEqual(stats.dominant_speaker, "speaker_1")

    def test_get_stats_returns_a_copy(self):
        pipeline = _started()
        pipeline.process_chunk(_silence(), "Send the money")
        pipeline.get_stats().detected_topics.append("tampered")
        self.assertEqual(pipeline.get_stats().detected_topics, ["financial"])

    def test_get_speakers_returns_copies(self):
        pipeline = _started()
        pipeline.process_chunk(_tone(), "Send the money")
        speakers = pipeline.get_speakers()
        speakers[0].segments.clear()
        speakers[0].fraud_probability = 1.0
        self.assertEqual(len(pipeline.get_speakers()[0].segments), 1)
        self.assertNotEqual(pipeline.get_speakers()[0].fraud_probability, 1.0)

    def test_summarize(self):
        pipeline = _started()
        pipeline.process_chunk(_tone(), "Send the money")
        pipeline.process_chunk(_tone(), "Your computer has a virus")
        pipeline.stop()

        summary = pipeline.summarize()
        self.assertEqual(summary.chunks_processed, 2)
        self.assertAlmostEqual(summary.total_duration, 5.0)
        self.assertEqual(summary.topic_history, ["financial", "technical"])
        self.assertIsInstance(summary.emotional_trend, EmotionalTrend)
        self.assertIs(summary.peak_risk_level, RiskLevel.SAFE)
        self.assertEqual(len(summary.turn_history), 1)
        json.dumps(summary.to_dict())

    def test_diarization_snapshot(self):
        pipeline = _started()
        pipeline.process_chunk(_tone(), "hello")
        snapshot = pipeline.get_diarization()
        self.assertEqual(snapshot["current_speaker"], "speaker_1")
        self.assertEqual(snapshot["turn_history"][0]["start_time"], 0.0)
        self.assertEqual(snapshot["turn_history"][0]["end_time"], 2.5)


if __name__ == "__main__":
    unittest.main()
