"""
tests/test_metadata.py
=======================
Contextual Metadata Feed Tests

Test categories:
    1. Channel bookkeeping (clamping, capacity, weighted window average)
    2. Quality indicators (silence, empty chunks, clipping)
    3. Stress markers (volume spike, pitch break, hesitation, pruning)
    4. Contextual weighting of the fused probability
    5. Aggregation and reset

A fake clock drives every timestamp so marker pruning is deterministic.
"""

import os
import sys
import unittest

import numpy as np

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from callshield.audio.metadata import (
    CHANNEL_CAPACITY,
    AggregatedMetadata,
    ChannelType,
    FusionInput,
    MetadataFeed,
    QualityIndicators,
    SpeakerContext,
    StressMarker,
    StressMarkerType,
)


class _FakeClock:
    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def _spike_chunk() -> np.ndarray:
    data = np.zeros(1000)
    data[500] = 0.9
    return data


def _buzz_chunk() -> np.ndarray:
    # Alternating sign, very quiet: zero-crossing rate close to 1
    return np.tile([0.01, -0.01], 500)


def _hesitant_chunk() -> np.ndarray:
    return np.concatenate([np.zeros(500), np.full(500, 0.2)])


def _metadata(markers: int = 0, integrity: float = 1.0, noise: float = 0.0, weight: float = 1.0):
    return AggregatedMetadata(
        confidence_score=1.0,
        background_noise_level=noise,
        average_amplitude=0.0,
        stress_level=0.0,
        signal_quality=integrity,
        stress_markers=[
            StressMarker(StressMarkerType.VOLUME_SPIKE, 0.9, 0.0, 0.1) for _ in range(markers)
        ],
        quality_indicators=QualityIndicators(audio_integrity=integrity),
        contextual_weight=weight,
    )


def _fusion_input(**kwargs) -> FusionInput:
    return FusionInput(text_features={}, audio_features={}, metadata=_metadata(**kwargs))


# ===================================================================
# 1. Channels
# ===================================================================

class TestChannels(unittest.TestCase):

    def setUp(self):
        self.feed = MetadataFeed(clock=_FakeClock())

    def test_values_are_clamped(self):
        self.feed.feed_channel(ChannelType.NOISE, 1.7)
        self.assertEqual(self.feed.channel_average(ChannelType.NOISE), 1.0)
        self.feed.feed_channel(ChannelType.AMPLITUDE, -0.4)
        self.assertEqual(self.feed.channel_average(ChannelType.AMPLITUDE), 0.0)

    def test_channel_names_accepted(self):
        self.feed.feed_channel("stress", 0.5)
        self.assertEqual(self.feed.channel_size(ChannelType.STRESS), 1)
        with self.assertRaises(ValueError):
            self.feed.feed_channel("volume", 0.5)

    def test_capacity(self):
        for _ in range(CHANNEL_CAPACITY + 50):
            self.feed.feed_channel(ChannelType.QUALITY, 0.5)
        self.assertEqual(self.feed.channel_size(ChannelType.QUALITY), CHANNEL_CAPACITY)

    def test_average_uses_latest_twenty(self):
        for _ in range(80):
            self.feed.feed_channel(ChannelType.NOISE, 0.0)
        for _ in range(20):
            self.feed.feed_channel(ChannelType.NOISE, 1.0)
        self.assertEqual(self.feed.channel_average(ChannelType.NOISE), 1.0)

    def test_confidence_weighting(self):
        self.feed.feed_channel(ChannelType.CONFIDENCE, 1.0)
        self.feed.update_confidence(0.0)
        self.assertAlmostEqual(self.feed.channel_average(ChannelType.CONFIDENCE), 1.0 / 2.2)

    def test_empty_channel_average_is_zero(self):
        self.assertEqual(self.feed.channel_average(ChannelType.CONFIDENCE), 0.0)


# ===================================================================
# 2. Quality indicators
# ===================================================================

class TestQualityIndicators(unittest.TestCase):

    def test_silent_chunk(self):
        feed = MetadataFeed(clock=_FakeClock())
        feed.process_audio_chunk(np.zeros(1000))
        quality = feed.quality_indicators
        self.assertEqual(quality.signal_to_noise_ratio, 1.0)
        self.assertFalse(quality.clipping_detected)
        self.assertEqual(quality.silence_ratio, 1.0)
        self.assertAlmostEqual(quality.audio_integrity, 0.7)
        self.assertAlmostEqual(feed.channel_average(ChannelType.QUALITY), 0.7)

    def test_empty_chunk_is_treated_as_silence(self):
        feed = MetadataFeed(clock=_FakeClock())
        feed.process_audio_chunk(np.zeros(0))
        self.assertAlmostEqual(feed.quality_indicators.audio_integrity, 0.7)
        self.assertEqual(feed.stress_markers, [])
        self.assertEqual(feed.channel_size(ChannelType.NOISE), 1)

    def test_clipping(self):
        feed = MetadataFeed(clock=_FakeClock())
        data = np.full(1000, 0.3)
        data[10] = 1.0
        feed.process_audio_chunk(data)
        self.assertTrue(feed.quality_indicators.clipping_detected)

    def test_noise_and_amplitude_channels(self):
        feed = MetadataFeed(clock=_FakeClock())
        feed.process_audio_chunk(np.full(1000, 0.1))
        self.assertAlmostEqual(feed.channel_average(ChannelType.NOISE), 0.5)
        self.assertAlmostEqual(feed.channel_average(ChannelType.AMPLITUDE), 0.3)


# ===================================================================
# 3. Stress markers
# ===================================================================

class TestStressMarkers(unittest.TestCase):

    def test_volume_spike(self):
        feed = MetadataFeed(clock=_FakeClock())
        feed.process_audio_chunk(_spike_chunk())
        markers = feed.stress_markers
        self.assertEqual([m.type for m in markers], [StressMarkerType.VOLUME_SPIKE])
        self.assertAlmostEqual(markers[0].intensity, 0.9)
        self.assertEqual(markers[0].duration, 0.1)

    def test_pitch_break(self):
        feed = MetadataFeed(clock=_FakeClock())
        feed.process_audio_chunk(_buzz_chunk())
        markers = feed.stress_markers
        self.assertEqual([m.type for m in markers], [StressMarkerType.PITCH_BREAK])
        self.assertAlmostEqual(markers[0].intensity, 999 / 1000)
        self.assertEqual(markers[0].duration, 0.05)

    def test_hesitation(self):
        feed = MetadataFeed(clock=_FakeClock())
        feed.process_audio_chunk(_hesitant_chunk())
        markers = feed.stress_markers
        self.assertEqual([m.type for m in markers], [StressMarkerType.SPEECH_HESITATION])
        self.assertAlmostEqual(markers[0].intensity, 0.5)
        self.assertEqual(markers[0].duration, 0.2)

    def test_stress_channel(self):
        feed = MetadataFeed(clock=_FakeClock())
        feed.process_audio_chunk(_spike_chunk())
        self.assertAlmostEqual(feed.channel_average(ChannelType.STRESS), 0.9 * 0.6 + 0.2 * 0.4)

    def test_old_markers_pruned(self):
        clock = _FakeClock()
        feed = MetadataFeed(clock=clock)
        feed.process_audio_chunk(_spike_chunk())
        clock.now += 6.0
        feed.process_audio_chunk(_spike_chunk())

        markers = feed.stress_markers
        self.assertEqual(len(markers), 1)
        self.assertEqual(markers[0].timestamp, clock.now)

    def test_markers_within_window_kept(self):
        clock = _FakeClock()
        feed = MetadataFeed(clock=clock)
        for _ in range(4):
            feed.process_audio_chunk(_spike_chunk())
            clock.now += 1.0
        self.assertEqual(len(feed.stress_markers), 4)

    def test_stale_markers_do_not_raise_stress(self):
        clock = _FakeClock()
        feed = MetadataFeed(clock=clock)
        feed.process_audio_chunk(_spike_chunk())
        clock.now += 3.0
        feed.process_audio_chunk(np.zeros(1000))
        entries = feed.get_aggregated_metadata()
        self.assertEqual(len(entries.stress_markers), 1)
        # Second chunk fed 0.0: the marker is older than two seconds
        self.assertAlmostEqual(entries.stress_level, (0.62 + 0.0) / 2)


# ===================================================================
# 4. Contextual weighting
# ===================================================================

class TestContextualWeighting(unittest.TestCase):

    def test_no_adjustment(self):
        self.assertAlmostEqual(MetadataFeed.apply_contextual_weighting(0.5, _fusion_input()), 0.5)

    def test_many_stress_markers_raise_score(self):
        result = MetadataFeed.apply_contextual_weighting(0.5, _fusion_input(markers=4))
        self.assertAlmostEqual(result, 0.6)

    def test_three_markers_do_not(self):
        result = MetadataFeed.apply_contextual_weighting(0.5, _fusion_input(markers=3))
        self.assertAlmostEqual(result, 0.5)

    def test_poor_integrity_lowers_score(self):
        result = MetadataFeed.apply_contextual_weighting(0.5, _fusion_input(integrity=0.4, weight=0.5))
        self.assertAlmostEqual(result, 0.5 - 0.05 * 0.5)

    def test_noisy_background_raises_score(self):
        result = MetadataFeed.apply_contextual_weighting(0.5, _fusion_input(noise=0.7))
        self.assertAlmostEqual(result, 0.55)

    def test_zero_weight_leaves_score(self):
        result = MetadataFeed.apply_contextual_weighting(0.5, _fusion_input(markers=5, noise=0.9, weight=0.0))
        self.assertAlmostEqual(result, 0.5)

    def test_result_clamped(self):
        self.assertEqual(MetadataFeed.apply_contextual_weighting(0.98, _fusion_input(markers=4)), 1.0)
        self.assertEqual(MetadataFeed.apply_contextual_weighting(0.01, _fusion_input(integrity=0.1)), 0.0)

    def test_contextual_weight(self):
        feed = MetadataFeed(clock=_FakeClock())
        feed.process_audio_chunk(np.zeros(1000))
        feed.update_confidence(0.5)
        self.assertAlmostEqual(feed.contextual_weight(), 0.7 * 0.4 + 0.5 * 0.4 + 1.0 * 0.2)


# ===================================================================
# 5. Aggregation / reset
# ===================================================================

class TestAggregation(unittest.TestCase):

    def test_prepare_fusion_input(self):
        feed = MetadataFeed(clock=_FakeClock())
        feed.process_audio_chunk(_spike_chunk())
        context = SpeakerContext(speaker_id="speaker_1", turn_count=2, speaking_duration=5.0)
        fusion_input = feed.prepare_fusion_input({"f0": 0.1}, {"f0": 0.2}, context)

        self.assertEqual(fusion_input.text_features, {"f0": 0.1})
        self.assertEqual(fusion_input.speaker_context.speaker_id, "speaker_1")
        self.assertEqual(len(fusion_input.metadata.stress_markers), 1)

    def test_to_dict_uses_marker_values(self):
        feed = MetadataFeed(clock=_FakeClock())
        feed.process_audio_chunk(_spike_chunk())
        data = feed.get_aggregated_metadata().to_dict()
        self.assertEqual(data["stress_markers"][0]["type"], "volume_spike")
        self.assertIn("audio_integrity", data["quality_indicators"])

    def test_reset(self):
        feed = MetadataFeed(clock=_FakeClock())
        feed.process_audio_chunk(_spike_chunk())
        feed.update_confidence(0.8)
        feed.reset()

        for channel in ChannelType:
            self.assertEqual(feed.channel_size(channel), 0)
        self.assertEqual(feed.stress_markers, [])
        self.assertEqual(feed.quality_indicators, QualityIndicators())


if __name__ == "__main__":
    unittest.main()
