"""
tests/test_config.py
=====================
Pipeline Configuration Tests

Test categories:
    1. Defaults
    2. Validation of out-of-range values
    3. CALLSHIELD_* environment parsing
"""

import os
import sys
import unittest

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from callshield.config import PipelineConfig


class TestDefaults(unittest.TestCase):

    def test_defaults(self):
        config = PipelineConfig()
        self.assertEqual(config.chunk_duration, 2.5)
        self.assertEqual(config.sample_rate, 24000)
        self.assertTrue(config.enable_diarization)
        self.assertTrue(config.enable_text_analysis)
        self.assertTrue(config.enable_audio_features)
        self.assertTrue(config.enable_metadata_feed)
        self.assertEqual(config.fraud_threshold, 0.7)
        self.assertEqual(config.window_size, 2048)

    def test_to_dict(self):
        data = PipelineConfig(fraud_threshold=0.4).to_dict()
        self.assertEqual(data["fraud_threshold"], 0.4)
        self.assertEqual(len(data), 8)


class TestValidation(unittest.TestCase):

    def test_invalid_values(self):
        cases = [
            {"chunk_duration": 0},
            {"chunk_duration": -1.0},
            {"sample_rate": 0},
            {"fraud_threshold": -0.1},
            {"fraud_threshold": 1.5},
            {"window_size": 1},
        ]
        for kwargs in cases:
            with self.subTest(**kwargs):
                with self.assertRaises(ValueError):
                    PipelineConfig(**kwargs)

    def test_threshold_bounds_inclusive(self):
        self.assertEqual(PipelineConfig(fraud_threshold=0.0).fraud_threshold, 0.0)
        self.assertEqual(PipelineConfig(fraud_threshold=1.0).fraud_threshold, 1.0)


class TestFromEnv(unittest.TestCase):

    def test_empty_environment_gives_defaults(self):
        self.assertEqual(PipelineConfig.from_env({}), PipelineConfig())

    def test_values_parsed(self):
        config = PipelineConfig.from_env({
            "CALLSHIELD_CHUNK_DURATION": "1.5",
            "CALLSHIELD_SAMPLE_RATE": "16000",
            "CALLSHIELD_ENABLE_DIARIZATION": "false",
            "CALLSHIELD_ENABLE_TEXT_ANALYSIS": "No",
            "CALLSHIELD_ENABLE_METADATA_FEED": "on",
            "CALLSHIELD_FRAUD_THRESHOLD": " 0.55 ",
            "CALLSHIELD_WINDOW_SIZE": "1024",
        })
        self.assertEqual(config.chunk_duration, 1.5)
        self.assertEqual(config.sample_rate, 16000)
        self.assertFalse(config.enable_diarization)
        self.assertFalse(config.enable_text_analysis)
        self.assertTrue(config.enable_audio_features)
        self.assertTrue(config.enable_metadata_feed)
        self.assertEqual(config.fraud_threshold, 0.55)
        self.assertEqual(config.window_size, 1024)

    def test_blank_values_ignored(self):
        config = PipelineConfig.from_env({"CALLSHIELD_FRAUD_THRESHOLD": "   "})
        self.assertEqual(config.fraud_threshold, 0.7)

    def test_unrelated_variables_ignored(self):
        config = PipelineConfig.from_env({"FRAUD_THRESHOLD": "0.1", "PATH": "/usr/bin"})
        self.assertEqual(config, PipelineConfig())

    def test_malformed_values_raise(self):
        for name, value in (
            ("CALLSHIELD_SAMPLE_RATE", "fast"),
            ("CALLSHIELD_ENABLE_DIARIZATION", "maybe"),
            ("CALLSHIELD_FRAUD_THRESHOLD", "2"),
        ):
            with self.subTest(name=name):
                with self.assertRaises(ValueError):
                    PipelineConfig.from_env({name: value})

    def test_reads_os_environ_by_default(self):
        previous = os.environ.get("CALLSHIELD_WINDOW_SIZE")
        os.environ["CALLSHIELD_WINDOW_SIZE"] = "512"
        try:
            self.assertEqual(PipelineConfig.from_env().window_size, 512)
        finally:
            if previous is None:
                del os.environ["CALLSHIELD_WINDOW_SIZE"]
            else:
                os.environ["CALLSHIELD_WINDOW_SIZE"] = previous


if __name__ == "__main__":
    unittest.main()
