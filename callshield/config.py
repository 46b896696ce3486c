"""
callshield/config.py
=====================
Pipeline Configuration — CallShield

Responsibility:
    - Hold the tunables of one analysis session (PipelineConfig)
    - Build a config from CALLSHIELD_* environment variables

Environment variables (all optional; unset means the default below):
    CALLSHIELD_CHUNK_DURATION         seconds per chunk           (2.5)
    CALLSHIELD_SAMPLE_RATE            Hz                          (24000)
    CALLSHIELD_ENABLE_DIARIZATION     true/false                  (true)
    CALLSHIELD_ENABLE_TEXT_ANALYSIS   true/false                  (true)
    CALLSHIELD_ENABLE_AUDIO_FEATURES  true/false                  (true)
    CALLSHIELD_ENABLE_METADATA_FEED   true/false                  (true)
    CALLSHIELD_FRAUD_THRESHOLD        alert threshold in [0, 1]   (0.7)
    CALLSHIELD_WINDOW_SIZE            spectrum window, samples    (2048)

The .env file is loaded by main.py (python-dotenv) before this module
reads anything. Malformed values raise ValueError.
"""

import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Mapping

ENV_PREFIX = "CALLSHIELD_"

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")


@dataclass
class PipelineConfig:
    chunk_duration: float = 2.5
    sample_rate: int = 24000
    enable_diarization: bool = True
    enable_text_analysis: bool = True
    enable_audio_features: bool = True
    enable_metadata_feed: bool = True
    fraud_threshold: float = 0.7
    window_size: int = 2048

    def __post_init__(self) -> None:
        if self.chunk_duration <= 0:
            raise ValueError(f"chunk_duration must be positive, got {self.chunk_duration}")
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if not 0.0 <= self.fraud_threshold <= 1.0:
            raise ValueError(f"fraud_threshold must be in [0, 1], got {self.fraud_threshold}")
        if self.window_size < 2:
            raise ValueError(f"window_size must be at least 2, got {self.window_size}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PipelineConfig":
        """Build a config from CALLSHIELD_* variables (os.environ by default)."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or not raw.strip():
                continue
            values[f.name] = _parse(f.name, raw.strip(), type(f.default))

        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _parse(name: str, raw: str, kind: type) -> Any:
    if kind is bool:
        lowered = raw.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ValueError(f"{ENV_PREFIX}{name.upper()}: expected a boolean, got '{raw}'")
    try:
        return kind(raw)
    except ValueError as exc:
        raise ValueError(
            f"{ENV_PREFIX}{name.upper()}: expected {kind.__name__}, got '{raw}'"
        ) from exc
