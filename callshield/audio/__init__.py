# callshield/audio/__init__.py
# =============================
# Audio Processing Layer — CallShield
#
# Responsibility:
#   - Decode uploaded audio to mono float PCM (normalizer.py)
#   - Split PCM into fixed-duration analysis chunks (chunker.py)
#   - Per-chunk acoustic feature extraction (acoustic.py)
#   - Parallel metadata / quality channels (metadata.py)
#
# Shared signal helpers live in dsp.py.

from callshield.audio.acoustic import (  # noqa: F401
    AcousticFeatureExtractor,
    AcousticFeatures,
    NoiseType,
)
from callshield.audio.chunker import AudioChunk, split_into_chunks  # noqa: F401
from callshield.audio.metadata import MetadataFeed  # noqa: F401
