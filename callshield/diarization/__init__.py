# callshield/diarization/__init__.py
# ===================================
# Speaker Tracking Layer — CallShield
#
# Deterministic, fingerprint-based speaker assignment within one call.

from callshield.diarization.tracker import (  # noqa: F401
    SpeakerFingerprint,
    SpeakerProfile,
    SpeakerSegment,
    SpeakerTracker,
    SpeakerTurn,
)
