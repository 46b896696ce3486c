# callshield/nlp/__init__.py
# ===========================
# Language Layer — CallShield
#
# Responsibility:
#   - Rule-based fraud / harassment features from transcript text (text_features.py)
#   - Conversation context: topics, continuity, emotional trajectory (context.py)
#
# Nothing in this layer calls an LLM; transcripts come from an external
# speech-to-text collaborator.

from callshield.nlp.context import (  # noqa: F401
    ChunkContext,
    ContextTracker,
    ConversationState,
    EmotionalState,
    EmotionalTrend,
    EmotionLabel,
    TopicShift,
)
from callshield.nlp.text_features import TextFeatureExtractor, TextFeatures  # noqa: F401
