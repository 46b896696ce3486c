# callshield/__init__.py
# =======================
# CallShield — live fraud & harassment risk scoring for voice calls
#
# Per-chunk pipeline:
#   acoustic features → metadata feed → speaker tracking →
#   text features → conversation context → fusion → risk decision
#
# Public API:
#   - FraudAnalysisPipeline — one analysis session per call
#   - PipelineConfig        — pipeline configuration (env-driven)
#   - PipelineNotActiveError — raised when processing an idle session

from callshield.config import PipelineConfig  # noqa: F401
from callshield.pipeline import (  # noqa: F401
    AnalysisResult,
    CallSummary,
    FraudAnalysisPipeline,
    PipelineNotActiveError,
    PipelineStats,
)

__all__ = [
    "AnalysisResult",
    "CallSummary",
    "FraudAnalysisPipeline",
    "PipelineConfig",
    "PipelineNotActiveError",
    "PipelineStats",
]
