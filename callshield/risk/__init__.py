# callshield/risk/__init__.py
# ============================
# Risk Fusion — CallShield
#
# Responsibility:
#   - Fuse per-chunk signals into one fraud probability (weighted, renormalized)
#   - Map probability to risk level (safe | warning | blocked)
#   - Collect explainable fraud indicators
#
# Public API:
#   - fuse_signals()         — weighted fusion + confidence
#   - determine_risk_level() — fixed thresholds 0.5 / 0.8
#   - collect_indicators()   — deduplicated indicator list

from callshield.risk.fusion import (  # noqa: F401
    DEFAULT_WEIGHTS,
    FusionResult,
    RiskLevel,
    collect_indicators,
    determine_risk_level,
    fuse_signals,
)
