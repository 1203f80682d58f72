"""
Fairness Analysis Module.

Scores distribution event windows for bot concentration, MEV activity and
timing manipulation, and publishes reproducible evidence bundles.
"""
from .models import (
    ConcentrationMetrics,
    DistributionEventType,
    EvidenceBundle,
    FairnessAnalysis,
    MEVMetrics,
    ScoreCategory,
    Severity,
    TimingMetrics,
    Violation,
    ViolationEvidence,
    ViolationImpact,
    ViolationType,
    WalletCluster
)
from .metrics import (
    gini_coefficient,
    herfindahl_index,
    score_category,
    top_share_percent
)
from .evidence import (
    EvidenceSink,
    InMemoryEvidenceSink,
    IPFSEvidenceSink,
    content_hash,
    publish_evidence
)
from .analyzer import (
    AnalysisOptions,
    FairnessAnalyzer
)

__all__ = [
    # Models
    "ConcentrationMetrics",
    "DistributionEventType",
    "EvidenceBundle",
    "FairnessAnalysis",
    "MEVMetrics",
    "ScoreCategory",
    "Severity",
    "TimingMetrics",
    "Violation",
    "ViolationEvidence",
    "ViolationImpact",
    "ViolationType",
    "WalletCluster",

    # Metrics
    "gini_coefficient",
    "herfindahl_index",
    "score_category",
    "top_share_percent",

    # Evidence
    "EvidenceSink",
    "InMemoryEvidenceSink",
    "IPFSEvidenceSink",
    "content_hash",
    "publish_evidence",

    # Analysis
    "AnalysisOptions",
    "FairnessAnalyzer"
]
