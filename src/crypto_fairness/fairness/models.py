"""
Fairness Analysis Data Models.

Defines the violations, wallet clusters, metrics and evidence references that
make up the fairness analysis of one distribution event window.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..mev_detection.models import Chain


class DistributionEventType(str, Enum):
    """Types of time-boxed distribution events."""
    NFT_MINT = "nft_mint"
    TOKEN_LAUNCH = "token_launch"
    AIRDROP = "airdrop"
    IDO = "ido"
    AUCTION = "auction"


class ViolationType(str, Enum):
    """Types of fairness violations."""
    BOT_CONCENTRATION = "bot_concentration"
    MEV_FRONT_RUNNING = "mev_front_running"
    SANDWICH_ATTACK = "sandwich_attack"
    BACKDOOR_ALLOWLIST = "backdoor_allowlist"
    PREMINED_SUPPLY = "premined_supply"
    SYBIL_ATTACK = "sybil_attack"
    TIMING_MANIPULATION = "timing_manipulation"
    PRIVATE_RELAY_ABUSE = "private_relay_abuse"


class Severity(str, Enum):
    """Violation severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Points deducted per violation, scaled by the violation's confidence
SEVERITY_WEIGHTS = {
    Severity.LOW: 5,
    Severity.MEDIUM: 10,
    Severity.HIGH: 20,
    Severity.CRITICAL: 30,
}


class ScoreCategory(str, Enum):
    """Fairness score buckets."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class ViolationEvidence(BaseModel):
    """On-chain references backing a violation."""

    model_config = ConfigDict(frozen=True)

    transaction_hashes: List[str] = Field(default_factory=list)
    wallet_addresses: List[str] = Field(default_factory=list)
    block_numbers: List[int] = Field(default_factory=list)
    timestamp: float = Field(..., description="Unix time of the latest evidence transaction")


class ViolationImpact(BaseModel):
    """Estimated reach of a violation."""

    model_config = ConfigDict(frozen=True)

    affected_wallets: int = Field(default=0, ge=0)
    affected_supply: float = Field(default=0.0, ge=0)
    estimated_loss: str = Field(default="0", description="Estimated loss in wei")


class Violation(BaseModel):
    """A single fairness violation found in an event window."""

    model_config = ConfigDict(frozen=True)

    violation_id: str = Field(..., description="Deterministic violation identifier")
    type: ViolationType
    severity: Severity
    description: str
    evidence: ViolationEvidence
    impact: ViolationImpact
    confidence: float = Field(..., ge=0, le=1)


class WalletCluster(BaseModel):
    """Wallets grouped by shared behavioral signals."""

    model_config = ConfigDict(frozen=True)

    cluster_id: str
    wallet_addresses: List[str] = Field(..., description="Sorted, distinct member addresses")
    similarity_score: float = Field(..., ge=0, le=1)
    behavioral_signals: List[str] = Field(default_factory=list)
    first_seen: float
    last_seen: float

    @field_validator("wallet_addresses")
    @classmethod
    def validate_members(cls, v: List[str]) -> List[str]:
        """Clusters need at least two distinct wallets."""
        members = sorted(set(v))
        if len(members) < 2:
            raise ValueError("A wallet cluster needs at least 2 distinct wallets")
        return members


class ConcentrationMetrics(BaseModel):
    """Inequality of per-wallet transaction counts."""

    model_config = ConfigDict(frozen=True)

    gini_coefficient: float = 0.0
    top10_percent: float = 0.0
    top1_percent: float = 0.0
    herfindahl_index: float = 0.0


class MEVMetrics(BaseModel):
    """Counts of MEV patterns inside the event block range."""

    model_config = ConfigDict(frozen=True)

    sandwich_attacks: int = 0
    front_running_txs: int = 0
    back_running_txs: int = 0
    private_relay_usage: int = 0


class TimingMetrics(BaseModel):
    """Statistics of gaps between consecutive transaction timestamps (seconds)."""

    model_config = ConfigDict(frozen=True)

    average_confirmation_time: float = 0.0
    median_confirmation_time: float = 0.0
    fastest_confirmation: float = 0.0
    slowest_confirmation: float = 0.0


class EvidenceBundle(BaseModel):
    """Content hashes and published locations of the analysis evidence."""

    model_config = ConfigDict(frozen=True)

    manifest_hash: str
    content_uri: str = ""
    notebook_uri: str = ""
    raw_data_hash: str
    published: bool = False
    publish_error: Optional[str] = None


class FairnessAnalysis(BaseModel):
    """Fairness result for one event window."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    event_type: DistributionEventType
    chain: Chain
    contract_address: str
    start_block: int = Field(..., ge=0)
    end_block: int = Field(..., ge=0)
    total_participants: int = Field(..., ge=0, description="Distinct sending wallets")
    total_transactions: int = Field(..., ge=0)
    analysis_timestamp: float = Field(..., description="Wall-clock time the analysis ran")

    overall_score: float = Field(..., ge=0, le=100)
    score_category: ScoreCategory

    violations: List[Violation] = Field(default_factory=list)
    wallet_clusters: List[WalletCluster] = Field(default_factory=list)
    concentration_metrics: ConcentrationMetrics = Field(default_factory=ConcentrationMetrics)
    mev_metrics: MEVMetrics = Field(default_factory=MEVMetrics)
    timing_metrics: TimingMetrics = Field(default_factory=TimingMetrics)
    evidence: EvidenceBundle
