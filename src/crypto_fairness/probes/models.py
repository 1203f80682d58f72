"""
Probe Data Models.

Requests, per-probe results and the aggregate of a distributed probe run.
"""
import re
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..fairness.models import (
    DistributionEventType,
    FairnessAnalysis,
    ScoreCategory,
    Violation,
    WalletCluster,
)
from ..mev_detection.models import Chain

_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


class ProbeStatus(str, Enum):
    """Probe lifecycle states."""
    CREATED = "created"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProbeStatus.SUCCEEDED, ProbeStatus.FAILED)


class ProbeConfig(BaseModel):
    """Detection toggles for a probe."""

    model_config = ConfigDict(frozen=True)

    mempool_monitoring: bool = Field(default=True, description="Submit a test transaction")
    mev_detection: bool = True
    bot_detection: bool = True
    timing_analysis: bool = True
    sample_size: int = Field(default=100, ge=1, le=1000)


class ProbeRequest(BaseModel):
    """A fairness probe against one event window."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(..., min_length=1)
    event_type: DistributionEventType
    chain: Chain
    contract_address: str
    start_time: Optional[float] = Field(default=None, ge=0, description="Unix seconds")
    end_time: Optional[float] = Field(default=None, ge=0, description="Unix seconds")
    probe_config: ProbeConfig = Field(default_factory=ProbeConfig)

    @field_validator("contract_address")
    @classmethod
    def validate_contract_address(cls, v: str) -> str:
        if not _ADDRESS_PATTERN.match(v):
            raise ValueError(f"Invalid contract address: {v}")
        return v.lower()

    @model_validator(mode="after")
    def validate_time_range(self) -> "ProbeRequest":
        if self.start_time is not None and self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("end_time must not be earlier than start_time")
        return self


class TestTransactionReceipt(BaseModel):
    """Outcome of a submitted test transaction."""

    # Not a pytest test class
    __test__ = False

    transaction_hash: str
    from_address: str
    gas_price: int
    status: str = "pending"


class BlockRange(BaseModel):
    start_block: int
    end_block: int


class ProbeData(BaseModel):
    """Payload of a successful probe."""

    fairness_analysis: FairnessAnalysis
    test_transactions: List[TestTransactionReceipt] = Field(default_factory=list)
    block_range: BlockRange


class ProbeResult(BaseModel):
    """Outcome of one probe execution."""

    model_config = ConfigDict(frozen=True)

    probe_id: str
    event_id: str
    success: bool
    data: Optional[ProbeData] = None
    errors: List[str] = Field(default_factory=list)
    timestamp: float
    duration_ms: float = Field(..., ge=0)
    node_location: str

    @property
    def score(self) -> Optional[float]:
        if self.data is None:
            return None
        return self.data.fairness_analysis.overall_score


class AggregatedProbeResult(BaseModel):
    """Combined outcome of a distributed probe run."""

    event_id: str
    success: bool
    average_score: Optional[float] = None
    score_category: Optional[ScoreCategory] = None
    violations: List[Violation] = Field(default_factory=list)
    wallet_clusters: List[WalletCluster] = Field(default_factory=list)
    probe_count: int = 0
    successful_probes: int = 0
    consensus: float = Field(default=0.0, ge=0, le=1)
    individual_results: List[ProbeResult] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
