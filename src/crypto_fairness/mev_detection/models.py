"""
Transaction and MEV Pattern Data Models.

Defines the immutable records shared between the chain monitor, the
transaction window store, the pattern detector and the fairness analyzer.
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Chain(str, Enum):
    """Supported chains."""
    ETHEREUM = "ethereum"
    POLYGON = "polygon"
    ARBITRUM = "arbitrum"
    OPTIMISM = "optimism"
    BASE = "base"
    BSC = "bsc"


CHAIN_IDS: Dict[Chain, int] = {
    Chain.ETHEREUM: 1,
    Chain.POLYGON: 137,
    Chain.ARBITRUM: 42161,
    Chain.OPTIMISM: 10,
    Chain.BASE: 8453,
    Chain.BSC: 56,
}


class MEVPatternType(str, Enum):
    """Types of detected MEV patterns."""
    SANDWICH = "sandwich"
    FRONT_RUN = "front_run"
    BACK_RUN = "back_run"
    ARBITRAGE = "arbitrage"
    LIQUIDATION = "liquidation"


@dataclass(frozen=True)
class ChainTransaction:
    """A transaction observed on chain, identified by its hash."""
    hash: str
    from_address: str
    to: str
    value: int
    gas_price: int
    gas_limit: int
    nonce: int
    data: str
    observed_at: float
    block_number: int
    position_in_block: int

    # Timestamp of the including block, when the reader supplied one
    block_timestamp: Optional[float] = None

    @property
    def timestamp(self) -> float:
        """Best known time for the transaction."""
        if self.block_timestamp is not None:
            return self.block_timestamp
        return self.observed_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "hash": self.hash,
            "from": self.from_address,
            "to": self.to,
            "value": str(self.value),
            "gasPrice": str(self.gas_price),
            "gasLimit": str(self.gas_limit),
            "nonce": self.nonce,
            "data": self.data,
            "observedAt": self.observed_at,
            "blockNumber": self.block_number,
            "positionInBlock": self.position_in_block,
            "blockTimestamp": self.block_timestamp,
        }


@dataclass(frozen=True)
class Block:
    """Block header plus its ordered transactions."""
    number: int
    timestamp: float
    transactions: Tuple[ChainTransaction, ...] = ()


@dataclass(frozen=True)
class MEVPattern:
    """A detected MEV pattern; all transactions share one block."""
    pattern_id: str
    pattern_type: MEVPatternType
    transactions: Tuple[ChainTransaction, ...]
    block_number: int
    confidence: float
    estimated_profit: int = 0
    detected_at: float = field(default_factory=time.time)

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        if any(tx.block_number != self.block_number for tx in self.transactions):
            raise ValueError("MEV pattern transactions must belong to the pattern's block")

    @property
    def transaction_hashes(self) -> List[str]:
        return [tx.hash for tx in self.transactions]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "patternId": self.pattern_id,
            "patternType": self.pattern_type.value,
            "transactions": [tx.to_dict() for tx in self.transactions],
            "estimatedProfit": str(self.estimated_profit),
            "blockNumber": self.block_number,
            "detectedAt": self.detected_at,
            "confidence": self.confidence,
        }
