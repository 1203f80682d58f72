"""Application settings and configuration."""
from typing import Dict, List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server settings
    host: str = Field(default="0.0.0.0", description="Host to bind the server")
    port: int = Field(default=8787, description="Port to bind the server")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level", alias="LOG_LEVEL")

    # RPC URLs for different chains
    ethereum_rpc_url: Optional[str] = Field(
        default=None,
        description="Ethereum mainnet RPC URL",
        alias="ETHEREUM_RPC_URL"
    )

    polygon_rpc_url: Optional[str] = Field(
        default=None,
        description="Polygon mainnet RPC URL",
        alias="POLYGON_RPC_URL"
    )

    arbitrum_rpc_url: Optional[str] = Field(
        default=None,
        description="Arbitrum mainnet RPC URL",
        alias="ARBITRUM_RPC_URL"
    )

    optimism_rpc_url: Optional[str] = Field(
        default=None,
        description="Optimism mainnet RPC URL",
        alias="OPTIMISM_RPC_URL"
    )

    base_rpc_url: Optional[str] = Field(
        default=None,
        description="Base mainnet RPC URL",
        alias="BASE_RPC_URL"
    )

    bsc_rpc_url: Optional[str] = Field(
        default=None,
        description="BNB Smart Chain RPC URL",
        alias="BSC_RPC_URL"
    )

    # Monitoring settings
    mempool_monitoring_enabled: bool = Field(
        default=True,
        description="Run the per-chain polling loops on startup",
        alias="MEMPOOL_MONITORING_ENABLED"
    )

    mev_detection_enabled: bool = Field(
        default=True,
        description="Feed observed transactions into the MEV pattern detector",
        alias="MEV_DETECTION_ENABLED"
    )

    poll_interval_seconds: float = Field(
        default=5.0,
        description="Interval between block polls per chain",
        alias="POLL_INTERVAL_SECONDS",
        gt=0
    )

    cleanup_interval_seconds: float = Field(
        default=60.0,
        description="Interval between eviction passes",
        alias="CLEANUP_INTERVAL_SECONDS",
        gt=0
    )

    transaction_retention_seconds: float = Field(
        default=300.0,
        description="Age after which observed transactions are evicted",
        alias="TRANSACTION_RETENTION_SECONDS",
        gt=0
    )

    pattern_retention_seconds: float = Field(
        default=600.0,
        description="Age after which detected MEV patterns are evicted",
        alias="PATTERN_RETENTION_SECONDS",
        gt=0
    )

    max_blocks_per_poll: int = Field(
        default=5,
        description="Maximum number of new blocks processed per poll tick",
        alias="MAX_BLOCKS_PER_POLL",
        ge=1
    )

    watch_addresses: str = Field(
        default="",
        description="Comma-separated contract addresses to observe (empty = all)",
        alias="WATCH_ADDRESSES"
    )

    # Probe settings
    probe_timeout_seconds: float = Field(
        default=30.0,
        description="Overall deadline for a single probe execution",
        alias="PROBE_TIMEOUT_SECONDS",
        gt=0
    )

    default_lookback_blocks: int = Field(
        default=100,
        description="Block window used when a probe has no start time",
        alias="DEFAULT_LOOKBACK_BLOCKS",
        ge=0
    )

    max_concurrent_probes: int = Field(
        default=10,
        description="Maximum number of probes executing at once",
        alias="MAX_CONCURRENT_PROBES",
        ge=1
    )

    distributed_worker_count: int = Field(
        default=3,
        description="Default number of workers for a distributed probe",
        alias="DISTRIBUTED_WORKER_COUNT",
        ge=1
    )

    distributed_stagger_seconds: float = Field(
        default=1.0,
        description="Delay between distributed worker launches",
        alias="DISTRIBUTED_STAGGER_SECONDS",
        ge=0
    )

    block_fetch_concurrency: int = Field(
        default=10,
        description="Concurrent block fetches when gathering event transactions",
        alias="BLOCK_FETCH_CONCURRENCY",
        ge=1
    )

    probe_private_keys: str = Field(
        default="",
        description="Comma-separated private keys used for test transactions",
        alias="PROBE_PRIVATE_KEYS"
    )

    node_location: str = Field(
        default="us-east-1",
        description="Location label attached to probe results",
        alias="NODE_LOCATION"
    )

    # Scoring settings
    score_threshold_excellent: float = Field(
        default=90.0,
        description="Minimum score for the excellent category",
        alias="SCORE_THRESHOLD_EXCELLENT"
    )

    score_threshold_good: float = Field(
        default=75.0,
        description="Minimum score for the good category",
        alias="SCORE_THRESHOLD_GOOD"
    )

    score_threshold_fair: float = Field(
        default=60.0,
        description="Minimum score for the fair category",
        alias="SCORE_THRESHOLD_FAIR"
    )

    # Evidence settings
    ipfs_api_url: Optional[str] = Field(
        default=None,
        description="IPFS HTTP API used to publish evidence bundles",
        alias="IPFS_API_URL"
    )

    ipfs_gateway_url: str = Field(
        default="https://ipfs.io/ipfs/",
        description="Public IPFS gateway",
        alias="IPFS_GATEWAY_URL"
    )

    ipfs_project_id: Optional[str] = Field(
        default=None,
        description="Project id for hosted IPFS APIs",
        alias="IPFS_PROJECT_ID"
    )

    ipfs_project_secret: Optional[str] = Field(
        default=None,
        description="Project secret for hosted IPFS APIs",
        alias="IPFS_PROJECT_SECRET"
    )

    # Redis settings
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for mirroring probe results",
        alias="REDIS_URL"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "populate_by_name": True,
        "extra": "ignore"  # Ignore extra fields from .env
    }

    @field_validator(
        "ethereum_rpc_url", "polygon_rpc_url", "arbitrum_rpc_url",
        "optimism_rpc_url", "base_rpc_url", "bsc_rpc_url", "ipfs_api_url"
    )
    @classmethod
    def validate_endpoint(cls, v: Optional[str]) -> Optional[str]:
        """Validate endpoint URL format."""
        if not v:
            return None
        if not v.startswith(("http://", "https://", "ws://", "wss://")):
            raise ValueError("Endpoint must be an HTTP(S) or WS(S) URL")
        return v

    @model_validator(mode="after")
    def validate_thresholds(self) -> "Settings":
        """Score thresholds must be strictly decreasing."""
        if not (
            self.score_threshold_excellent > self.score_threshold_good > self.score_threshold_fair
        ):
            raise ValueError("Score thresholds must satisfy excellent > good > fair")
        return self

    @property
    def rpc_urls(self) -> Dict[str, str]:
        """RPC URL per configured chain name."""
        urls = {
            "ethereum": self.ethereum_rpc_url,
            "polygon": self.polygon_rpc_url,
            "arbitrum": self.arbitrum_rpc_url,
            "optimism": self.optimism_rpc_url,
            "base": self.base_rpc_url,
            "bsc": self.bsc_rpc_url,
        }
        return {name: url for name, url in urls.items() if url}

    @property
    def watch_address_set(self) -> set:
        """Lower-cased watch addresses."""
        return {a.strip().lower() for a in self.watch_addresses.split(",") if a.strip()}

    @property
    def probe_private_key_list(self) -> List[str]:
        """Configured probe wallet keys."""
        return [k.strip() for k in self.probe_private_keys.split(",") if k.strip()]

    @property
    def score_thresholds(self) -> Dict[str, float]:
        """Category thresholds keyed by category name."""
        return {
            "excellent": self.score_threshold_excellent,
            "good": self.score_threshold_good,
            "fair": self.score_threshold_fair,
        }


# Global settings instance
settings = Settings()
