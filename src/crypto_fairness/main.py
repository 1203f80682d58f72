"""Main FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

from fastapi import FastAPI

from crypto_fairness.api.health import router as health_router
from crypto_fairness.blockchain_connector.provider import BlockchainProvider
from crypto_fairness.cache import close_redis, get_redis
from crypto_fairness.config.settings import Settings, settings
from crypto_fairness.fairness.analyzer import FairnessAnalyzer
from crypto_fairness.fairness.evidence import EvidenceSink, InMemoryEvidenceSink, IPFSEvidenceSink
from crypto_fairness.mev_detection import ChainMonitor, EventBus, MEVPatternDetector, TransactionWindowStore
from crypto_fairness.probes.orchestrator import ProbeOrchestrator
from crypto_fairness.probes.submitter import Web3TestTransactionSubmitter
from crypto_fairness.storage.result_store import ProbeResultStore

logger = logging.getLogger(__name__)


@dataclass
class FairnessServices:
    """Wired components of one running service."""
    provider: BlockchainProvider
    transaction_store: TransactionWindowStore
    pattern_detector: MEVPatternDetector
    event_bus: EventBus
    chain_monitor: ChainMonitor
    evidence_sink: EvidenceSink
    analyzer: FairnessAnalyzer
    result_store: ProbeResultStore
    orchestrator: ProbeOrchestrator


def build_services(
    config: Settings,
    provider: Optional[BlockchainProvider] = None,
    redis_client=None
) -> FairnessServices:
    """Construct and connect all components from ``config``."""
    provider = provider or BlockchainProvider(rpc_urls=config.rpc_urls)
    transaction_store = TransactionWindowStore()
    pattern_detector = MEVPatternDetector(transaction_store)
    event_bus = EventBus()

    chain_monitor = ChainMonitor(
        chain_reader=provider,
        transaction_store=transaction_store,
        pattern_detector=pattern_detector,
        event_bus=event_bus,
        chains=list(config.rpc_urls.keys()),
        poll_interval=config.poll_interval_seconds,
        cleanup_interval=config.cleanup_interval_seconds,
        transaction_retention=config.transaction_retention_seconds,
        pattern_retention=config.pattern_retention_seconds,
        max_blocks_per_poll=config.max_blocks_per_poll,
        watch_addresses=config.watch_address_set,
        mev_detection_enabled=config.mev_detection_enabled,
    )

    if config.ipfs_api_url:
        evidence_sink: EvidenceSink = IPFSEvidenceSink(
            api_url=config.ipfs_api_url,
            gateway_url=config.ipfs_gateway_url,
            project_id=config.ipfs_project_id,
            project_secret=config.ipfs_project_secret,
        )
    else:
        evidence_sink = InMemoryEvidenceSink()

    analyzer = FairnessAnalyzer(
        chain_reader=provider,
        evidence_sink=evidence_sink,
        score_thresholds=config.score_thresholds,
        block_fetch_concurrency=config.block_fetch_concurrency,
    )

    submitter = None
    if config.probe_private_key_list:
        submitter = Web3TestTransactionSubmitter(provider, config.probe_private_key_list)

    result_store = ProbeResultStore(redis_client=redis_client)
    orchestrator = ProbeOrchestrator(
        chain_reader=provider,
        transaction_store=transaction_store,
        pattern_detector=pattern_detector,
        analyzer=analyzer,
        result_store=result_store,
        event_bus=event_bus,
        submitter=submitter,
        chain_monitor=chain_monitor,
        probe_timeout=config.probe_timeout_seconds,
        default_lookback_blocks=config.default_lookback_blocks,
        max_concurrent_probes=config.max_concurrent_probes,
        distributed_worker_count=config.distributed_worker_count,
        distributed_stagger=config.distributed_stagger_seconds,
        node_location=config.node_location,
    )

    return FairnessServices(
        provider=provider,
        transaction_store=transaction_store,
        pattern_detector=pattern_detector,
        event_bus=event_bus,
        chain_monitor=chain_monitor,
        evidence_sink=evidence_sink,
        analyzer=analyzer,
        result_store=result_store,
        orchestrator=orchestrator,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifespan - startup and shutdown events."""
    logger.info("🚀 Starting Crypto Fairness service...")

    redis_client = None
    if settings.redis_url:
        try:
            redis_client = await get_redis()
        except Exception as e:
            logger.warning(f"⚠️ Redis unavailable, results stay in memory only: {e}")

    services = build_services(settings, redis_client=redis_client)
    await services.provider.initialize()

    if settings.mempool_monitoring_enabled:
        await services.chain_monitor.start()
    else:
        logger.info("Chain monitoring disabled")

    app.state.services = services
    app.state.orchestrator = services.orchestrator
    logger.info("✅ Service startup complete!")

    yield

    logger.info("🛑 Shutting down Crypto Fairness service...")
    await services.chain_monitor.stop()
    await services.orchestrator.shutdown()
    if isinstance(services.evidence_sink, IPFSEvidenceSink):
        await services.evidence_sink.close()
    await services.provider.close()
    if redis_client is not None:
        await close_redis()
    logger.info("✅ Service shutdown complete!")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Crypto Fairness API",
        description="On-chain fairness monitoring for token launches, mints and airdrops",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(health_router, tags=["health"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    uvicorn.run(
        "crypto_fairness.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="info" if not settings.debug else "debug",
    )
