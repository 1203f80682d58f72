"""Blockchain provider for multi-chain EVM block and transaction reads."""
import asyncio
import logging
import time
from typing import Any, Dict, Mapping, Optional

import aiohttp
from web3 import AsyncWeb3, Web3
from web3.exceptions import Web3Exception
from web3.providers import AsyncHTTPProvider

from ..config.settings import settings
from ..errors import DataUnavailable
from ..mev_detection.models import CHAIN_IDS, Block, Chain, ChainTransaction


logger = logging.getLogger(__name__)


class ChainConfig:
    """Configuration for a blockchain network."""

    def __init__(
        self,
        name: str,
        chain_id: int,
        rpc_url: str,
        block_explorer_url: Optional[str] = None,
        native_currency: str = "ETH"
    ):
        self.name = name
        self.chain_id = chain_id
        self.rpc_url = rpc_url
        self.block_explorer_url = block_explorer_url
        self.native_currency = native_currency


_CHAIN_METADATA = {
    Chain.ETHEREUM: ("Ethereum", "https://etherscan.io", "ETH"),
    Chain.POLYGON: ("Polygon", "https://polygonscan.com", "POL"),
    Chain.ARBITRUM: ("Arbitrum", "https://arbiscan.io", "ETH"),
    Chain.OPTIMISM: ("Optimism", "https://optimistic.etherscan.io", "ETH"),
    Chain.BASE: ("Base", "https://basescan.org", "ETH"),
    Chain.BSC: ("BNB Smart Chain", "https://bscscan.com", "BNB"),
}


def _to_hex(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return Web3.to_hex(value)


def transaction_from_rpc(
    tx: Mapping[str, Any],
    block_number: int,
    position: int,
    observed_at: float,
    block_timestamp: Optional[float] = None
) -> ChainTransaction:
    """Convert an RPC transaction object into a ChainTransaction."""
    gas_price = tx.get("gasPrice")
    if gas_price is None:
        gas_price = tx.get("maxFeePerGas", 0)

    return ChainTransaction(
        hash=_to_hex(tx.get("hash")).lower(),
        from_address=(tx.get("from") or "").lower(),
        to=(tx.get("to") or "").lower(),
        value=int(tx.get("value", 0) or 0),
        gas_price=int(gas_price or 0),
        gas_limit=int(tx.get("gas", 0) or 0),
        nonce=int(tx.get("nonce", 0) or 0),
        data=_to_hex(tx.get("input", "0x")) or "0x",
        observed_at=observed_at,
        block_number=block_number,
        position_in_block=position,
        block_timestamp=block_timestamp,
    )


class BlockchainProvider:
    """Async blockchain provider serving block reads over AsyncWeb3."""

    def __init__(self, rpc_urls: Optional[Dict[str, str]] = None, request_timeout: int = 30):
        """Initialize the blockchain provider."""
        self.rpc_urls = rpc_urls
        self.request_timeout = request_timeout
        self.web3_instances: Dict[str, AsyncWeb3] = {}
        self.chain_configs: Dict[str, ChainConfig] = {}
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize all blockchain connections."""
        async with self._init_lock:
            if self._initialized:
                return

            logger.info("🔗 Initializing blockchain connections...")
            await self._setup_chain_configs()
            await self._initialize_web3_instances()

            self._initialized = True
            logger.info(f"✅ Initialized {len(self.web3_instances)} blockchain connections")

    async def _setup_chain_configs(self) -> None:
        """Set up configuration for chains with an RPC URL."""
        rpc_urls = self.rpc_urls if self.rpc_urls is not None else settings.rpc_urls
        configs = {}

        for chain_name, rpc_url in rpc_urls.items():
            try:
                chain = Chain(chain_name.lower())
            except ValueError:
                logger.warning(f"⚠️ Ignoring unsupported chain '{chain_name}'")
                continue

            name, explorer, currency = _CHAIN_METADATA[chain]
            configs[chain.value] = ChainConfig(
                name=name,
                chain_id=CHAIN_IDS[chain],
                rpc_url=rpc_url,
                block_explorer_url=explorer,
                native_currency=currency
            )

        self.chain_configs = configs
        logger.info(f"📋 Configured {len(configs)} chains: {list(configs.keys())}")

    async def _initialize_web3_instances(self) -> None:
        """Initialize Web3 instances for all configured chains."""
        for chain_name, config in self.chain_configs.items():
            try:
                provider = AsyncHTTPProvider(
                    config.rpc_url,
                    request_kwargs={"timeout": self.request_timeout}
                )
                w3 = AsyncWeb3(provider)

                await w3.is_connected()
                chain_id = await w3.eth.chain_id

                if chain_id != config.chain_id:
                    logger.warning(
                        f"⚠️ Chain ID mismatch for {chain_name}: "
                        f"expected {config.chain_id}, got {chain_id}"
                    )

                self.web3_instances[chain_name] = w3
                logger.info(f"✅ Connected to {config.name} (chain ID: {chain_id})")

            except Exception as e:
                logger.error(f"❌ Failed to connect to {chain_name}: {e}")
                continue

    async def get_web3(self, chain_name: str) -> Optional[AsyncWeb3]:
        """Get Web3 instance for a specific chain."""
        if not self._initialized:
            await self.initialize()

        return self.web3_instances.get(chain_name.lower())

    async def _require_web3(self, chain_name: str) -> AsyncWeb3:
        w3 = await self.get_web3(chain_name)
        if w3 is None:
            raise DataUnavailable(f"No provider available for chain {chain_name}", chain=chain_name)
        return w3

    async def get_latest_block_number(self, chain: str) -> int:
        """Get current block number for a chain."""
        w3 = await self._require_web3(chain)
        try:
            return await w3.eth.block_number
        except (Web3Exception, aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.error(f"Failed to get block number for {chain}: {e}")
            raise DataUnavailable(f"Failed to get block number for {chain}: {e}", chain=chain) from e

    async def get_block(self, chain: str, block_number: int, include_transactions: bool = True) -> Block:
        """Get a block and, optionally, its transactions in inclusion order."""
        w3 = await self._require_web3(chain)
        try:
            raw_block = await w3.eth.get_block(block_number, full_transactions=include_transactions)
        except (Web3Exception, aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.error(f"Failed to get block {block_number} for {chain}: {e}")
            raise DataUnavailable(
                f"Failed to get block {block_number} for {chain}: {e}",
                chain=chain,
                block_number=block_number
            ) from e

        if raw_block is None:
            raise DataUnavailable(f"Block {block_number} not found on {chain}", chain=chain, block_number=block_number)

        timestamp = float(raw_block["timestamp"])
        transactions = []
        if include_transactions:
            observed_at = time.time()
            for position, tx in enumerate(raw_block.get("transactions", [])):
                # Hash-only entries carry no sender or call data
                if not isinstance(tx, Mapping):
                    continue
                transactions.append(
                    transaction_from_rpc(tx, block_number, position, observed_at, timestamp)
                )

        return Block(number=block_number, timestamp=timestamp, transactions=tuple(transactions))

    async def close(self) -> None:
        """Close all blockchain connections."""
        logger.info("🔒 Closing blockchain connections...")

        for chain_name, w3 in self.web3_instances.items():
            try:
                if hasattr(w3.provider, 'disconnect'):
                    await w3.provider.disconnect()
            except Exception as e:
                logger.error(f"Error closing {chain_name} connection: {e}")

        self.web3_instances.clear()
        self._initialized = False
        logger.info("✅ All blockchain connections closed")
