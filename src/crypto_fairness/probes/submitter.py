"""Test transaction submission used by probes to sample live inclusion behavior."""
import asyncio
import itertools
import logging
from typing import List, Optional, Protocol

import aiohttp
from eth_account import Account
from web3 import Web3
from web3.exceptions import Web3Exception

from ..blockchain_connector.provider import BlockchainProvider
from ..errors import SubmissionFailure
from .models import TestTransactionReceipt

logger = logging.getLogger(__name__)

TEST_TX_GAS_LIMIT = 100_000
DEFAULT_GAS_PRICE = Web3.to_wei(20, "gwei")


class TestTransactionSubmitter(Protocol):
    """Sends a zero-value call to a contract and reports the pending transaction."""

    async def submit(self, chain: str, contract_address: str) -> TestTransactionReceipt:
        ...


class Web3TestTransactionSubmitter:
    """Signs test transactions locally and broadcasts them over AsyncWeb3."""

    # Not a pytest test class
    __test__ = False

    def __init__(
        self,
        provider: BlockchainProvider,
        private_keys: List[str],
        gas_limit: int = TEST_TX_GAS_LIMIT,
        default_gas_price: int = DEFAULT_GAS_PRICE
    ):
        if not private_keys:
            raise ValueError("At least one probe private key is required")

        self.provider = provider
        self.accounts = [Account.from_key(key) for key in private_keys]
        self.gas_limit = gas_limit
        self.default_gas_price = default_gas_price
        self._wallets = itertools.cycle(self.accounts)

        self.stats = {"submitted": 0, "failed": 0}

    async def submit(self, chain: str, contract_address: str) -> TestTransactionReceipt:
        w3 = await self.provider.get_web3(chain)
        if w3 is None:
            self.stats["failed"] += 1
            raise SubmissionFailure(f"No provider available for chain {chain}")

        account = next(self._wallets)
        try:
            gas_price = await self._gas_price(w3)
            nonce = await w3.eth.get_transaction_count(account.address, "pending")
            chain_id = await w3.eth.chain_id

            tx = {
                "to": Web3.to_checksum_address(contract_address),
                "value": 0,
                "gas": self.gas_limit,
                "gasPrice": gas_price,
                "nonce": nonce,
                "chainId": chain_id,
                "data": "0x",
            }
            signed = account.sign_transaction(tx)
            tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)

        except (Web3Exception, aiohttp.ClientError, asyncio.TimeoutError, ValueError, TypeError) as e:
            self.stats["failed"] += 1
            logger.warning(f"⚠️ Test transaction on {chain} failed: {e}")
            raise SubmissionFailure(f"Test transaction failed on {chain}: {e}") from e

        self.stats["submitted"] += 1
        receipt = TestTransactionReceipt(
            transaction_hash=Web3.to_hex(tx_hash),
            from_address=account.address.lower(),
            gas_price=gas_price,
            status="pending",
        )
        logger.info(f"Submitted test transaction {receipt.transaction_hash} on {chain}")
        return receipt

    async def _gas_price(self, w3) -> int:
        gas_price: Optional[int] = await w3.eth.gas_price
        return int(gas_price) if gas_price else self.default_gas_price
