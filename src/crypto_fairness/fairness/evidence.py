"""
Evidence hashing and publishing.

Analyses are backed by two content hashes: one over a short manifest summary
and one over the full raw inputs (transactions and patterns). Both use keccak256
over canonical JSON so identical inputs always hash identically. Bundles are
published to a content-addressed sink: IPFS when configured, otherwise an
in-memory store.
"""
import asyncio
import json
import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, Optional, Protocol

import aiohttp
from web3 import Web3

from ..errors import PublishFailure
from ..mev_detection.models import ChainTransaction, MEVPattern
from .models import EvidenceBundle

logger = logging.getLogger(__name__)


def canonical_json(payload: Any) -> str:
    """Serialize with sorted keys and no whitespace."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def content_hash(payload: Any) -> str:
    """Hex keccak256 of the canonical JSON form of ``payload``."""
    return Web3.to_hex(Web3.keccak(text=canonical_json(payload)))


def build_manifest(
    event_id: str,
    timestamp: float,
    transaction_count: int,
    violation_count: int,
    mev_pattern_count: int
) -> Dict[str, Any]:
    return {
        "eventId": event_id,
        "timestamp": timestamp,
        "transactionCount": transaction_count,
        "violationCount": violation_count,
        "mevPatternCount": mev_pattern_count,
    }


def build_raw_bundle(
    transactions: Iterable[ChainTransaction],
    patterns: Iterable[MEVPattern]
) -> Dict[str, Any]:
    return {
        "transactions": [tx.to_dict() for tx in transactions],
        "patterns": [pattern.to_dict() for pattern in patterns],
    }


class EvidenceSink(Protocol):
    """Content-addressed storage for evidence bundles."""

    async def publish(self, data: bytes) -> str:
        """Store ``data`` and return its content URI."""
        ...


class InMemoryEvidenceSink:
    """
    Keeps published bundles in memory under ``mem://<keccak>`` URIs.

    At most ``max_objects`` bundles are held; the least recently published
    is dropped first.
    """

    def __init__(self, max_objects: int = 1000):
        self.max_objects = max_objects
        self._objects: "OrderedDict[str, bytes]" = OrderedDict()

    async def publish(self, data: bytes) -> str:
        uri = f"mem://{Web3.to_hex(Web3.keccak(data))}"
        if uri in self._objects:
            self._objects.move_to_end(uri)
        else:
            self._objects[uri] = bytes(data)
        while len(self._objects) > self.max_objects:
            evicted, _ = self._objects.popitem(last=False)
            logger.debug(f"Evicted evidence {evicted}")
        return uri

    def get(self, uri: str) -> Optional[bytes]:
        return self._objects.get(uri)

    def __len__(self) -> int:
        return len(self._objects)


class IPFSEvidenceSink:
    """Publishes bundles through an IPFS HTTP API (``/api/v0/add``)."""

    def __init__(
        self,
        api_url: str,
        gateway_url: Optional[str] = None,
        project_id: Optional[str] = None,
        project_secret: Optional[str] = None,
        timeout: float = 30.0
    ):
        self.api_url = api_url.rstrip("/")
        self.gateway_url = gateway_url.rstrip("/") if gateway_url else None
        self.project_id = project_id
        self.project_secret = project_secret
        self.timeout = timeout

        self.session: Optional[aiohttp.ClientSession] = None

    async def initialize(self) -> None:
        """Open the HTTP session."""
        if self.session is not None:
            return

        auth = None
        if self.project_id and self.project_secret:
            auth = aiohttp.BasicAuth(self.project_id, self.project_secret)

        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            auth=auth,
            headers={"User-Agent": "crypto-fairness/0.1"}
        )
        logger.info(f"IPFS evidence sink initialized for {self.api_url}")

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    async def publish(self, data: bytes) -> str:
        if self.session is None:
            await self.initialize()

        form = aiohttp.FormData()
        form.add_field("file", data, filename="evidence.json", content_type="application/json")

        try:
            async with self.session.post(f"{self.api_url}/api/v0/add", data=form) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise PublishFailure(f"IPFS add failed: HTTP {response.status} - {error_text}")
                result = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PublishFailure(f"IPFS add failed: {e}") from e
        except ValueError as e:
            raise PublishFailure(f"IPFS add returned malformed JSON: {e}") from e

        cid = result.get("Hash") if isinstance(result, dict) else None
        if not cid:
            raise PublishFailure(f"IPFS add returned no content hash: {result}")
        return f"ipfs://{cid}"

    def gateway_link(self, uri: str) -> Optional[str]:
        """HTTP gateway URL for an ``ipfs://`` URI, when a gateway is configured."""
        if not self.gateway_url or not uri.startswith("ipfs://"):
            return None
        return f"{self.gateway_url}/ipfs/{uri[len('ipfs://'):]}"


async def publish_evidence(
    sink: EvidenceSink,
    manifest: Dict[str, Any],
    raw_bundle: Dict[str, Any]
) -> EvidenceBundle:
    """
    Hash and publish the manifest and raw bundle.

    The raw bundle is published first; the published manifest document carries
    both hashes plus the raw bundle's URI. Publish failures produce an
    unpublished bundle that still carries the hashes.
    """
    manifest_hash = content_hash(manifest)
    raw_data_hash = content_hash(raw_bundle)

    try:
        raw_uri = await sink.publish(canonical_json(raw_bundle).encode("utf-8"))
        manifest_document = {
            "manifest": manifest,
            "manifestHash": manifest_hash,
            "rawDataHash": raw_data_hash,
            "rawDataUri": raw_uri,
        }
        content_uri = await sink.publish(canonical_json(manifest_document).encode("utf-8"))
    except PublishFailure as e:
        logger.warning(f"⚠️ Evidence for {manifest.get('eventId')} not published: {e}")
        return EvidenceBundle(
            manifest_hash=manifest_hash,
            raw_data_hash=raw_data_hash,
            published=False,
            publish_error=str(e)
        )

    return EvidenceBundle(
        manifest_hash=manifest_hash,
        content_uri=content_uri,
        notebook_uri=raw_uri,
        raw_data_hash=raw_data_hash,
        published=True
    )
