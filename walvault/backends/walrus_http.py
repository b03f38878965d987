"""
Walrus HTTP storage backend.

Writes through a Walrus publisher and reads through one or more aggregators.
Blob objects (registration, certification, lease end) are read from the ledger.
Every aggregator that currently serves a blob counts as one responding
provider.
"""

import asyncio
import logging
from typing import Dict, List, Optional

import aiohttp

from ..errors import NetworkError, StorageError
from ..interfaces import LedgerClient, Signer, TrackingStore
from ..models import BlobInfo, WriteResult

logger = logging.getLogger(__name__)


class WalrusHttpClient:
    """
    StorageClient over the Walrus publisher/aggregator HTTP API.

    Blob ids are mapped to their Sui object ids: from this client's own writes,
    then from the tracking store, then by searching the owner's Blob objects
    on the ledger.
    """

    def __init__(
        self,
        publisher_url: str,
        aggregator_urls: List[str],
        ledger: LedgerClient,
        timeout: float = 15.0,
        owner: Optional[str] = None,
        tracking_store: Optional[TrackingStore] = None,
    ):
        """
        Initialize Walrus backend.

        Args:
            publisher_url: Publisher base URL (writes)
            aggregator_urls: Aggregator base URLs (reads, provider quorum)
            ledger: Ledger client used for blob objects and the current epoch
            timeout: Request timeout in seconds
            owner: Sui address owning the Blob objects (default: the write signer)
            tracking_store: Tracking store with persisted object ids
        """
        if not aggregator_urls:
            raise ValueError("At least one aggregator URL is required")
        self.publisher_url = publisher_url.rstrip("/")
        self.aggregator_urls = [url.rstrip("/") for url in aggregator_urls]
        self.ledger = ledger
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None
        self.object_ids: Dict[str, str] = {}
        self.owner = owner
        self.tracking_store = tracking_store

        logger.info(
            f"Initialized Walrus backend (publisher: {self.publisher_url}, "
            f"{len(self.aggregator_urls)} aggregators)"
        )

    async def _session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self.session

    async def close(self):
        if self.session is not None:
            await self.session.close()
            self.session = None

    def register_object(self, blob_id: str, object_id: str):
        self.object_ids[blob_id] = object_id

    async def _object_id(self, blob_id: str) -> str:
        object_id = self.object_ids.get(blob_id)
        if object_id is None and self.tracking_store is not None:
            record = self.tracking_store.get_blob_record(blob_id)
            object_id = record.object_id if record is not None else None
        if object_id is None:
            object_id = await self.ledger.find_blob_object(blob_id, self.owner)
        if object_id is None:
            raise StorageError(
                f"No blob object known for {blob_id}",
                blob_id=blob_id,
                operation="get_blob_info",
            )
        self.register_object(blob_id, object_id)
        return object_id

    async def write_blob(
        self,
        data: bytes,
        signer: Optional[Signer],
        attributes: Dict[str, str],
        epochs: int,
    ) -> WriteResult:
        session = await self._session()
        url = f"{self.publisher_url}/v1/blobs"
        params = {"epochs": str(epochs)}
        if signer is not None:
            params["send_object_to"] = signer.address
            self.owner = self.owner or signer.address

        try:
            async with session.put(url, params=params, data=data) as response:
                response.raise_for_status()
                body = await response.json()
        except aiohttp.ClientError as e:
            raise NetworkError(f"Walrus upload failed: {e}", operation="write_blob", cause=e) from e

        if "newlyCreated" in body:
            blob_object = body["newlyCreated"]["blobObject"]
            blob_id = blob_object["blobId"]
            info = BlobInfo(
                blob_id=blob_id,
                registered_epoch=int(blob_object["registeredEpoch"]),
                size=int(blob_object["size"]),
                certified_epoch=blob_object.get("certifiedEpoch"),
                end_epoch=blob_object.get("storage", {}).get("endEpoch"),
                object_id=blob_object["id"],
            )
            self.register_object(blob_id, blob_object["id"])
        elif "alreadyCertified" in body:
            certified = body["alreadyCertified"]
            blob_id = certified["blobId"]
            info = None
            if certified.get("object"):
                self.register_object(blob_id, certified["object"])
            logger.info(f"Blob {blob_id} already certified until epoch {certified.get('endEpoch')}")
        else:
            raise NetworkError(f"Unexpected publisher response: {list(body)}", operation="write_blob")

        if attributes and signer is not None and blob_id in self.object_ids:
            await signer.sign_and_execute(
                {
                    "kind": "moveCall",
                    "module": "blob",
                    "function": "add_or_replace_metadata",
                    "arguments": {"blob": self.object_ids[blob_id], "metadata": dict(attributes)},
                    "sender": signer.address,
                }
            )

        logger.info(f"Stored {len(data)} bytes on Walrus as {blob_id}")
        return WriteResult(blob_id=blob_id, blob_info=info, object_id=self.object_ids.get(blob_id))

    async def _read_from(self, aggregator: str, blob_id: str) -> bytes:
        session = await self._session()
        async with session.get(f"{aggregator}/v1/blobs/{blob_id}") as response:
            response.raise_for_status()
            return await response.read()

    async def read_blob(self, blob_id: str) -> bytes:
        """Read from the first aggregator that serves the blob."""
        last_error: Optional[Exception] = None
        for aggregator in self.aggregator_urls:
            try:
                return await self._read_from(aggregator, blob_id)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                logger.debug(f"Aggregator {aggregator} could not serve {blob_id}: {e}")
        raise NetworkError(
            f"No aggregator could serve blob {blob_id}: {last_error}",
            operation="read_blob",
            cause=last_error,
            blob_id=blob_id,
        )

    async def get_blob_info(self, blob_id: str) -> BlobInfo:
        object_id = await self._object_id(blob_id)
        state = await self.ledger.get_object_state(object_id)
        storage = state.get("storage") or {}
        return BlobInfo(
            blob_id=blob_id,
            registered_epoch=int(state["registered_epoch"]),
            size=int(state.get("size", 0)),
            certified_epoch=state.get("certified_epoch"),
            end_epoch=storage.get("end_epoch"),
            object_id=object_id,
            metadata=dict(state.get("metadata") or {}),
        )

    async def get_blob_metadata(self, blob_id: str) -> Dict[str, str]:
        info = await self.get_blob_info(blob_id)
        return {key: str(value) for key, value in info.metadata.items()}

    async def _serves(self, aggregator: str, blob_id: str) -> bool:
        session = await self._session()
        try:
            async with session.head(f"{aggregator}/v1/blobs/{blob_id}") as response:
                return response.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Aggregator {aggregator} did not answer for {blob_id}: {e}")
            return False

    async def get_storage_providers(self, blob_id: str) -> List[str]:
        serving = await asyncio.gather(*(self._serves(url, blob_id) for url in self.aggregator_urls))
        return [url for url, ok in zip(self.aggregator_urls, serving) if ok]

    async def verify_proof_of_availability(self, blob_id: str) -> bool:
        """Certified and still inside its storage lease."""
        info = await self.get_blob_info(blob_id)
        if not info.certified:
            return False
        epoch = await self.ledger.get_system_epoch()
        return info.end_epoch is None or info.end_epoch > epoch
