"""
In-memory storage network (mock mode).

Simulates both the blob-storage network and the ledger so the verification
and lifecycle engine can run without Walrus or Sui: development servers, demos
and tests. Certification, provider sets, PoA, read failures, replication lag
and renewal failures are all controllable.
"""

import asyncio
import base64
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import NetworkError, StorageError
from ..models import BlobInfo, RenewalReceipt, WriteResult

logger = logging.getLogger(__name__)


def compute_blob_id(data: bytes) -> str:
    """Content-addressed blob id (url-safe base64 of a 32-byte digest)."""
    digest = hashlib.blake2b(data, digest_size=32).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


class MockSigner:
    """Signer stand-in that "executes" transactions locally."""

    def __init__(self, address: str = "0xmock"):
        self._address = address
        self.executed: List[Dict[str, Any]] = []

    @property
    def address(self) -> str:
        return self._address

    async def sign_and_execute(self, transaction: Dict[str, Any]) -> Dict[str, Any]:
        self.executed.append(transaction)
        digest = hashlib.sha256(repr((self._address, len(self.executed), transaction)).encode()).hexdigest()
        return {"digest": digest, "effects": {"status": {"status": "success"}}}


@dataclass
class _StoredBlob:
    data: bytes
    info: BlobInfo
    attributes: Dict[str, str]
    providers: List[str]
    poa: bool = True
    polls_until_certified: Optional[int] = None
    pending_certified_epoch: Optional[int] = None
    lagging_reads: int = 0
    served: Optional[bytes] = None


@dataclass
class InMemoryWalrusNetwork:
    """
    Storage client and ledger client over in-process state.

    Args:
        epoch: Current system epoch
        auto_certify: Certify blobs at write time
        providers: Provider ids assigned to new blobs
        latency: Seconds every call sleeps before answering
    """
    epoch: int = 1
    auto_certify: bool = True
    providers: List[str] = field(default_factory=lambda: ["storage-node-1", "storage-node-2"])
    latency: float = 0.0

    blobs: Dict[str, _StoredBlob] = field(default_factory=dict)
    renewal_calls: List[Dict[str, Any]] = field(default_factory=list)
    read_calls: int = 0
    info_calls: int = 0
    failing_reads: int = 0
    failing_renewals: int = 0
    failing_info: int = 0

    async def _io(self):
        if self.latency:
            await asyncio.sleep(self.latency)

    def _get(self, blob_id: str) -> _StoredBlob:
        stored = self.blobs.get(blob_id)
        if stored is None:
            raise StorageError(f"Blob {blob_id} not found", blob_id=blob_id, operation="read")
        return stored

    # -- test and demo controls --------------------------------------------

    def advance_epoch(self, epochs: int = 1) -> int:
        self.epoch += epochs
        return self.epoch

    def put_blob(
        self,
        data: bytes,
        attributes: Optional[Dict[str, str]] = None,
        certified_epoch: Optional[int] = None,
        registered_epoch: Optional[int] = None,
        end_epoch: Optional[int] = None,
        providers: Optional[List[str]] = None,
        poa: bool = True,
    ) -> str:
        """Place a blob directly, bypassing write_blob."""
        blob_id = compute_blob_id(data)
        registered = registered_epoch if registered_epoch is not None else self.epoch
        self.blobs[blob_id] = _StoredBlob(
            data=data,
            info=BlobInfo(
                blob_id=blob_id,
                registered_epoch=registered,
                size=len(data),
                certified_epoch=certified_epoch,
                end_epoch=end_epoch if end_epoch is not None else registered + 52,
                object_id=f"0x{hashlib.sha256(blob_id.encode()).hexdigest()}",
            ),
            attributes=dict(attributes or {}),
            providers=list(self.providers if providers is None else providers),
            poa=poa,
        )
        return blob_id

    def certify(self, blob_id: str, epoch: Optional[int] = None):
        self._get(blob_id).info.certified_epoch = epoch if epoch is not None else self.epoch

    def certify_after_polls(self, blob_id: str, polls: int, epoch: Optional[int] = None):
        """Report the blob certified starting with the `polls`-th get_blob_info call."""
        stored = self._get(blob_id)
        stored.info.certified_epoch = None
        stored.polls_until_certified = polls
        stored.pending_certified_epoch = epoch

    def corrupt(self, blob_id: str, data: bytes):
        """Serve different bytes for a blob from now on."""
        self._get(blob_id).served = data

    def lag(self, blob_id: str, reads: int):
        """The next `reads` reads of the blob fail as if not yet replicated."""
        self._get(blob_id).lagging_reads = reads

    def set_providers(self, blob_id: str, providers: List[str]):
        self._get(blob_id).providers = list(providers)

    def set_poa(self, blob_id: str, poa: bool):
        self._get(blob_id).poa = poa

    # -- StorageClient ------------------------------------------------------

    async def write_blob(self, data: bytes, signer, attributes: Dict[str, str], epochs: int) -> WriteResult:
        await self._io()
        blob_id = self.put_blob(
            data,
            attributes=attributes,
            certified_epoch=self.epoch if self.auto_certify else None,
            end_epoch=self.epoch + epochs,
        )
        logger.debug(f"[MOCK] Stored blob {blob_id} ({len(data)} bytes, {epochs} epochs)")
        info = self.blobs[blob_id].info
        return WriteResult(blob_id=blob_id, blob_info=info, object_id=info.object_id)

    async def read_blob(self, blob_id: str) -> bytes:
        await self._io()
        self.read_calls += 1
        if self.failing_reads > 0:
            self.failing_reads -= 1
            raise NetworkError(f"Simulated read failure for {blob_id}", operation="read_blob")
        stored = self._get(blob_id)
        if stored.lagging_reads > 0:
            stored.lagging_reads -= 1
            raise NetworkError(f"Blob {blob_id} not yet available", operation="read_blob")
        return stored.served if stored.served is not None else stored.data

    async def get_blob_info(self, blob_id: str) -> BlobInfo:
        await self._io()
        self.info_calls += 1
        if self.failing_info > 0:
            self.failing_info -= 1
            raise NetworkError(f"Simulated info failure for {blob_id}", operation="get_blob_info")
        stored = self._get(blob_id)
        if stored.polls_until_certified is not None:
            stored.polls_until_certified -= 1
            if stored.polls_until_certified <= 0:
                stored.polls_until_certified = None
                epoch = stored.pending_certified_epoch
                stored.info.certified_epoch = epoch if epoch is not None else self.epoch
        info = stored.info
        return BlobInfo(
            blob_id=info.blob_id,
            registered_epoch=info.registered_epoch,
            size=info.size,
            certified_epoch=info.certified_epoch,
            end_epoch=info.end_epoch,
            object_id=info.object_id,
            metadata=dict(stored.attributes),
        )

    async def get_blob_metadata(self, blob_id: str) -> Dict[str, str]:
        await self._io()
        return dict(self._get(blob_id).attributes)

    async def get_storage_providers(self, blob_id: str) -> List[str]:
        await self._io()
        return list(self._get(blob_id).providers)

    async def verify_proof_of_availability(self, blob_id: str) -> bool:
        await self._io()
        stored = self._get(blob_id)
        return stored.poa and stored.info.certified

    # -- LedgerClient -------------------------------------------------------

    async def get_system_epoch(self) -> int:
        await self._io()
        return self.epoch

    async def get_object_state(self, object_id: str) -> Dict[str, Any]:
        await self._io()
        for stored in self.blobs.values():
            if stored.info.object_id == object_id:
                return {
                    "blob_id": stored.info.blob_id,
                    "registered_epoch": stored.info.registered_epoch,
                    "certified_epoch": stored.info.certified_epoch,
                    "storage": {"end_epoch": stored.info.end_epoch},
                }
        raise StorageError(f"Object {object_id} not found", operation="get_object_state")

    async def find_blob_object(self, blob_id: str, owner: Optional[str] = None) -> Optional[str]:
        await self._io()
        stored = self.blobs.get(blob_id)
        return stored.info.object_id if stored is not None else None

    async def submit_storage_extension(self, blob_id: str, additional_epochs: int, signer) -> RenewalReceipt:
        await self._io()
        self.renewal_calls.append({"blob_id": blob_id, "epochs": additional_epochs})
        if self.failing_renewals > 0:
            self.failing_renewals -= 1
            raise NetworkError(f"Simulated renewal failure for {blob_id}", operation="extend_blob")

        stored = self._get(blob_id)
        effects = await signer.sign_and_execute(
            {"function": "extend_blob", "blob_id": blob_id, "epochs": additional_epochs}
        )
        stored.info.end_epoch = (stored.info.end_epoch or self.epoch) + additional_epochs
        return RenewalReceipt(digest=effects["digest"], new_expiration_epoch=stored.info.end_epoch)
