"""
Collaborator interfaces consumed by the walvault core.

These are capability contracts: the ledger client, the blob-storage client,
the local tracking store and the signer. Concrete adapters live in
`walvault.backends`, `walvault.blockchain` and `walvault.storage`.
"""

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from .models import BlobInfo, BlobRecord, RenewalReceipt, WriteResult


@runtime_checkable
class Signer(Protocol):
    """Opaque capability to authorize a transaction."""

    @property
    def address(self) -> str:
        ...

    async def sign_and_execute(self, transaction: Dict[str, Any]) -> Dict[str, Any]:
        ...


@runtime_checkable
class LedgerClient(Protocol):

    async def get_system_epoch(self) -> int:
        ...

    async def get_object_state(self, object_id: str) -> Dict[str, Any]:
        ...

    async def find_blob_object(self, blob_id: str, owner: Optional[str] = None) -> Optional[str]:
        """Object id of the Blob object holding blob_id, or None if none is found."""
        ...

    async def submit_storage_extension(
        self,
        blob_id: str,
        additional_epochs: int,
        signer: Signer,
    ) -> RenewalReceipt:
        ...


@runtime_checkable
class StorageClient(Protocol):

    async def write_blob(
        self,
        data: bytes,
        signer: Optional[Signer],
        attributes: Dict[str, str],
        epochs: int,
    ) -> WriteResult:
        ...

    async def read_blob(self, blob_id: str) -> bytes:
        ...

    async def get_blob_info(self, blob_id: str) -> BlobInfo:
        ...

    async def get_blob_metadata(self, blob_id: str) -> Dict[str, str]:
        ...

    async def get_storage_providers(self, blob_id: str) -> List[str]:
        ...

    async def verify_proof_of_availability(self, blob_id: str) -> bool:
        ...


@runtime_checkable
class TrackingStore(Protocol):
    """Local ledger of tracked blobs (the vault)."""

    def get_expiring_blobs(
        self,
        within_days: float,
        current_epoch: int,
        epoch_duration_days: float = 1.0,
    ) -> List[BlobRecord]:
        ...

    def update_blob_expiry(self, blob_id: str, new_epoch: int) -> None:
        ...

    def get_blob_record(self, blob_id: str) -> Optional[BlobRecord]:
        ...

    def save_blob_record(self, record: BlobRecord) -> None:
        ...

    def remove_blob_record(self, blob_id: str) -> bool:
        ...
