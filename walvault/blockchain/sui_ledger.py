"""
Sui ledger client.

Reads the system epoch and blob objects over Sui JSON-RPC and hands storage
extension transactions to the signer capability for signing and execution.

Author: Walvault Team
License: MIT
"""

import base64
import itertools
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from ..errors import NetworkError, StorageError
from ..interfaces import Signer
from ..models import RenewalReceipt


OWNED_OBJECTS_PAGE = 50


def blob_id_from_u256(value: int) -> str:
    """Walrus blob id (url-safe base64, little-endian) of an on-chain u256."""
    return base64.urlsafe_b64encode(int(value).to_bytes(32, "little")).decode().rstrip("=")


def blob_id_matches(onchain: Any, blob_id: str) -> bool:
    """Compare an on-chain blob_id field (u256 decimal) with a Walrus blob id."""
    if onchain is None:
        return False
    text = str(onchain)
    if text == blob_id:
        return True
    return text.isdigit() and blob_id_from_u256(int(text)) == blob_id


class SuiLedgerClient:
    """
    LedgerClient over Sui JSON-RPC.

    Usage:
        >>> async with SuiLedgerClient("https://fullnode.testnet.sui.io:443", package_id) as ledger:
        ...     epoch = await ledger.get_system_epoch()
    """

    def __init__(
        self,
        rpc_url: str = "https://fullnode.testnet.sui.io:443",
        walrus_package_id: Optional[str] = None,
        system_object_id: Optional[str] = None,
        timeout: float = 15.0,
    ):
        """
        Initialize ledger client.

        Args:
            rpc_url: Sui full node JSON-RPC endpoint
            walrus_package_id: Walrus system package (needed for renewals)
            system_object_id: Walrus system object (needed for renewals)
            timeout: Request timeout in seconds
        """
        self.rpc_url = rpc_url
        self.walrus_package_id = walrus_package_id
        self.system_object_id = system_object_id
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)

    async def connect(self):
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
            logger.info("✅ Connected to Sui RPC at {}", self.rpc_url)

    async def disconnect(self):
        if self.session is not None:
            await self.session.close()
            self.session = None
            logger.info("Disconnected from Sui RPC")

    async def __aenter__(self) -> "SuiLedgerClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info):
        await self.disconnect()

    async def _call(self, method: str, params: List[Any]) -> Any:
        await self.connect()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            async with self.session.post(self.rpc_url, json=payload) as response:
                response.raise_for_status()
                body = await response.json()
        except aiohttp.ClientError as e:
            raise NetworkError(f"Sui RPC {method} failed: {e}", operation=method, cause=e) from e

        if "error" in body:
            raise NetworkError(
                f"Sui RPC {method} returned error: {body['error'].get('message')}",
                operation=method,
                rpc_error=body["error"],
            )
        return body.get("result")

    async def get_system_epoch(self) -> int:
        state = await self._call("suix_getLatestSuiSystemState", [])
        return int(state["epoch"])

    async def get_object_state(self, object_id: str) -> Dict[str, Any]:
        """
        Fetch a Move object's fields.

        Returns:
            Flattened fields with `storage` unwrapped and numeric strings as int
        """
        result = await self._call(
            "sui_getObject", [object_id, {"showContent": True, "showType": True}]
        )
        data = (result or {}).get("data")
        if not data:
            raise StorageError(f"Object {object_id} not found", operation="get_object_state")

        fields = dict(data.get("content", {}).get("fields", {}))
        storage = fields.get("storage")
        if isinstance(storage, dict) and "fields" in storage:
            fields["storage"] = storage["fields"]
        for key in ("registered_epoch", "certified_epoch", "size"):
            if fields.get(key) is not None:
                fields[key] = int(fields[key])
        if isinstance(fields.get("storage"), dict):
            for key in ("start_epoch", "end_epoch", "storage_size"):
                if fields["storage"].get(key) is not None:
                    fields["storage"][key] = int(fields["storage"][key])
        fields["object_type"] = data.get("type")
        return fields

    async def find_blob_object(self, blob_id: str, owner: Optional[str] = None) -> Optional[str]:
        """
        Look up the Blob object holding blob_id among the owner's objects.

        Args:
            blob_id: Walrus blob id (url-safe base64)
            owner: Sui address owning the Blob object

        Returns:
            Object id, or None if the owner holds no such Blob
        """
        if not owner:
            logger.debug("No owner address to search for blob {}", blob_id)
            return None

        query: Dict[str, Any] = {"options": {"showContent": True, "showType": True}}
        if self.walrus_package_id:
            query["filter"] = {"StructType": f"{self.walrus_package_id}::blob::Blob"}

        cursor = None
        while True:
            page = await self._call("suix_getOwnedObjects", [owner, query, cursor, OWNED_OBJECTS_PAGE])
            for item in (page or {}).get("data", []):
                data = item.get("data") or {}
                if not str(data.get("type", "")).endswith("::blob::Blob"):
                    continue
                fields = data.get("content", {}).get("fields", {})
                if blob_id_matches(fields.get("blob_id"), blob_id):
                    logger.info("Resolved blob {} to object {}", blob_id, data["objectId"])
                    return data["objectId"]
            if not (page or {}).get("hasNextPage"):
                break
            cursor = page.get("nextCursor")

        return None

    async def submit_storage_extension(
        self,
        blob_id: str,
        additional_epochs: int,
        signer: Signer,
    ) -> RenewalReceipt:
        """
        Extend a blob's storage lease.

        The transaction is built here and signed/executed by the signer; the
        new end epoch is read from the emitted events.
        """
        if not self.walrus_package_id or not self.system_object_id:
            raise StorageError(
                "Walrus package and system object ids are required for renewals",
                blob_id=blob_id,
                operation="extend_blob",
            )

        transaction = {
            "kind": "moveCall",
            "package": self.walrus_package_id,
            "module": "system",
            "function": "extend_blob",
            "arguments": {
                "system": self.system_object_id,
                "blob_id": blob_id,
                "extended_epochs": additional_epochs,
            },
            "sender": signer.address,
        }
        logger.info("Submitting storage extension for {} (+{} epochs)", blob_id, additional_epochs)
        result = await signer.sign_and_execute(transaction)

        status = result.get("effects", {}).get("status", {}).get("status", "success")
        if status != "success":
            raise NetworkError(
                f"Storage extension for {blob_id} failed on-chain: {result.get('effects', {}).get('status')}",
                operation="extend_blob",
                blob_id=blob_id,
            )

        for event in result.get("events", []):
            parsed = event.get("parsedJson", {})
            if parsed.get("end_epoch") is not None and str(parsed.get("blob_id", blob_id)) == blob_id:
                return RenewalReceipt(digest=result["digest"], new_expiration_epoch=int(parsed["end_epoch"]))

        raise NetworkError(
            f"Storage extension for {blob_id} executed but no end epoch was reported",
            operation="extend_blob",
            blob_id=blob_id,
            digest=result.get("digest"),
        )
