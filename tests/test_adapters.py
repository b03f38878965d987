"""
Tests for the Walrus HTTP backend and the Sui ledger client against a local
aiohttp fake of the publisher, aggregator and JSON-RPC endpoints.
"""

import pytest
from aiohttp import web
from aiohttp import test_utils

from walvault.backends import MockSigner, WalrusHttpClient
from walvault.blockchain import SuiLedgerClient, blob_id_from_u256
from walvault.core import BlobVerifier, ChecksumEngine, VerificationContext
from walvault.errors import NetworkError, StorageError
from walvault.models import BlobRecord
from walvault.storage import VaultManager

OBJECT_ID = "0xb10b"
OWNER = "0xowner"
BLOB_U256 = 0x5EED_F00D_CAFE
BLOB_ID = blob_id_from_u256(BLOB_U256)
PAYLOAD = b"stored on walrus"


class FakeWalrus:
    """Publisher, aggregator and Sui JSON-RPC in one aiohttp app."""

    def __init__(self):
        self.epoch = 12
        self.certified_epoch = 11
        self.end_epoch = 40
        self.already_certified = False
        self.uploads = []
        self.rpc_methods = []

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_put("/v1/blobs", self.put_blob)
        app.router.add_get("/v1/blobs/{blob_id}", self.get_blob)
        app.router.add_post("/rpc", self.rpc)
        return app

    async def put_blob(self, request):
        data = await request.read()
        self.uploads.append((dict(request.query), data))
        if self.already_certified:
            return web.json_response(
                {"alreadyCertified": {"blobId": BLOB_ID, "object": OBJECT_ID, "endEpoch": self.end_epoch}}
            )
        return web.json_response(
            {
                "newlyCreated": {
                    "blobObject": {
                        "id": OBJECT_ID,
                        "blobId": BLOB_ID,
                        "registeredEpoch": self.epoch,
                        "certifiedEpoch": None,
                        "size": len(data),
                        "storage": {"endEpoch": self.epoch + int(request.query["epochs"])},
                    }
                }
            }
        )

    async def get_blob(self, request):
        if request.match_info["blob_id"] != BLOB_ID:
            raise web.HTTPNotFound()
        return web.Response(body=PAYLOAD)

    def blob_object(self):
        return {
            "objectId": OBJECT_ID,
            "type": "0xwalrus::blob::Blob",
            "content": {
                "fields": {
                    "blob_id": str(BLOB_U256),
                    "registered_epoch": "10",
                    "certified_epoch": str(self.certified_epoch) if self.certified_epoch else None,
                    "size": str(len(PAYLOAD)),
                    "storage": {"fields": {"start_epoch": "10", "end_epoch": str(self.end_epoch)}},
                }
            },
        }

    async def rpc(self, request):
        body = await request.json()
        method, params = body["method"], body["params"]
        self.rpc_methods.append(method)
        if method == "suix_getLatestSuiSystemState":
            result = {"epoch": str(self.epoch)}
        elif method == "sui_getObject":
            if params[0] != OBJECT_ID:
                return web.json_response({"jsonrpc": "2.0", "id": body["id"], "result": {"error": "notExists"}})
            result = {"data": self.blob_object()}
        elif method == "suix_getOwnedObjects":
            # Two pages: an unrelated coin first, then the blob
            if params[0] != OWNER:
                result = {"data": [], "hasNextPage": False, "nextCursor": None}
            elif params[2] is None:
                coin = {"data": {"objectId": "0xc01n", "type": "0x2::coin::Coin<0x2::sui::SUI>", "content": {"fields": {}}}}
                result = {"data": [coin], "hasNextPage": True, "nextCursor": "page-2"}
            else:
                result = {"data": [{"data": self.blob_object()}], "hasNextPage": False, "nextCursor": None}
        else:
            return web.json_response(
                {"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601, "message": "Method not found"}}
            )
        return web.json_response({"jsonrpc": "2.0", "id": body["id"], "result": result})


class ExtendingSigner:
    """Signer returning an extension event."""

    address = "0xsigner"

    def __init__(self, end_epoch=70, status="success"):
        self.end_epoch = end_epoch
        self.status = status
        self.transactions = []

    async def sign_and_execute(self, transaction):
        self.transactions.append(transaction)
        return {
            "digest": "tx-digest",
            "effects": {"status": {"status": self.status}},
            "events": [{"parsedJson": {"blob_id": transaction["arguments"]["blob_id"], "end_epoch": str(self.end_epoch)}}],
        }


class TestWalrusAdapters:
    """Test WalrusHttpClient and SuiLedgerClient over HTTP."""

    def setup_method(self):
        self.fake = FakeWalrus()

    async def _start(self, **client_options):
        self.server = test_utils.TestServer(self.fake.app())
        await self.server.start_server()
        self.base_url = str(self.server.make_url("")).rstrip("/")
        self.ledger = SuiLedgerClient(f"{self.base_url}/rpc", "0xwalrus", "0xsystem", timeout=2.0)
        self.client = WalrusHttpClient(
            self.base_url, [self.base_url, "http://127.0.0.1:1"], self.ledger, timeout=2.0, **client_options
        )

    async def _stop(self):
        await self.client.close()
        await self.ledger.disconnect()
        await self.server.close()

    @pytest.mark.asyncio
    async def test_write_read_and_info(self):
        await self._start()
        try:
            result = await self.client.write_blob(PAYLOAD, None, {}, epochs=5)
            assert result.blob_id == BLOB_ID
            assert result.object_id == OBJECT_ID
            assert result.blob_info.end_epoch == 17
            assert self.fake.uploads[0][0]["epochs"] == "5"

            assert await self.client.read_blob(BLOB_ID) == PAYLOAD

            info = await self.client.get_blob_info(BLOB_ID)
            assert info.registered_epoch == 10
            assert info.certified_epoch == 11
            assert info.end_epoch == 40
        finally:
            await self._stop()

    @pytest.mark.asyncio
    async def test_providers_and_poa(self):
        await self._start()
        try:
            self.client.register_object(BLOB_ID, OBJECT_ID)

            providers = await self.client.get_storage_providers(BLOB_ID)
            assert providers == [self.base_url]
            assert await self.client.verify_proof_of_availability(BLOB_ID) is True

            self.fake.end_epoch = 12
            assert await self.client.verify_proof_of_availability(BLOB_ID) is False
        finally:
            await self._stop()

    @pytest.mark.asyncio
    async def test_unreadable_blob(self):
        await self._start()
        try:
            with pytest.raises(NetworkError):
                await self.client.read_blob("missing-blob")
            with pytest.raises(StorageError):
                await self.client.get_blob_info("missing-blob")
        finally:
            await self._stop()

    @pytest.mark.asyncio
    async def test_ledger_epoch_and_rpc_errors(self):
        await self._start()
        try:
            assert await self.ledger.get_system_epoch() == 12
            with pytest.raises(NetworkError):
                await self.ledger._call("sui_unknownMethod", [])
        finally:
            await self._stop()

    @pytest.mark.asyncio
    async def test_storage_extension(self):
        await self._start()
        try:
            signer = ExtendingSigner(end_epoch=70)
            receipt = await self.ledger.submit_storage_extension(BLOB_ID, 30, signer)

            assert receipt.new_expiration_epoch == 70
            assert receipt.digest == "tx-digest"
            assert signer.transactions[0]["arguments"]["extended_epochs"] == 30

            with pytest.raises(NetworkError):
                await self.ledger.submit_storage_extension(BLOB_ID, 30, ExtendingSigner(status="failure"))
        finally:
            await self._stop()

    def test_blob_id_from_u256(self):
        assert blob_id_from_u256(0) == "A" * 43
        assert len(BLOB_ID) == 43
        assert "=" not in BLOB_ID

    @pytest.mark.asyncio
    async def test_unknown_blob_resolved_through_owned_objects(self):
        await self._start(owner=OWNER)
        try:
            info = await self.client.get_blob_info(BLOB_ID)
            assert info.object_id == OBJECT_ID
            assert info.certified_epoch == 11
            assert self.fake.rpc_methods.count("suix_getOwnedObjects") == 2

            # Resolved once, remembered afterwards
            await self.client.get_blob_info(BLOB_ID)
            assert self.fake.rpc_methods.count("suix_getOwnedObjects") == 2
        finally:
            await self._stop()

    @pytest.mark.asyncio
    async def test_verify_blob_written_by_another_process(self):
        await self._start(owner=OWNER)
        try:
            verifier = BlobVerifier(VerificationContext(storage=self.client, ledger=self.ledger))
            result = await verifier.verify_blob(BLOB_ID, PAYLOAD)

            assert result.success is True
            assert result.details.certified is True
            assert result.poa_complete is True
            assert result.providers == 1
        finally:
            await self._stop()

    @pytest.mark.asyncio
    async def test_object_id_from_tracking_store(self):
        vault = VaultManager()
        vault.save_blob_record(
            BlobRecord(
                blob_id=BLOB_ID,
                size=len(PAYLOAD),
                checksums=ChecksumEngine().compute(PAYLOAD),
                registered_epoch=10,
                expiration_epoch=40,
                certified_epoch=11,
                object_id=OBJECT_ID,
            )
        )
        await self._start(tracking_store=vault)
        try:
            info = await self.client.get_blob_info(BLOB_ID)
            assert info.object_id == OBJECT_ID
            assert "suix_getOwnedObjects" not in self.fake.rpc_methods
        finally:
            await self._stop()

    @pytest.mark.asyncio
    async def test_already_certified_upload_registers_object(self):
        self.fake.already_certified = True
        await self._start()
        try:
            signer = MockSigner()
            result = await self.client.write_blob(PAYLOAD, signer, {}, epochs=5)
            assert result.blob_info is None
            assert result.object_id == OBJECT_ID
            assert self.fake.uploads[0][0]["send_object_to"] == signer.address

            info = await self.client.get_blob_info(BLOB_ID)
            assert info.end_epoch == 40
            assert "suix_getOwnedObjects" not in self.fake.rpc_methods
        finally:
            await self._stop()

    @pytest.mark.asyncio
    async def test_owner_without_blob_is_storage_error(self):
        await self._start(owner="0xstranger")
        try:
            with pytest.raises(StorageError):
                await self.client.get_blob_info(BLOB_ID)
            assert self.fake.rpc_methods == ["suix_getOwnedObjects"]
        finally:
            await self._stop()
