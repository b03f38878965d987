"""
Walvault API Server

Thin FastAPI service layer over the verification and lifecycle engine.

Endpoints:
- POST /api/v1/upload - Upload a blob and verify it
- POST /api/v1/verify/{blob_id} - Verify a stored blob against expected content
- POST /api/v1/monitor/{blob_id} - Watch a blob until it is available
- GET /api/v1/expiry/{blob_id} - Tracked lease and expiry state
- POST /api/v1/renew/{blob_id} - Renew a tracked blob now
- GET /health - Health check

Author: Walvault Team
License: MIT
"""

import base64
import binascii
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from walvault.backends import InMemoryWalrusNetwork, MockSigner, WalrusHttpClient
from walvault.blockchain import SuiLedgerClient
from walvault.config import MonitorOptions, UploadOptions, VerificationOptions, WalvaultSettings
from walvault.core import AvailabilityMonitor, BlobVerifier, UploadVerifier, VerificationContext
from walvault.errors import (
    AttributeMismatch,
    AvailabilityCheckFailed,
    AvailabilityMonitoringFailed,
    CertificationRequired,
    CertificationTimeout,
    ContentMismatch,
    MonitoringInProgress,
    NetworkError,
    RenewalTransactionFailed,
    StorageError,
    ValidationError,
    WalvaultError,
)
from walvault.interfaces import Signer
from walvault.models import BlobRecord, ChecksumSet
from walvault.storage import ExpiryMonitor, VaultManager


# =============================================================================
# API Models
# =============================================================================

class UploadRequest(BaseModel):
    """Blob upload with post-write verification."""

    content_b64: str = Field(..., description="Base64-encoded payload")
    options: UploadOptions = Field(default_factory=UploadOptions)


class VerifyRequest(BaseModel):
    """Verification of a stored blob."""

    content_b64: str = Field(..., description="Base64-encoded expected payload")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Expected attributes")
    options: VerificationOptions = Field(default_factory=VerificationOptions)


class MonitorRequest(BaseModel):
    """Availability monitoring of a stored blob."""

    checksums: Dict[str, str] = Field(..., description="sha256, sha512 and blake2b hex digests")
    options: MonitorOptions = Field(default_factory=MonitorOptions)


class MonitorResponse(BaseModel):
    blob_id: str
    available: bool
    attempts: int


class ExpiryResponse(BaseModel):
    blob_id: str
    expiration_epoch: int
    current_epoch: int
    days_to_expiry: float
    state: str


ERROR_STATUS = {
    ContentMismatch: status.HTTP_409_CONFLICT,
    AttributeMismatch: status.HTTP_409_CONFLICT,
    CertificationRequired: status.HTTP_409_CONFLICT,
    CertificationTimeout: status.HTTP_504_GATEWAY_TIMEOUT,
    AvailabilityCheckFailed: status.HTTP_503_SERVICE_UNAVAILABLE,
    AvailabilityMonitoringFailed: status.HTTP_503_SERVICE_UNAVAILABLE,
    MonitoringInProgress: status.HTTP_409_CONFLICT,
    NetworkError: status.HTTP_503_SERVICE_UNAVAILABLE,
    RenewalTransactionFailed: status.HTTP_502_BAD_GATEWAY,
    StorageError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_400_BAD_REQUEST,
}


def _decode(content_b64: str) -> bytes:
    try:
        return base64.b64decode(content_b64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="content_b64 is not valid base64")


# =============================================================================
# Application State
# =============================================================================

class AppState:
    """Application state container."""

    def __init__(self, context: VerificationContext, settings: Optional[WalvaultSettings] = None):
        self.settings = settings or WalvaultSettings()
        self.context = context
        self.verifier = BlobVerifier(context)
        self.uploader = UploadVerifier(context, verifier=self.verifier)
        self.monitor = AvailabilityMonitor(context)
        self.expiry_monitor: Optional[ExpiryMonitor] = None
        self.warnings: List[str] = []

        if context.tracking_store is not None and context.ledger is not None:
            self.expiry_monitor = ExpiryMonitor.from_context(
                context, self._on_warning, self._on_renewal, self.settings.expiry
            )

    @classmethod
    def from_settings(cls, settings: WalvaultSettings, signer: Optional[Signer] = None) -> "AppState":
        """
        Wire collaborators for mock mode or for Walrus/Sui.

        Args:
            settings: Process settings
            signer: Transaction signer for writes and renewals
                (default: settings.expiry.signer; MockSigner in mock mode)
        """
        signer = signer or settings.expiry.signer
        if settings.mock_mode:
            vault = VaultManager()
            network = InMemoryWalrusNetwork()
            context = VerificationContext(
                storage=network, ledger=network, tracking_store=vault, signer=signer or MockSigner()
            )
            logger.info("📦 Walvault running in MOCK mode (in-memory network)")
        else:
            vault = VaultManager(settings.vault_path)
            ledger = SuiLedgerClient(
                settings.sui_rpc_url,
                settings.walrus_package_id,
                settings.walrus_system_object_id,
                settings.request_timeout,
            )
            storage = WalrusHttpClient(
                settings.publisher_url,
                settings.aggregator_urls,
                ledger,
                settings.request_timeout,
                owner=settings.owner_address or (signer.address if signer is not None else None),
                tracking_store=vault,
            )
            context = VerificationContext(storage=storage, ledger=ledger, tracking_store=vault, signer=signer)
            logger.info("✅ Walvault connected to {} / {}", settings.publisher_url, settings.sui_rpc_url)
            if signer is None:
                logger.warning("⚠️ No signer configured: uploads are unsigned and auto-renewal is disabled")
        return cls(context, settings)

    @property
    def renewal_enabled(self) -> bool:
        return self.expiry_monitor is not None and self.expiry_monitor.config.signer is not None

    async def _on_warning(self, records: List[BlobRecord]):
        for record in records:
            message = f"Blob {record.blob_id} expires at epoch {record.expiration_epoch}"
            self.warnings.append(message)
            logger.warning("⚠️ {}", message)

    async def _on_renewal(self, records: List[BlobRecord]):
        for record in records:
            logger.info("🔄 Renewed {} until epoch {}", record.blob_id, record.expiration_epoch)

    async def startup(self):
        if self.expiry_monitor is not None and self.settings.start_expiry_monitor:
            self.expiry_monitor.start()

    async def shutdown(self):
        if self.expiry_monitor is not None:
            await self.expiry_monitor.stop()
        for client in (self.context.storage, self.context.ledger):
            close = getattr(client, "close", None) or getattr(client, "disconnect", None)
            if close is not None:
                await close()
        logger.info("✅ Walvault API server shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

def create_app(state: Optional[AppState] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        state: Pre-built state (default: built from WALVAULT_* environment)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.walvault = state or AppState.from_settings(WalvaultSettings.from_env())
        await app.state.walvault.startup()
        yield
        await app.state.walvault.shutdown()

    app = FastAPI(
        title="Walvault API",
        description="Blob verification and storage lifecycle for Walrus",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.exception_handler(WalvaultError)
    async def walvault_error_handler(request: Request, exc: WalvaultError):
        code = next(
            (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        logger.warning("{} {} -> {} {}", request.method, request.url.path, code, exc.code)
        return JSONResponse(status_code=code, content=exc.to_dict())

    @app.get("/health")
    async def health(request: Request):
        walvault: AppState = request.app.state.walvault
        monitor = walvault.expiry_monitor
        return {
            "status": "healthy",
            "mock_mode": walvault.settings.mock_mode,
            "expiry_monitor": bool(monitor and monitor.is_running),
            "auto_renewal": walvault.renewal_enabled,
        }

    @app.post("/api/v1/upload")
    async def upload(body: UploadRequest, request: Request):
        walvault: AppState = request.app.state.walvault
        result = await walvault.uploader.verify_upload(_decode(body.content_b64), body.options)
        return result.to_dict()

    @app.post("/api/v1/verify/{blob_id}")
    async def verify(blob_id: str, body: VerifyRequest, request: Request):
        walvault: AppState = request.app.state.walvault
        result = await walvault.verifier.verify_blob(
            blob_id, _decode(body.content_b64), body.attributes, body.options
        )
        return result.to_dict()

    @app.post("/api/v1/monitor/{blob_id}", response_model=MonitorResponse)
    async def monitor(blob_id: str, body: MonitorRequest, request: Request):
        walvault: AppState = request.app.state.walvault
        try:
            checksums = ChecksumSet.from_dict(body.checksums)
        except KeyError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"missing checksum {e}")
        attempts = await walvault.monitor.monitor_blob_availability(blob_id, checksums, body.options)
        return MonitorResponse(blob_id=blob_id, available=True, attempts=attempts)

    @app.get("/api/v1/expiry/{blob_id}", response_model=ExpiryResponse)
    async def expiry(blob_id: str, request: Request):
        walvault: AppState = request.app.state.walvault
        monitor = walvault.expiry_monitor
        if monitor is None:
            raise HTTPException(status_code=status.HTTP_501_NOT_IMPLEMENTED, detail="No tracking store configured")
        record = monitor.vault.get_blob_record(blob_id)
        if record is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Blob {blob_id} is not tracked")
        current_epoch = await monitor.ledger.get_system_epoch()
        days = monitor.days_to_expiry(record, current_epoch)
        return ExpiryResponse(
            blob_id=blob_id,
            expiration_epoch=record.expiration_epoch,
            current_epoch=current_epoch,
            days_to_expiry=days,
            state=monitor.classify(days).value,
        )

    @app.post("/api/v1/renew/{blob_id}")
    async def renew(blob_id: str, request: Request):
        walvault: AppState = request.app.state.walvault
        if walvault.expiry_monitor is None:
            raise HTTPException(status_code=status.HTTP_501_NOT_IMPLEMENTED, detail="No tracking store configured")
        record = await walvault.expiry_monitor.renew_blob_by_id(blob_id)
        return record.to_dict()

    return app


def main(signer: Optional[Signer] = None):
    """
    Run the API server.

    Args:
        signer: Transaction signer for uploads and renewals
    """
    settings = WalvaultSettings.from_env()
    logger.info("🚀 Starting Walvault API on {}:{}", settings.host, settings.port)
    uvicorn.run(create_app(AppState.from_settings(settings, signer)), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
