"""
Walvault configuration.

Settings models are pydantic `BaseModel`s. Process-level settings are read from
`WALVAULT_*` environment variables through `WalvaultSettings.from_env()`.
"""

import os
from pathlib import Path
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class VerificationOptions(BaseModel):
    """Options for a single blob verification pass."""

    require_certification: bool = Field(default=True, description="Fail when the blob is not certified")
    verify_attributes: bool = Field(default=True, description="Compare expected attributes with stored ones")
    strict_attributes: bool = Field(
        default=False,
        description="Treat stored attributes that were not expected as mismatches",
    )
    require_poa: bool = Field(
        default=False,
        description="Fail when proof of availability or provider quorum is not met",
    )
    min_providers: int = Field(default=1, ge=0, description="Provider quorum size")
    max_retries: int = Field(default=3, ge=1, description="Read attempts before giving up")
    base_delay: float = Field(default=1.0, ge=0, description="Initial backoff between reads (seconds)")
    timeout: float = Field(default=15.0, gt=0, description="Timeout per read (seconds)")
    raise_on_failure: bool = Field(
        default=True,
        description="Raise typed errors; when False, return a failed result carrying the error",
    )


class UploadOptions(BaseModel):
    """Options for a verified upload."""

    attributes: dict = Field(default_factory=dict, description="Attributes stored with the blob")
    epochs: int = Field(default=52, ge=1, description="Storage lease length in epochs")
    wait_for_certification: bool = Field(default=False, description="Block until certified")
    wait_timeout: float = Field(default=30.0, gt=0, description="Certification wait (seconds)")
    min_providers: int = Field(default=1, ge=0, description="Provider quorum size")
    verify_content: bool = Field(default=True, description="Read back and checksum after the write")


class MonitorOptions(BaseModel):
    """Retry budget for availability monitoring."""

    interval: float = Field(default=5.0, ge=0, description="Wait between attempts (seconds)")
    max_attempts: int = Field(default=12, ge=1, description="Total attempts")
    timeout: Optional[float] = Field(default=None, gt=0, description="Overall time budget (seconds)")
    require_certification: bool = Field(default=False, description="Also require certification")


class NetworkSettings(BaseModel):
    environment: str = Field(default="testnet", description="Network environment name")
    auto_switch: bool = Field(default=False, description="Allow switching environments")


class ExpiryMonitorConfig(BaseModel):
    """
    Expiry monitor configuration.

    Thresholds are in days; `renewal_period` is in epochs. `signer` is only
    handed to the ledger when a renewal transaction is submitted.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    check_interval: float = Field(default=24 * 60 * 60, gt=0, description="Scan period (seconds)")
    warning_threshold: float = Field(default=7, ge=0, description="Days before expiry to warn")
    auto_renew_threshold: float = Field(default=3, ge=0, description="Days before expiry to renew")
    renewal_period: int = Field(default=30, ge=1, description="Epochs added per renewal")
    epoch_duration_days: float = Field(default=1.0, gt=0, description="Length of one epoch in days")
    verify_existence: bool = Field(default=False, description="Skip blobs the network no longer reports")
    network: NetworkSettings = Field(default_factory=NetworkSettings)
    signer: Optional[Any] = Field(default=None, exclude=True, description="Transaction signer")

    @model_validator(mode="after")
    def check_thresholds(self):
        if self.auto_renew_threshold > self.warning_threshold:
            raise ValueError(
                f"auto_renew_threshold ({self.auto_renew_threshold}) must not exceed "
                f"warning_threshold ({self.warning_threshold})"
            )
        return self


class WalvaultSettings(BaseModel):
    """Process-level settings for the service layer and adapters."""

    host: str = Field(default="127.0.0.1", description="API host (WALVAULT_API_HOST)")
    port: int = Field(default=8002, description="API port (WALVAULT_API_PORT)")
    mock_mode: bool = Field(default=True, description="Use the in-memory network instead of Walrus/Sui")

    sui_rpc_url: str = Field(default="https://fullnode.testnet.sui.io:443", description="Sui JSON-RPC endpoint")
    publisher_url: str = Field(default="https://publisher.walrus-testnet.walrus.space", description="Walrus publisher")
    aggregator_urls: List[str] = Field(
        default_factory=lambda: ["https://aggregator.walrus-testnet.walrus.space"],
        description="Walrus aggregators; each one answering for a blob counts as a provider",
    )
    walrus_package_id: Optional[str] = Field(default=None, description="Walrus system package on Sui")
    walrus_system_object_id: Optional[str] = Field(default=None, description="Walrus system object on Sui")
    request_timeout: float = Field(default=15.0, gt=0, description="HTTP timeout (seconds)")
    owner_address: Optional[str] = Field(
        default=None,
        description="Sui address owning the Blob objects (WALVAULT_OWNER_ADDRESS; default: signer address)",
    )

    vault_path: Path = Field(default=Path("./walvault_records.json"), description="Tracking store file")
    expiry: ExpiryMonitorConfig = Field(default_factory=ExpiryMonitorConfig)
    start_expiry_monitor: bool = Field(default=False, description="Start the expiry monitor with the server")

    @classmethod
    def from_env(cls) -> "WalvaultSettings":
        """Build settings from WALVAULT_* environment variables."""
        aggregators = os.getenv("WALVAULT_AGGREGATOR_URLS")
        expiry = ExpiryMonitorConfig(
            check_interval=float(os.getenv("WALVAULT_EXPIRY_CHECK_INTERVAL", 24 * 60 * 60)),
            warning_threshold=float(os.getenv("WALVAULT_EXPIRY_WARNING_DAYS", 7)),
            auto_renew_threshold=float(os.getenv("WALVAULT_EXPIRY_RENEW_DAYS", 3)),
            renewal_period=int(os.getenv("WALVAULT_RENEWAL_EPOCHS", 30)),
            epoch_duration_days=float(os.getenv("WALVAULT_EPOCH_DAYS", 1)),
            network=NetworkSettings(environment=os.getenv("WALVAULT_NETWORK", "testnet")),
        )
        settings = cls(
            host=os.getenv("WALVAULT_API_HOST", "127.0.0.1"),
            port=int(os.getenv("WALVAULT_API_PORT", "8002")),
            mock_mode=os.getenv("WALVAULT_MOCK_MODE", "true").lower() == "true",
            vault_path=Path(os.getenv("WALVAULT_VAULT_PATH", "./walvault_records.json")),
            start_expiry_monitor=os.getenv("WALVAULT_EXPIRY_MONITOR", "false").lower() == "true",
            walrus_package_id=os.getenv("WALVAULT_WALRUS_PACKAGE_ID"),
            walrus_system_object_id=os.getenv("WALVAULT_WALRUS_SYSTEM_OBJECT_ID"),
            owner_address=os.getenv("WALVAULT_OWNER_ADDRESS"),
            expiry=expiry,
        )
        if os.getenv("WALVAULT_SUI_RPC_URL"):
            settings.sui_rpc_url = os.environ["WALVAULT_SUI_RPC_URL"]
        if os.getenv("WALVAULT_PUBLISHER_URL"):
            settings.publisher_url = os.environ["WALVAULT_PUBLISHER_URL"]
        if aggregators:
            settings.aggregator_urls = [url.strip() for url in aggregators.split(",") if url.strip()]
        return settings
