"""
Blob expiry monitor.

Scans the tracking store every `check_interval`, warns about blobs that are
getting close to the end of their storage lease and renews the ones inside the
auto-renew window by submitting a storage extension transaction.

Per blob:  HEALTHY -> WARNING -> AUTO_RENEWING -> HEALTHY (after renewal).
A failed renewal leaves the blob AUTO_RENEWING; the next scan retries it.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set

from ..config import ExpiryMonitorConfig
from ..core.context import VerificationContext
from ..core.guards import InFlightGuard
from ..errors import RenewalTransactionFailed, StorageError, ValidationError, WalvaultError
from ..interfaces import LedgerClient, StorageClient, TrackingStore
from ..models import BlobRecord, ExpiryState

logger = logging.getLogger(__name__)

ExpiryHandler = Callable[[List[BlobRecord]], Awaitable[None]]


class ExpiryMonitor:
    """
    Background expiry scanner with auto-renewal.

    At most one renewal transaction is in flight per blob id, even when two
    scans overlap because of slow I/O.
    """

    def __init__(
        self,
        vault: TrackingStore,
        ledger: LedgerClient,
        on_warning: ExpiryHandler,
        on_renewal: ExpiryHandler,
        config: Optional[ExpiryMonitorConfig] = None,
        storage: Optional[StorageClient] = None,
        renewal_guard: Optional[InFlightGuard] = None,
    ):
        """
        Initialize expiry monitor.

        Args:
            vault: Tracking store holding the blob records
            ledger: Ledger client used for the epoch and renewal transactions
            on_warning: Called with blobs that crossed the warning threshold
            on_renewal: Called with blobs renewed during a scan
            config: Thresholds, intervals and signer
            storage: Storage client, used when config.verify_existence is set
            renewal_guard: Shared per-blob guard (default: private guard)
        """
        self.vault = vault
        self.ledger = ledger
        self.on_warning = on_warning
        self.on_renewal = on_renewal
        self.config = config or ExpiryMonitorConfig()
        self.storage = storage
        self.renewal_guard = renewal_guard or InFlightGuard("renewal")

        self._task: Optional[asyncio.Task] = None
        self._states: Dict[str, ExpiryState] = {}
        self._warned: Set[str] = set()

    @classmethod
    def from_context(
        cls,
        context: VerificationContext,
        on_warning: ExpiryHandler,
        on_renewal: ExpiryHandler,
        config: Optional[ExpiryMonitorConfig] = None,
    ) -> "ExpiryMonitor":
        """Build a monitor sharing the context's collaborators and renewal guard."""
        if context.tracking_store is None or context.ledger is None:
            raise ValidationError("Expiry monitor needs a tracking store and a ledger client", field="context")
        config = config or ExpiryMonitorConfig()
        if config.signer is None and context.signer is not None:
            config = config.model_copy(update={"signer": context.signer})
        return cls(
            context.tracking_store,
            context.ledger,
            on_warning,
            on_renewal,
            config=config,
            storage=context.storage,
            renewal_guard=context.renewal_guard,
        )

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def state_of(self, blob_id: str) -> Optional[ExpiryState]:
        """Expiry state of a blob as of the last scan."""
        return self._states.get(blob_id)

    def classify(self, days_to_expiry: float) -> ExpiryState:
        if days_to_expiry <= self.config.auto_renew_threshold:
            return ExpiryState.AUTO_RENEWING
        if days_to_expiry <= self.config.warning_threshold:
            return ExpiryState.WARNING
        return ExpiryState.HEALTHY

    def days_to_expiry(self, record: BlobRecord, current_epoch: int) -> float:
        return record.epochs_until_expiry(current_epoch) * self.config.epoch_duration_days

    def start(self):
        """
        Start monitoring: one scan now, then one every check_interval.

        Raises:
            ValidationError: monitor already running
        """
        if self.is_running:
            raise ValidationError("Monitor already running", field="monitor", value="running")

        logger.info(
            f"Starting expiry monitor (interval={self.config.check_interval}s, "
            f"warning={self.config.warning_threshold}d, "
            f"auto-renew={self.config.auto_renew_threshold}d, "
            f"network={self.config.network.environment})"
        )
        if self.config.signer is None:
            logger.warning("Expiry monitor has no signer: expiring blobs are reported but not renewed")
        self._task = asyncio.get_running_loop().create_task(self._monitor_loop())

    async def stop(self):
        """Stop monitoring. Outstanding network calls are abandoned."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Stopped expiry monitor")

    async def _monitor_loop(self):
        while True:
            try:
                await self.check_expiry()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Failed to check blob expiry: {e}")
            await asyncio.sleep(self.config.check_interval)

    async def check_expiry(self) -> List[BlobRecord]:
        """
        Run one scan.

        Returns:
            Records renewed during this scan
        """
        try:
            current_epoch = await self.ledger.get_system_epoch()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Could not read system epoch, skipping expiry scan: {e}")
            return []

        expiring = self.vault.get_expiring_blobs(
            self.config.warning_threshold, current_epoch, self.config.epoch_duration_days
        )
        expiring_ids = {record.blob_id for record in expiring}
        for blob_id in list(self._states):
            if blob_id not in expiring_ids:
                self._states[blob_id] = ExpiryState.HEALTHY
                self._warned.discard(blob_id)

        logger.debug(
            f"Checking blob expiry at epoch {current_epoch}: "
            f"{len(expiring)} within {self.config.warning_threshold} days"
        )

        if self.config.verify_existence and self.storage is not None:
            expiring = await self._existing(expiring)

        warning_blobs: List[BlobRecord] = []
        renewal_blobs: List[BlobRecord] = []
        for record in expiring:
            state = self.classify(self.days_to_expiry(record, current_epoch))
            self._states[record.blob_id] = state
            if state is ExpiryState.HEALTHY:
                self._warned.discard(record.blob_id)
                continue
            if record.blob_id not in self._warned:
                self._warned.add(record.blob_id)
                warning_blobs.append(record)
            if state is ExpiryState.AUTO_RENEWING:
                renewal_blobs.append(record)

        if warning_blobs:
            await self._notify(self.on_warning, warning_blobs, "Warning")

        renewed: List[BlobRecord] = []
        if renewal_blobs and self.config.signer is None:
            logger.warning(
                f"Auto-renewal disabled (no signer): {len(renewal_blobs)} blobs inside the renewal window"
            )
        elif renewal_blobs:
            results = await asyncio.gather(
                *(self._renew_guarded(record, current_epoch) for record in renewal_blobs)
            )
            renewed = [record for record in results if record is not None]

        if renewed:
            await self._notify(self.on_renewal, renewed, "Renewal")

        return renewed

    async def _existing(self, records: List[BlobRecord]) -> List[BlobRecord]:
        results = await asyncio.gather(
            *(self.storage.get_blob_info(record.blob_id) for record in records),
            return_exceptions=True,
        )
        existing = []
        for record, result in zip(records, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.warning(f"Blob {record.blob_id} not found during expiry check: {result}")
                continue
            existing.append(record)
        return existing

    async def _notify(self, handler: ExpiryHandler, records: List[BlobRecord], name: str):
        try:
            await handler(records)
            logger.info(f"{name} handler executed for {len(records)} blobs")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{name} handler failed: {e}")

    async def _renew_guarded(self, record: BlobRecord, current_epoch: int) -> Optional[BlobRecord]:
        with self.renewal_guard.hold(record.blob_id) as acquired:
            if not acquired:
                logger.info(f"Renewal of {record.blob_id} already in flight, skipping")
                return None

            # The record may have been renewed since this scan classified it
            current = self.vault.get_blob_record(record.blob_id)
            if current is None:
                logger.info(f"Blob {record.blob_id} no longer tracked, skipping renewal")
                return None
            state = self.classify(self.days_to_expiry(current, current_epoch))
            if state is not ExpiryState.AUTO_RENEWING:
                logger.info(
                    f"Blob {record.blob_id} already renewed until epoch "
                    f"{current.expiration_epoch}, skipping"
                )
                self._states[record.blob_id] = state
                if state is ExpiryState.HEALTHY:
                    self._warned.discard(record.blob_id)
                return None

            try:
                return await self._renew(current, current_epoch)
            except WalvaultError as e:
                logger.error(f"Failed to renew blob {record.blob_id}: {e.message}")
                return None

    async def _renew(self, record: BlobRecord, current_epoch: int) -> BlobRecord:
        signer = self.config.signer
        if signer is None:
            raise ValidationError("Signer required for storage transactions", field="signer")

        additional_epochs = self.config.renewal_period
        try:
            receipt = await self.ledger.submit_storage_extension(record.blob_id, additional_epochs, signer)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise RenewalTransactionFailed(record.blob_id, additional_epochs, cause=e) from e

        self.vault.update_blob_expiry(record.blob_id, receipt.new_expiration_epoch)
        renewed = self.vault.get_blob_record(record.blob_id) or record

        state = self.classify(self.days_to_expiry(renewed, current_epoch))
        self._states[record.blob_id] = state
        if state is ExpiryState.HEALTHY:
            self._warned.discard(record.blob_id)

        logger.info(
            f"Blob {record.blob_id} renewed (tx {receipt.digest}), "
            f"expires at epoch {receipt.new_expiration_epoch}"
        )
        return renewed

    async def renew_blob_by_id(self, blob_id: str) -> BlobRecord:
        """
        Renew one tracked blob now.

        Raises:
            StorageError: blob not tracked, or a renewal is already in flight
            ValidationError: no signer configured
            RenewalTransactionFailed: transaction failed
        """
        record = self.vault.get_blob_record(blob_id)
        if record is None:
            raise StorageError(f"Failed to renew blob {blob_id}: not tracked", blob_id=blob_id, operation="renew")

        with self.renewal_guard.hold(blob_id) as acquired:
            if not acquired:
                raise StorageError(
                    f"Renewal of blob {blob_id} already in flight",
                    blob_id=blob_id,
                    operation="renew",
                    recoverable=True,
                )
            current_epoch = await self.ledger.get_system_epoch()
            renewed = await self._renew(record, current_epoch)

        await self._notify(self.on_renewal, [renewed], "Renewal")
        return renewed
