"""
Tests for the expiry monitor and auto-renewal.
"""

import asyncio

import pytest

from walvault.backends import InMemoryWalrusNetwork, MockSigner
from walvault.config import ExpiryMonitorConfig
from walvault.core import ChecksumEngine, VerificationContext
from walvault.errors import StorageError, ValidationError
from walvault.models import BlobRecord, ExpiryState
from walvault.storage import ExpiryMonitor, VaultManager


class Recorder:
    """Collects the records handed to a monitor callback."""

    def __init__(self):
        self.calls = []

    async def __call__(self, records):
        self.calls.append([record.blob_id for record in records])

    @property
    def blob_ids(self):
        return [blob_id for call in self.calls for blob_id in call]


class TestExpiryMonitor:
    """Test expiry scans, warnings and renewals."""

    def setup_method(self):
        self.network = InMemoryWalrusNetwork(epoch=10)
        self.vault = VaultManager()
        self.signer = MockSigner()
        self.warnings = Recorder()
        self.renewals = Recorder()
        self.config = ExpiryMonitorConfig(
            check_interval=0.01,
            warning_threshold=7,
            auto_renew_threshold=3,
            renewal_period=30,
            signer=self.signer,
        )
        self.monitor = ExpiryMonitor(
            self.vault, self.network, self.warnings, self.renewals, config=self.config, storage=self.network
        )

    def track(self, data: bytes, expiration_epoch: int) -> str:
        blob_id = self.network.put_blob(data, certified_epoch=10, end_epoch=expiration_epoch)
        self.vault.save_blob_record(
            BlobRecord(
                blob_id=blob_id,
                size=len(data),
                checksums=ChecksumEngine().compute(data),
                registered_epoch=10,
                expiration_epoch=expiration_epoch,
                certified_epoch=10,
            )
        )
        return blob_id

    @pytest.mark.asyncio
    async def test_renews_blob_inside_auto_renew_window(self):
        blob_id = self.track(b"expiring soon", expiration_epoch=13)

        renewed = await self.monitor.check_expiry()

        assert [record.blob_id for record in renewed] == [blob_id]
        assert self.network.renewal_calls == [{"blob_id": blob_id, "epochs": 30}]
        assert self.vault.get_blob_record(blob_id).expiration_epoch == 43
        assert self.renewals.blob_ids == [blob_id]
        assert self.warnings.blob_ids == [blob_id]
        assert self.monitor.state_of(blob_id) is ExpiryState.HEALTHY
        assert len(self.signer.executed) == 1

    @pytest.mark.asyncio
    async def test_renewed_blob_is_not_renewed_again(self):
        blob_id = self.track(b"expiring soon", expiration_epoch=13)

        await self.monitor.check_expiry()
        renewed = await self.monitor.check_expiry()

        assert renewed == []
        assert len(self.network.renewal_calls) == 1
        assert self.monitor.state_of(blob_id) is ExpiryState.HEALTHY

    @pytest.mark.asyncio
    async def test_warning_fires_once_per_crossing(self):
        blob_id = self.track(b"warning only", expiration_epoch=15)

        await self.monitor.check_expiry()
        await self.monitor.check_expiry()

        assert self.warnings.blob_ids == [blob_id]
        assert self.network.renewal_calls == []
        assert self.monitor.state_of(blob_id) is ExpiryState.WARNING

        # Entering the auto-renew window renews without a second warning
        self.network.advance_epoch(2)
        renewed = await self.monitor.check_expiry()
        assert [record.blob_id for record in renewed] == [blob_id]
        assert self.warnings.blob_ids == [blob_id]

    @pytest.mark.asyncio
    async def test_healthy_blobs_untouched(self):
        blob_id = self.track(b"far from expiry", expiration_epoch=60)

        assert await self.monitor.check_expiry() == []
        assert self.warnings.calls == []
        assert self.renewals.calls == []
        assert self.monitor.state_of(blob_id) is None

    @pytest.mark.asyncio
    async def test_failed_renewal_retried_next_scan(self):
        blob_id = self.track(b"flaky renewal", expiration_epoch=12)
        self.network.failing_renewals = 1

        assert await self.monitor.check_expiry() == []
        assert self.monitor.state_of(blob_id) is ExpiryState.AUTO_RENEWING
        assert self.vault.get_blob_record(blob_id).expiration_epoch == 12

        renewed = await self.monitor.check_expiry()
        assert [record.blob_id for record in renewed] == [blob_id]
        assert len(self.network.renewal_calls) == 2
        assert self.vault.get_blob_record(blob_id).expiration_epoch == 42

    @pytest.mark.asyncio
    async def test_overlapping_scans_submit_one_renewal(self):
        self.track(b"slow ledger", expiration_epoch=13)
        self.network.latency = 0.05

        first, second = await asyncio.gather(self.monitor.check_expiry(), self.monitor.check_expiry())

        assert len(first) + len(second) == 1
        assert len(self.network.renewal_calls) == 1
        assert len(self.warnings.blob_ids) == 1

    @pytest.mark.asyncio
    async def test_missing_signer_skips_renewal(self):
        blob_id = self.track(b"no signer", expiration_epoch=12)
        monitor = ExpiryMonitor(
            self.vault,
            self.network,
            self.warnings,
            self.renewals,
            config=self.config.model_copy(update={"signer": None}),
        )

        assert await monitor.check_expiry() == []
        assert self.network.renewal_calls == []
        assert self.warnings.blob_ids == [blob_id]
        assert monitor.state_of(blob_id) is ExpiryState.AUTO_RENEWING

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_renewal(self):
        blob_id = self.track(b"callback error", expiration_epoch=12)

        async def broken(records):
            raise RuntimeError("webhook down")

        monitor = ExpiryMonitor(self.vault, self.network, broken, self.renewals, config=self.config)

        renewed = await monitor.check_expiry()

        assert [record.blob_id for record in renewed] == [blob_id]
        assert self.renewals.blob_ids == [blob_id]

    @pytest.mark.asyncio
    async def test_verify_existence_skips_missing_blobs(self):
        present = self.track(b"still stored", expiration_epoch=12)
        gone = self.track(b"gone from network", expiration_epoch=12)
        del self.network.blobs[gone]

        monitor = ExpiryMonitor(
            self.vault,
            self.network,
            self.warnings,
            self.renewals,
            config=self.config.model_copy(update={"verify_existence": True}),
            storage=self.network,
        )
        renewed = await monitor.check_expiry()

        assert [record.blob_id for record in renewed] == [present]
        assert self.warnings.blob_ids == [present]
        # The record stays tracked
        assert self.vault.get_blob_record(gone) is not None

    @pytest.mark.asyncio
    async def test_epoch_read_failure_skips_scan(self):
        self.track(b"expiring", expiration_epoch=12)

        class BrokenLedger:
            async def get_system_epoch(self):
                raise ConnectionError("rpc down")

        monitor = ExpiryMonitor(self.vault, BrokenLedger(), self.warnings, self.renewals, config=self.config)

        assert await monitor.check_expiry() == []
        assert self.warnings.calls == []

    @pytest.mark.asyncio
    async def test_epoch_duration_scales_days(self):
        blob_id = self.track(b"long epochs", expiration_epoch=14)
        monitor = ExpiryMonitor(
            self.vault,
            self.network,
            self.warnings,
            self.renewals,
            config=self.config.model_copy(update={"epoch_duration_days": 14}),
        )

        # 4 epochs of 14 days each is far outside the warning window
        assert await monitor.check_expiry() == []
        assert monitor.state_of(blob_id) is None

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        blob_id = self.track(b"background", expiration_epoch=12)

        self.monitor.start()
        assert self.monitor.is_running

        with pytest.raises(ValidationError):
            self.monitor.start()

        await asyncio.sleep(0.05)
        await self.monitor.stop()

        assert not self.monitor.is_running
        assert self.renewals.blob_ids == [blob_id]
        assert self.vault.get_blob_record(blob_id).expiration_epoch == 42

        # Stopping twice is harmless
        await self.monitor.stop()

    @pytest.mark.asyncio
    async def test_renew_blob_by_id(self):
        blob_id = self.track(b"manual renewal", expiration_epoch=60)

        record = await self.monitor.renew_blob_by_id(blob_id)

        assert record.expiration_epoch == 90
        assert self.renewals.blob_ids == [blob_id]

    @pytest.mark.asyncio
    async def test_renew_untracked_blob(self):
        with pytest.raises(StorageError):
            await self.monitor.renew_blob_by_id("not-tracked")

    @pytest.mark.asyncio
    async def test_renew_blob_by_id_refuses_while_in_flight(self):
        blob_id = self.track(b"in flight", expiration_epoch=60)
        self.monitor.renewal_guard.try_acquire(blob_id)

        with pytest.raises(StorageError) as exc_info:
            await self.monitor.renew_blob_by_id(blob_id)

        assert exc_info.value.recoverable is True
        assert self.network.renewal_calls == []

    def test_from_context_uses_context_signer(self):
        context = VerificationContext(
            storage=self.network, ledger=self.network, tracking_store=self.vault, signer=self.signer
        )
        monitor = ExpiryMonitor.from_context(
            context, self.warnings, self.renewals, ExpiryMonitorConfig()
        )

        assert monitor.config.signer is self.signer
        assert monitor.renewal_guard is context.renewal_guard

    def test_from_context_requires_ledger(self):
        context = VerificationContext(storage=self.network, tracking_store=self.vault)

        with pytest.raises(ValidationError):
            ExpiryMonitor.from_context(context, self.warnings, self.renewals)

    def test_classify(self):
        assert self.monitor.classify(10) is ExpiryState.HEALTHY
        assert self.monitor.classify(7) is ExpiryState.WARNING
        assert self.monitor.classify(3) is ExpiryState.AUTO_RENEWING
        assert self.monitor.classify(-1) is ExpiryState.AUTO_RENEWING


class SlowRenewalNetwork(InMemoryWalrusNetwork):
    """Network whose storage extension transactions take a while to land."""

    async def submit_storage_extension(self, blob_id, additional_epochs, signer):
        await asyncio.sleep(0.1)
        return await super().submit_storage_extension(blob_id, additional_epochs, signer)


class TestOverlappingRenewals:
    """Renewals racing across scans and manual requests."""

    def setup_method(self):
        self.network = SlowRenewalNetwork(epoch=10)
        self.vault = VaultManager()
        self.renewals = Recorder()
        self.slow_warning_for = set()
        self.monitor = ExpiryMonitor(
            self.vault,
            self.network,
            self.on_warning,
            self.renewals,
            config=ExpiryMonitorConfig(signer=MockSigner()),
        )

    async def on_warning(self, records):
        if any(record.blob_id in self.slow_warning_for for record in records):
            await asyncio.sleep(0.2)

    def track(self, data: bytes, expiration_epoch: int) -> str:
        blob_id = self.network.put_blob(data, certified_epoch=10, end_epoch=expiration_epoch)
        self.vault.save_blob_record(
            BlobRecord(
                blob_id=blob_id,
                size=len(data),
                checksums=ChecksumEngine().compute(data),
                registered_epoch=10,
                expiration_epoch=expiration_epoch,
                certified_epoch=10,
            )
        )
        return blob_id

    def renewal_count(self, blob_id):
        return sum(1 for call in self.network.renewal_calls if call["blob_id"] == blob_id)

    @pytest.mark.asyncio
    async def test_scan_waiting_on_warning_does_not_renew_twice(self):
        expiring = self.track(b"renew once", expiration_epoch=13)
        first_scan = asyncio.create_task(self.monitor.check_expiry())
        await asyncio.sleep(0.02)

        # The second scan classifies `expiring` before the first renewal lands,
        # then waits on a slow warning for a newly tracked blob
        newcomer = self.track(b"new in warning window", expiration_epoch=15)
        self.slow_warning_for.add(newcomer)
        second = await self.monitor.check_expiry()
        first = await first_scan

        assert [record.blob_id for record in first] == [expiring]
        assert second == []
        assert self.renewal_count(expiring) == 1
        assert self.vault.get_blob_record(expiring).expiration_epoch == 43
        assert self.network.blobs[expiring].info.end_epoch == 43
        assert self.monitor.state_of(expiring) is ExpiryState.HEALTHY

    @pytest.mark.asyncio
    async def test_manual_renewal_during_scan_is_not_repeated(self):
        expiring = self.track(b"renewed by hand", expiration_epoch=12)
        newcomer = self.track(b"slow warning", expiration_epoch=16)
        self.slow_warning_for.add(newcomer)

        scan = asyncio.create_task(self.monitor.check_expiry())
        await asyncio.sleep(0.02)
        await self.monitor.renew_blob_by_id(expiring)
        renewed = await scan

        assert renewed == []
        assert self.renewal_count(expiring) == 1
        assert self.vault.get_blob_record(expiring).expiration_epoch == 42

    @pytest.mark.asyncio
    async def test_record_dropped_before_renewal_is_skipped(self):
        expiring = self.track(b"dropped", expiration_epoch=12)
        self.slow_warning_for.add(expiring)

        scan = asyncio.create_task(self.monitor.check_expiry())
        await asyncio.sleep(0.02)
        self.vault.remove_blob_record(expiring)

        assert await scan == []
        assert self.network.renewal_calls == []
