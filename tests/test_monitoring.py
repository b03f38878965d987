"""
Tests for availability monitoring.
"""

import asyncio

import pytest

from walvault.config import MonitorOptions
from walvault.core import AvailabilityMonitor, ChecksumEngine
from walvault.errors import AvailabilityMonitoringFailed, MonitoringInProgress

from conftest import build_context


class TestAvailabilityMonitor:
    """Test monitor_blob_availability retry budgets."""

    def setup_method(self):
        self.context = build_context()
        self.network = self.context.storage
        self.monitor = AvailabilityMonitor(self.context, read_timeout=1.0)
        self.data = b"monitored payload"
        self.checksums = ChecksumEngine().compute(self.data)
        self.blob_id = self.network.put_blob(self.data, certified_epoch=1)

    @pytest.mark.asyncio
    async def test_available_on_first_attempt(self):
        attempts = await self.monitor.monitor_blob_availability(
            self.blob_id, self.checksums, MonitorOptions(interval=0.01)
        )
        assert attempts == 1

    @pytest.mark.asyncio
    async def test_succeeds_once_replicated(self):
        self.network.lag(self.blob_id, 2)

        attempts = await self.monitor.monitor_blob_availability(
            self.blob_id, self.checksums, MonitorOptions(interval=0.01, max_attempts=5)
        )

        assert attempts == 3
        assert self.network.read_calls == 3

    @pytest.mark.asyncio
    async def test_fails_after_exactly_max_attempts(self):
        self.network.corrupt(self.blob_id, b"something else")

        with pytest.raises(AvailabilityMonitoringFailed) as exc_info:
            await self.monitor.monitor_blob_availability(
                self.blob_id, self.checksums, MonitorOptions(interval=0.01, max_attempts=4)
            )

        assert exc_info.value.attempts == 4
        assert self.network.read_calls == 4
        assert "checksum mismatch" in exc_info.value.last_error

    @pytest.mark.asyncio
    async def test_timeout_budget_stops_early(self):
        self.network.lag(self.blob_id, 1000)

        with pytest.raises(AvailabilityMonitoringFailed) as exc_info:
            await self.monitor.monitor_blob_availability(
                self.blob_id,
                self.checksums,
                MonitorOptions(interval=0.05, max_attempts=100, timeout=0.12),
            )

        assert 1 <= exc_info.value.attempts < 100

    @pytest.mark.asyncio
    async def test_requires_certification_when_asked(self):
        uncertified = self.network.put_blob(b"not yet certified")
        checksums = ChecksumEngine().compute(b"not yet certified")

        with pytest.raises(AvailabilityMonitoringFailed):
            await self.monitor.monitor_blob_availability(
                uncertified,
                checksums,
                MonitorOptions(interval=0.01, max_attempts=2, require_certification=True),
            )

        assert await self.monitor.monitor_blob_availability(
            uncertified, checksums, MonitorOptions(interval=0.01, max_attempts=2)
        ) == 1

    @pytest.mark.asyncio
    async def test_overlapping_monitoring_rejected(self):
        self.network.lag(self.blob_id, 1000)
        first = asyncio.create_task(
            self.monitor.monitor_blob_availability(
                self.blob_id, self.checksums, MonitorOptions(interval=0.01, max_attempts=1000)
            )
        )
        await asyncio.sleep(0.02)

        with pytest.raises(MonitoringInProgress):
            await self.monitor.monitor_blob_availability(self.blob_id, self.checksums, MonitorOptions())

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        assert not self.context.monitor_guard.is_in_flight(self.blob_id)

    @pytest.mark.asyncio
    async def test_monitor_many(self):
        other = b"second payload"
        other_id = self.network.put_blob(other, certified_epoch=1)
        self.network.corrupt(other_id, b"tampered")

        results = await self.monitor.monitor_many(
            [(self.blob_id, self.checksums), (other_id, ChecksumEngine().compute(other))],
            MonitorOptions(interval=0.01, max_attempts=2),
        )

        assert results[self.blob_id] == 1
        assert isinstance(results[other_id], AvailabilityMonitoringFailed)
