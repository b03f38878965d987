"""
Availability monitoring.

Re-reads a blob and re-checks its fingerprint until it matches or the retry
budget runs out. A freshly written blob may not be visible on every read path
yet; a mismatch caused by replication lag looks exactly like corruption from
the outside, so the attempt/time budget is the only discriminator.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple, Union

from ..config import MonitorOptions
from ..errors import AvailabilityMonitoringFailed, MonitoringInProgress
from ..models import ChecksumSet
from .context import VerificationContext

logger = logging.getLogger(__name__)

DEFAULT_READ_TIMEOUT = 10.0  # seconds per read


class AvailabilityMonitor:
    """
    Bounded re-check loop over blob availability.

    At most one loop runs per blob id at a time.
    """

    def __init__(self, context: VerificationContext, read_timeout: float = DEFAULT_READ_TIMEOUT):
        self.context = context
        self.read_timeout = read_timeout

    async def _attempt(self, blob_id: str, expected: ChecksumSet, read_timeout: float, require_certification: bool):
        content = await asyncio.wait_for(self.context.storage.read_blob(blob_id), timeout=read_timeout)
        actual = self.context.checksums.compute(bytes(content or b""))
        mismatched = expected.mismatched(actual)
        if mismatched:
            raise ValueError(f"{', '.join(mismatched)} checksum mismatch")

        if require_certification:
            info = await asyncio.wait_for(self.context.storage.get_blob_info(blob_id), timeout=read_timeout)
            if not info.certified:
                raise ValueError("blob not certified")

    async def monitor_blob_availability(
        self,
        blob_id: str,
        expected_checksums: ChecksumSet,
        options: Optional[MonitorOptions] = None,
    ) -> int:
        """
        Watch a blob until its content matches the expected fingerprint.

        Args:
            blob_id: Blob to monitor
            expected_checksums: Fingerprint taken at upload time
            options: interval, max_attempts, timeout, require_certification

        Returns:
            The attempt number that succeeded

        Raises:
            MonitoringInProgress: another loop is already watching this blob
            AvailabilityMonitoringFailed: retry budget exhausted
        """
        options = options or MonitorOptions()

        with self.context.monitor_guard.hold(blob_id) as acquired:
            if not acquired:
                raise MonitoringInProgress(blob_id)
            return await self._monitor(blob_id, expected_checksums, options)

    async def _monitor(self, blob_id: str, expected: ChecksumSet, options: MonitorOptions) -> int:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + options.timeout if options.timeout else None
        attempts = 0
        last_error: Optional[str] = None

        while attempts < options.max_attempts:
            read_timeout = self.read_timeout
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                read_timeout = min(read_timeout, remaining)

            attempts += 1
            try:
                await self._attempt(blob_id, expected, read_timeout, options.require_certification)
                logger.info(
                    f"Blob {blob_id} verified available (attempt {attempts}/{options.max_attempts})"
                )
                return attempts
            except asyncio.CancelledError:
                raise
            except asyncio.TimeoutError:
                last_error = f"read timed out after {read_timeout:.2f}s (attempt {attempts})"
            except Exception as e:
                last_error = f"{e} (attempt {attempts})"

            if attempts >= options.max_attempts:
                break
            if deadline is not None and loop.time() + options.interval >= deadline:
                logger.debug(f"Monitoring budget for {blob_id} exhausted after {attempts} attempts")
                break

            logger.info(
                f"Monitoring attempt {attempts} for {blob_id} failed ({last_error}), "
                f"retrying in {options.interval}s..."
            )
            await asyncio.sleep(options.interval)

        logger.error(f"Availability monitoring of {blob_id} failed after {attempts} attempts")
        raise AvailabilityMonitoringFailed(blob_id, attempts, last_error)

    async def monitor_many(
        self,
        blobs: List[Tuple[str, ChecksumSet]],
        options: Optional[MonitorOptions] = None,
    ) -> Dict[str, Union[int, Exception]]:
        """
        Monitor several blobs concurrently.

        Returns:
            blob_id -> succeeding attempt number, or the error raised for it
        """
        results = await asyncio.gather(
            *(self.monitor_blob_availability(blob_id, checksums, options) for blob_id, checksums in blobs),
            return_exceptions=True,
        )
        outcomes: Dict[str, Union[int, Exception]] = {}
        for (blob_id, _), result in zip(blobs, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            outcomes[blob_id] = result
        return outcomes
