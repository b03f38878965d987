"""
Certification tracking.

A freshly written blob is registered on the ledger first and certified some
epochs later, once enough storage nodes have acknowledged it. The tracker
polls blob info until a certified epoch shows up or the wait times out.
"""

import asyncio
import logging
from typing import Dict, Optional

from ..errors import CertificationTimeout, NetworkError
from ..models import BlobInfo, CertificationState
from .context import VerificationContext

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0  # seconds


class CertificationTracker:
    """
    Polls the storage network until a blob is certified.

    State per blob: REGISTERED -> CERTIFYING -> CERTIFIED, or
    REGISTERED -> CERTIFYING -> TIMED_OUT.
    """

    def __init__(self, context: VerificationContext, poll_interval: Optional[float] = None):
        """
        Initialize certification tracker.

        Args:
            context: Shared collaborators
            poll_interval: Seconds between polls (default: context.poll_interval)
        """
        self.context = context
        self.poll_interval = poll_interval if poll_interval is not None else context.poll_interval
        self._states: Dict[str, CertificationState] = {}

    def state_of(self, blob_id: str) -> Optional[CertificationState]:
        """Last known certification state of a blob."""
        return self._states.get(blob_id)

    async def check_certification(self, blob_id: str) -> BlobInfo:
        """
        Query blob info once.

        Raises:
            NetworkError: if the storage network could not be queried
        """
        try:
            info = await self.context.storage.get_blob_info(blob_id)
        except NetworkError:
            raise
        except Exception as e:
            raise NetworkError(
                f"Failed to retrieve blob information for {blob_id}: {e}",
                operation="get_blob_info",
                cause=e,
                blob_id=blob_id,
            ) from e

        self._states[blob_id] = (
            CertificationState.CERTIFIED if info.certified else CertificationState.REGISTERED
        )
        return info

    async def wait_for_certification(self, blob_id: str, timeout: float) -> int:
        """
        Wait until the ledger reports a certified epoch for the blob.

        Poll failures are logged and retried until the timeout boundary.

        Args:
            blob_id: Blob to watch
            timeout: Maximum wait in seconds

        Returns:
            The certified epoch

        Raises:
            CertificationTimeout: if the blob is still uncertified after `timeout`
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        polls = 0
        last_info: Optional[BlobInfo] = None
        last_error: Optional[Exception] = None

        self._states[blob_id] = CertificationState.REGISTERED
        logger.info(f"Waiting up to {timeout}s for certification of {blob_id}")

        while True:
            remaining = deadline - loop.time()
            if polls and remaining <= 0:
                break

            polls += 1
            try:
                info = await asyncio.wait_for(
                    self.context.storage.get_blob_info(blob_id),
                    timeout=remaining,
                )
                last_info = info
                if info.certified:
                    self._states[blob_id] = CertificationState.CERTIFIED
                    logger.info(
                        f"Blob {blob_id} certified at epoch {info.certified_epoch} "
                        f"(poll {polls})"
                    )
                    return info.certified_epoch
                self._states[blob_id] = CertificationState.CERTIFYING
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                logger.debug(f"Certification poll {polls} for {blob_id} failed: {e}")

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.poll_interval, remaining))

        self._states[blob_id] = CertificationState.TIMED_OUT
        if last_info is None and last_error is not None:
            last_state = f"unreachable: {last_error}"
        else:
            last_state = CertificationState.CERTIFYING.value if last_info else CertificationState.REGISTERED.value
        logger.warning(f"Certification of {blob_id} timed out after {polls} polls ({last_state})")

        raise CertificationTimeout(
            blob_id,
            timeout,
            last_state=last_state,
            registered_epoch=last_info.registered_epoch if last_info else None,
            polls=polls,
        )
