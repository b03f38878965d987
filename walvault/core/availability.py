"""
Proof-of-availability and provider quorum checks.
"""

import asyncio
import logging

from ..models import QuorumResult
from .context import VerificationContext

logger = logging.getLogger(__name__)


class AvailabilityProofVerifier:
    """
    Confirms a blob is retrievable from its storage providers.

    PoA and provider count are reported independently; the caller decides
    which of them is required.
    """

    def __init__(self, context: VerificationContext):
        self.context = context

    async def check_quorum(self, blob_id: str, min_providers: int = 1) -> QuorumResult:
        """
        Query the provider set and the PoA check for a blob.

        Args:
            blob_id: Blob to check
            min_providers: Quorum size

        Returns:
            QuorumResult (a failed call counts as zero providers / no PoA)
        """
        providers_result, poa_result = await asyncio.gather(
            self.context.storage.get_storage_providers(blob_id),
            self.context.storage.verify_proof_of_availability(blob_id),
            return_exceptions=True,
        )

        if isinstance(providers_result, BaseException):
            if isinstance(providers_result, asyncio.CancelledError):
                raise providers_result
            logger.warning(f"Provider lookup failed for {blob_id}: {providers_result}")
            providers = 0
        else:
            providers = len(providers_result)

        if isinstance(poa_result, BaseException):
            if isinstance(poa_result, asyncio.CancelledError):
                raise poa_result
            logger.warning(f"PoA check failed for {blob_id}: {poa_result}")
            poa_complete = False
        else:
            poa_complete = bool(poa_result)

        result = QuorumResult(
            poa_complete=poa_complete,
            providers=providers,
            min_providers=min_providers,
        )

        if not result.poa_complete or not result.has_min_providers:
            reasons = []
            if not result.poa_complete:
                reasons.append("PoA incomplete")
            if not result.has_min_providers:
                reasons.append(f"insufficient providers ({providers}/{min_providers})")
            logger.warning(f"Blob {blob_id} availability incomplete: {', '.join(reasons)}")

        return result
