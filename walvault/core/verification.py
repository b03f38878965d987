"""
Blob verification.

Checks run cheapest first and stop at the first failure:

1. fetch bytes (transient read failures retried with exponential backoff)
2. size and checksum compare against the expected content
3. blob info / certification state (a certified epoch must not be ahead of the system epoch)
4. attribute compare (optional)
5. proof-of-availability and provider quorum (informational unless required)

A caller that sees ContentMismatch never has to interpret certification state.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from ..config import VerificationOptions
from ..errors import (
    AttributeMismatch,
    AvailabilityCheckFailed,
    CertificationRequired,
    ContentMismatch,
    NetworkError,
    WalvaultError,
)
from ..models import ChecksumSet, VerificationDetails, VerificationResult
from .availability import AvailabilityProofVerifier
from .certification import CertificationTracker
from .context import VerificationContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _values_match(expected: Any, actual: Any) -> bool:
    if isinstance(expected, (dict, list)):
        return json.dumps(expected, sort_keys=True) == json.dumps(actual, sort_keys=True)
    if actual is None:
        return False
    return str(actual) == str(expected)


def compare_attributes(
    expected: Dict[str, Any],
    actual: Dict[str, Any],
    strict: bool = False,
) -> List[Dict[str, Any]]:
    """
    Compare expected attributes with stored ones.

    Args:
        expected: Attributes the caller wrote
        actual: Attributes the network reports
        strict: Also report stored attributes that were not expected

    Returns:
        List of {key, expected, actual} mismatches (empty when valid)
    """
    mismatches = [
        {"key": key, "expected": value, "actual": actual.get(key)}
        for key, value in expected.items()
        if not _values_match(value, actual.get(key))
    ]
    if strict:
        mismatches.extend(
            {"key": key, "expected": None, "actual": value}
            for key, value in actual.items()
            if key not in expected
        )
    return mismatches


class BlobVerifier:
    """
    Verifies that a stored blob matches the content the caller expects.

    Usage:
        >>> verifier = BlobVerifier(context)
        >>> result = await verifier.verify_blob(blob_id, data, {"contentType": "text/plain"})
        >>> result.details.certified
        True
    """

    def __init__(
        self,
        context: VerificationContext,
        tracker: Optional[CertificationTracker] = None,
        availability: Optional[AvailabilityProofVerifier] = None,
    ):
        self.context = context
        self.tracker = tracker or CertificationTracker(context)
        self.availability = availability or AvailabilityProofVerifier(context)

    async def _with_retries(
        self,
        operation: str,
        blob_id: str,
        call: Callable[[], Awaitable[T]],
        options: VerificationOptions,
    ) -> Tuple[T, int]:
        """Run a collaborator call, retrying transport failures with backoff."""
        last_error: Optional[Exception] = None

        for attempt in range(1, options.max_retries + 1):
            try:
                return await asyncio.wait_for(call(), timeout=options.timeout), attempt
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                if attempt == options.max_retries:
                    break
                delay = options.base_delay * (2 ** (attempt - 1))
                logger.info(
                    f"{operation} for {blob_id} failed (attempt {attempt}/{options.max_retries}): "
                    f"{e}; retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

        raise NetworkError(
            f"{operation} failed for blob {blob_id} after {options.max_retries} attempts: {last_error}",
            operation=operation,
            cause=last_error,
            blob_id=blob_id,
            attempts=options.max_retries,
        )

    async def fetch_content(self, blob_id: str, options: VerificationOptions) -> Tuple[bytes, int]:
        """Read blob bytes with the retry budget of `options`."""

        async def read() -> bytes:
            content = await self.context.storage.read_blob(blob_id)
            if not content:
                raise NetworkError(
                    f"Retrieved content for {blob_id} is empty",
                    operation="read_blob",
                    blob_id=blob_id,
                )
            return bytes(content)

        return await self._with_retries("read_blob", blob_id, read, options)

    def compare_content(self, blob_id: str, content: bytes, expected_content: bytes, expected: ChecksumSet):
        """Raise ContentMismatch unless content has the expected size and digests."""
        if len(content) != len(expected_content):
            actual = self.context.checksums.compute(content)
            raise ContentMismatch(
                blob_id,
                algorithms=expected.mismatched(actual),
                expected=expected.sha256,
                actual=actual.sha256,
                expected_size=len(expected_content),
                actual_size=len(content),
            )

        actual = self.context.checksums.compute(content)
        mismatched = expected.mismatched(actual)
        if mismatched:
            raise ContentMismatch(
                blob_id,
                algorithms=mismatched,
                expected=expected.sha256,
                actual=actual.sha256,
                expected_size=len(expected_content),
                actual_size=len(content),
            )

    async def verify_blob(
        self,
        blob_id: str,
        expected_content: bytes,
        expected_attributes: Optional[Dict[str, Any]] = None,
        options: Optional[VerificationOptions] = None,
    ) -> VerificationResult:
        """
        Comprehensive verification of a stored blob.

        Args:
            blob_id: Blob to verify
            expected_content: Bytes the caller stored
            expected_attributes: Attributes the caller stored
            options: Verification options

        Returns:
            VerificationResult

        Raises:
            ContentMismatch: fetched bytes differ from expected_content
            CertificationRequired: certification required but absent
            AttributeMismatch: an expected attribute differs
            AvailabilityCheckFailed: PoA/quorum required but not met
            NetworkError: reads kept failing after the retry budget
        """
        options = options or VerificationOptions()
        expected_checksums = self.context.checksums.compute(expected_content)

        try:
            return await self._verify(
                blob_id, expected_content, expected_checksums, expected_attributes or {}, options
            )
        except WalvaultError as e:
            logger.warning(f"Verification of {blob_id} failed: {e.message}")
            if options.raise_on_failure:
                raise
            return VerificationResult(
                success=False,
                details=VerificationDetails(
                    blob_id=blob_id,
                    size=len(expected_content),
                    certified=False,
                    checksum=expected_checksums.sha256,
                ),
                poa_complete=False,
                providers=0,
                has_min_providers=False,
                warnings=[e.message],
                error=e.to_dict(),
            )

    async def _verify(
        self,
        blob_id: str,
        expected_content: bytes,
        expected_checksums: ChecksumSet,
        expected_attributes: Dict[str, Any],
        options: VerificationOptions,
    ) -> VerificationResult:
        warnings: List[str] = []

        content, attempts = await self.fetch_content(blob_id, options)
        self.compare_content(blob_id, content, expected_content, expected_checksums)
        logger.debug(f"Content of {blob_id} matches ({len(content)} bytes, attempt {attempts})")

        info, _ = await self._with_retries(
            "get_blob_info", blob_id, lambda: self.tracker.check_certification(blob_id), options
        )
        certified = info.certified
        if certified and self.context.ledger is not None:
            current_epoch, _ = await self._with_retries(
                "get_system_epoch", blob_id, self.context.ledger.get_system_epoch, options
            )
            # A certified epoch ahead of the system epoch is not yet effective
            certified = info.certified_epoch <= current_epoch

        if not certified:
            if options.require_certification:
                raise CertificationRequired(blob_id, info.registered_epoch)
            warnings.append(
                f"Blob {blob_id} is not certified yet (registered at epoch {info.registered_epoch})"
            )

        actual_attributes: Dict[str, Any] = {}
        if options.verify_attributes:
            actual_attributes, _ = await self._with_retries(
                "get_blob_metadata",
                blob_id,
                lambda: self.context.storage.get_blob_metadata(blob_id),
                options,
            )
            actual_attributes = actual_attributes or {}
            mismatches = compare_attributes(
                expected_attributes, actual_attributes, strict=options.strict_attributes
            )
            if mismatches:
                raise AttributeMismatch(blob_id, mismatches)

        quorum = await self.availability.check_quorum(blob_id, options.min_providers)
        if not quorum.poa_complete or not quorum.has_min_providers:
            if options.require_poa:
                raise AvailabilityCheckFailed(
                    blob_id, quorum.poa_complete, quorum.providers, quorum.min_providers
                )
            if not quorum.poa_complete:
                warnings.append(f"Proof of availability incomplete for {blob_id}")
            if not quorum.has_min_providers:
                warnings.append(
                    f"Insufficient providers for {blob_id} ({quorum.providers}/{quorum.min_providers})"
                )

        logger.info(
            f"Verified blob {blob_id}: certified={certified} "
            f"poa={quorum.poa_complete} providers={quorum.providers}"
        )

        return VerificationResult(
            success=True,
            details=VerificationDetails(
                blob_id=blob_id,
                size=len(content),
                certified=certified,
                checksum=expected_checksums.sha256,
                certified_epoch=info.certified_epoch,
                registered_epoch=info.registered_epoch,
                attributes=actual_attributes,
            ),
            poa_complete=quorum.poa_complete,
            providers=quorum.providers,
            has_min_providers=quorum.has_min_providers,
            warnings=warnings,
            attempts=attempts,
        )
