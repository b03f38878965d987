"""
Content fingerprinting.

Every payload is fingerprinted with three independent digests (SHA-256,
SHA-512, BLAKE2b-512). The same fingerprint is taken at upload time and again
at verification/monitoring time; any difference means the content changed.
"""

import hashlib
import logging

from ..models import ChecksumSet

logger = logging.getLogger(__name__)


class ChecksumEngine:
    """
    Multi-digest checksum engine.

    Pure and stateless: the same bytes always produce the same `ChecksumSet`.
    """

    def __init__(self):
        self.hash_functions = {
            "sha256": hashlib.sha256,
            "sha512": hashlib.sha512,
            "blake2b": hashlib.blake2b,  # 64-byte digest by default
        }

    def compute(self, data: bytes) -> ChecksumSet:
        """
        Compute all digests for data.

        Args:
            data: Raw payload bytes

        Returns:
            ChecksumSet with hex-encoded digests
        """
        digests = {
            name: hash_func(data).hexdigest()
            for name, hash_func in self.hash_functions.items()
        }
        return ChecksumSet(**digests)

    def verify(self, data: bytes, expected: ChecksumSet) -> bool:
        """
        Check data against an expected fingerprint.

        Args:
            data: Data to verify
            expected: Fingerprint taken earlier

        Returns:
            True if every digest matches exactly
        """
        mismatched = expected.mismatched(self.compute(data))
        if mismatched:
            logger.debug(f"Checksum mismatch on {', '.join(mismatched)}")
        return not mismatched
