"""
Walvault Core Module

Verification and lifecycle engine:
- Checksums (SHA-256, SHA-512, BLAKE2b)
- Certification tracking (poll until certified or timeout)
- Proof-of-availability quorum checks
- Blob and upload verification
- Availability monitoring with retry budgets
"""

from walvault.core.checksums import ChecksumEngine
from walvault.core.guards import InFlightGuard
from walvault.core.context import VerificationContext
from walvault.core.certification import CertificationTracker
from walvault.core.availability import AvailabilityProofVerifier
from walvault.core.verification import BlobVerifier, compare_attributes
from walvault.core.upload import UploadVerifier
from walvault.core.monitoring import AvailabilityMonitor

__all__ = [
    "ChecksumEngine",
    "InFlightGuard",
    "VerificationContext",
    "CertificationTracker",
    "AvailabilityProofVerifier",
    "BlobVerifier",
    "compare_attributes",
    "UploadVerifier",
    "AvailabilityMonitor",
]
