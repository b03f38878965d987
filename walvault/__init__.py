"""
Walvault - verified blob storage on Walrus

Integrity checking, certification tracking, proof-of-availability quorum
checks, availability monitoring and expiry-driven auto-renewal for blobs
stored on a decentralized storage network.

Quick Start:
    >>> from walvault import BlobVerifier, VerificationContext
    >>> from walvault.backends import InMemoryWalrusNetwork
    >>>
    >>> network = InMemoryWalrusNetwork()
    >>> context = VerificationContext(storage=network, ledger=network)
    >>> blob_id = network.put_blob(b"Hello, Walrus!", certified_epoch=1)
    >>>
    >>> result = await BlobVerifier(context).verify_blob(blob_id, b"Hello, Walrus!")
    >>> result.success, result.details.certified
    (True, True)

Features:
    - Multi-digest checksums (SHA-256, SHA-512, BLAKE2b)
    - Certification polling with distinct timeout errors
    - Provider quorum and proof-of-availability checks
    - Availability monitoring with bounded retry budgets
    - Expiry monitoring with auto-renewal (one renewal in flight per blob)
"""

from walvault.core import (
    AvailabilityMonitor,
    AvailabilityProofVerifier,
    BlobVerifier,
    CertificationTracker,
    ChecksumEngine,
    UploadVerifier,
    VerificationContext,
)
from walvault.config import ExpiryMonitorConfig, MonitorOptions, UploadOptions, VerificationOptions
from walvault.models import BlobRecord, ChecksumSet, VerificationResult
from walvault.storage import ExpiryMonitor, VaultManager

__version__ = "1.0.0"
__author__ = "Walvault Team"

__all__ = [
    "AvailabilityMonitor",
    "AvailabilityProofVerifier",
    "BlobVerifier",
    "CertificationTracker",
    "ChecksumEngine",
    "UploadVerifier",
    "VerificationContext",
    "ExpiryMonitorConfig",
    "MonitorOptions",
    "UploadOptions",
    "VerificationOptions",
    "BlobRecord",
    "ChecksumSet",
    "VerificationResult",
    "ExpiryMonitor",
    "VaultManager",
]
