"""
Explicit context shared by the verification and lifecycle components.

Replaces process-wide coordinator singletons: each component receives the
context it works against, so tests can build isolated instances.
"""

from dataclasses import dataclass, field
from typing import Optional

from ..interfaces import LedgerClient, Signer, StorageClient, TrackingStore
from .checksums import ChecksumEngine
from .guards import InFlightGuard


@dataclass
class VerificationContext:
    """Collaborators and concurrency guards for one walvault instance."""
    storage: StorageClient
    ledger: Optional[LedgerClient] = None
    tracking_store: Optional[TrackingStore] = None
    signer: Optional[Signer] = None
    checksums: ChecksumEngine = field(default_factory=ChecksumEngine)
    renewal_guard: InFlightGuard = field(default_factory=lambda: InFlightGuard("renewal"))
    monitor_guard: InFlightGuard = field(default_factory=lambda: InFlightGuard("monitor"))
    poll_interval: float = 1.0
