"""
Storage backends for walvault.

Supports an in-memory simulated network (mock mode) and Walrus over HTTP.
"""

from .memory import InMemoryWalrusNetwork, MockSigner, compute_blob_id
from .walrus_http import WalrusHttpClient

__all__ = ["InMemoryWalrusNetwork", "MockSigner", "compute_blob_id", "WalrusHttpClient"]
