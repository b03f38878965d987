"""
Blob lifecycle storage.

Tracking store (vault) and expiry-driven auto-renewal.
"""

from .vault import VaultManager
from .expiry_monitor import ExpiryMonitor, ExpiryHandler

__all__ = ["VaultManager", "ExpiryMonitor", "ExpiryHandler"]
