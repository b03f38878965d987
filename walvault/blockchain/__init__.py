"""
Walvault Blockchain Integration

Connects walvault to the Sui ledger for:
- System epoch queries
- Blob object state (registration, certification, lease end)
- Storage extension (renewal) transactions
"""

from .sui_ledger import SuiLedgerClient, blob_id_from_u256

__all__ = ["SuiLedgerClient", "blob_id_from_u256"]
