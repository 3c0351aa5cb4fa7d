"""
Ledger clients -- how SolarTrack talks to the SolarTrackManager contract.
"""

from .base import LedgerClient, PendingTransaction, TransactionReceipt
from .local import LocalLedger

__all__ = ["LedgerClient", "LocalLedger", "PendingTransaction", "TransactionReceipt"]
