"""
Models package - Data models for Coldkeep.

Contains:
- Address, WalletRecord: Persisted wallet shape
- BackupSnapshot: Checksummed backup payload
- BalanceInfo: Cached per-currency balance

EncryptedStore lives in models.store.
"""

from .wallet import (
    Address,
    WalletRecord,
    BackupSnapshot,
    BalanceInfo,
    BACKUP_FORMAT_VERSION,
    NULL_TXID,
)

__all__ = [
    "Address",
    "WalletRecord",
    "BackupSnapshot",
    "BalanceInfo",
    "BACKUP_FORMAT_VERSION",
    "NULL_TXID",
]
