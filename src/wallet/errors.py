"""
Wallet Errors - Typed failure conditions.

Every failure the custody engine can surface has its own class so the
presentation layer can map it to a status code without parsing messages.
"""

from typing import Optional


class WalletError(Exception):
    """Base exception for wallet errors."""
    pass


class ValidationError(WalletError):
    """Malformed or missing input."""
    pass


class NotInitializedError(ValidationError):
    """An operation needed the master password before initialize() ran."""
    pass


class InvalidMnemonicError(WalletError):
    """Recovery phrase has the wrong length or fails its checksum."""
    pass


class InvalidPasswordError(WalletError):
    """Wrong master password, or decrypted content that does not parse."""
    pass


class InsufficientFundsError(WalletError):
    """Cached balances do not cover amount plus fee."""

    def __init__(self, message: str, available: int = 0, needed: int = 0):
        super().__init__(message)
        self.available = available
        self.needed = needed


class WalletNotFoundError(WalletError):
    """No wallet with the given id."""

    def __init__(self, wallet_id: Optional[str] = None):
        super().__init__(f"Wallet not found: {wallet_id}")
        self.wallet_id = wallet_id


class CorruptedBackupError(WalletError):
    """Backup checksum does not match its wallet list."""
    pass


class StorageIOError(WalletError):
    """Filesystem failure unrelated to password or corruption."""
    pass


class CryptoError(WalletError):
    """Cryptography-related errors."""
    pass


class EncryptionError(CryptoError):
    pass


class DecryptionError(CryptoError):
    """Wrong password or corrupted ciphertext (not always distinguishable)."""
    pass
