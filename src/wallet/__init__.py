"""
Wallet package - Key custody for Coldkeep.

Contains:
- crypto: Password encryption, checksums, SecretBuffer
- errors: Typed error hierarchy
- KeyTree: BIP-39/32/44 derivation and signing
- transaction: Offline legacy transaction encoding

WalletManager lives in wallet.manager (import it from there).
"""

from .errors import (
    WalletError,
    ValidationError,
    NotInitializedError,
    InvalidMnemonicError,
    InvalidPasswordError,
    InsufficientFundsError,
    WalletNotFoundError,
    CorruptedBackupError,
    StorageIOError,
    CryptoError,
    EncryptionError,
    DecryptionError,
)
from .crypto import (
    SecretBuffer,
    encrypt,
    decrypt,
    checksum,
    verify_checksum,
    generate_entropy,
    generate_password_hash,
    CIPHER_AES_CBC,
    CIPHER_AES_GCM,
)
from .keytree import KeyTree
from .transaction import (
    TransactionTemplate,
    SignedTransaction,
    is_valid_address,
)

__all__ = [
    # Errors
    "WalletError",
    "ValidationError",
    "NotInitializedError",
    "InvalidMnemonicError",
    "InvalidPasswordError",
    "InsufficientFundsError",
    "WalletNotFoundError",
    "CorruptedBackupError",
    "StorageIOError",
    "CryptoError",
    "EncryptionError",
    "DecryptionError",
    # Crypto
    "SecretBuffer",
    "encrypt",
    "decrypt",
    "checksum",
    "verify_checksum",
    "generate_entropy",
    "generate_password_hash",
    "CIPHER_AES_CBC",
    "CIPHER_AES_GCM",
    # Keys
    "KeyTree",
    # Transactions
    "TransactionTemplate",
    "SignedTransaction",
    "is_valid_address",
]
