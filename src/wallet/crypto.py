"""
Wallet Crypto - Password-based encryption and secure randomness.

Primitives used by every other wallet component:
- PBKDF2-HMAC-SHA512 key derivation (100,000 rounds)
- AES-256-CBC envelopes (default, matches existing wallet files)
- Argon2id + AES-256-GCM envelopes (authenticated, opt-in)
- SHA-256 content checksums
- Secret buffers that are zeroed when released

Envelope text is base64 of a JSON object carrying salt, iv and data.
"""

import os
import hmac
import json
import base64
import hashlib
import secrets
from pathlib import Path
from typing import Optional

# Cryptography
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.exceptions import InvalidTag
from argon2.low_level import hash_secret_raw, Type

from .errors import EncryptionError, DecryptionError


# ============================================
# Security Constants
# ============================================

# PBKDF2 parameters
PBKDF2_ITERATIONS = 100_000
PASSWORD_HASH_LEN = 64
SALT_SIZE = 32

# Argon2id parameters (OWASP recommendations for high-security)
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 65536  # 64 MB
ARGON2_PARALLELISM = 4

# AES constants
AES_KEY_SIZE = 32
AES_CBC_IV_SIZE = 16
AES_GCM_IV_SIZE = 12  # 96 bits (recommended for GCM)

CIPHER_AES_CBC = "aes-256-cbc"
CIPHER_AES_GCM = "aes-256-gcm"
SUPPORTED_CIPHERS = (CIPHER_AES_CBC, CIPHER_AES_GCM)

KDF_PBKDF2 = "pbkdf2-sha512"
KDF_ARGON2ID = "argon2id"

# Secure file permissions (Unix only)
SECURE_FILE_MODE = 0o600  # Owner read/write only
SECURE_DIR_MODE = 0o700


def set_secure_permissions(filepath: Path, mode: int = SECURE_FILE_MODE) -> None:
    """
    Set restrictive permissions on Unix systems.

    Files get 0600 and directories 0700 (owner only).
    No-op on Windows (NTFS uses ACLs, not Unix permissions).
    """
    if os.name == 'posix':
        try:
            os.chmod(filepath, mode)
        except OSError:
            # Best effort - don't fail save operation if chmod fails
            pass


# ============================================
# Secret Buffers
# ============================================

class SecretBuffer:
    """
    Mutable byte buffer for key material.

    The contents are overwritten with zeros by wipe(), when a ``with``
    block exits, and when the buffer is garbage collected. Python may
    still hold transient copies (e.g. ``bytes(buf)``), so keep those
    short-lived.

    Usage:
        with tree.derive_private_key(path) as key:
            signature = sign(bytes(key), digest)
    """

    __slots__ = ("_buf",)

    def __init__(self, data: bytes | bytearray | str = b""):
        if isinstance(data, str):
            data = data.encode('utf-8')
        self._buf = bytearray(data)

    def __bytes__(self) -> bytes:
        return bytes(self._buf)

    def __len__(self) -> int:
        return len(self._buf)

    def __eq__(self, other) -> bool:
        if isinstance(other, SecretBuffer):
            other = other._buf
        if not isinstance(other, (bytes, bytearray)):
            return NotImplemented
        return hmac.compare_digest(bytes(self._buf), bytes(other))

    __hash__ = None

    def __repr__(self) -> str:
        return f"SecretBuffer(<{len(self._buf)} bytes>)"

    def __enter__(self) -> "SecretBuffer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __del__(self):
        """Attempt to clear sensitive data on destruction."""
        self.wipe()

    @property
    def wiped(self) -> bool:
        return not any(self._buf)

    def decode(self, encoding: str = 'utf-8') -> str:
        return self._buf.decode(encoding)

    def wipe(self) -> None:
        """Overwrite the buffer with zeros."""
        buf = getattr(self, "_buf", None)
        if buf is None:
            return
        for i in range(len(buf)):
            buf[i] = 0


# ============================================
# Randomness
# ============================================

def secure_random(length: int) -> bytes:
    """Cryptographically secure random bytes."""
    if length < 0:
        raise ValueError("length must be non-negative")
    return secrets.token_bytes(length)


def generate_entropy(bits: int = 256) -> bytes:
    """Entropy for a recovery phrase; bits must be a multiple of 32."""
    if bits <= 0 or bits % 32 != 0:
        raise ValueError("Entropy strength must be a multiple of 32")
    return secure_random(bits // 8)


# ============================================
# Key Derivation
# ============================================

def derive_key(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """
    Derive a 256-bit encryption key with PBKDF2-HMAC-SHA512.

    Deterministic: the same (password, salt) always yields the same key.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=AES_KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode('utf-8'))


def derive_key_argon2(password: str, salt: bytes) -> bytes:
    """
    Derive an encryption key from password using Argon2id.

    Memory-hard: each guess costs ~64MB RAM. Used by the GCM envelope.
    """
    return hash_secret_raw(
        secret=password.encode('utf-8'),
        salt=salt,
        time_cost=ARGON2_TIME_COST,
        memory_cost=ARGON2_MEMORY_COST,
        parallelism=ARGON2_PARALLELISM,
        hash_len=AES_KEY_SIZE,
        type=Type.ID
    )


def generate_password_hash(password: str, salt: Optional[str] = None) -> tuple[str, str]:
    """
    Hash a password for storage or comparison.

    Returns: (hash_hex, salt_hex). Pass salt_hex back in to re-check.
    """
    salt_bytes = bytes.fromhex(salt) if salt else secure_random(SALT_SIZE)
    digest = hashlib.pbkdf2_hmac(
        'sha512', password.encode('utf-8'), salt_bytes, PBKDF2_ITERATIONS, PASSWORD_HASH_LEN
    )
    return digest.hex(), salt_bytes.hex()


# ============================================
# Encryption
# ============================================

def _encode_envelope(envelope: dict) -> str:
    return base64.b64encode(json.dumps(envelope).encode('utf-8')).decode('ascii')


def _decode_envelope(text: str) -> dict:
    try:
        envelope = json.loads(base64.b64decode(text, validate=True).decode('utf-8'))
    except (ValueError, TypeError) as e:
        raise DecryptionError(f"Malformed encrypted envelope: {e}") from e
    if not isinstance(envelope, dict) or not {"salt", "iv", "data"} <= envelope.keys():
        raise DecryptionError("Malformed encrypted envelope: missing salt, iv or data")
    return envelope


def encrypt(plaintext: str, password: str, cipher: str = CIPHER_AES_CBC) -> str:
    """
    Encrypt text under a password.

    A fresh salt and IV are drawn on every call, so the same input never
    produces the same envelope twice.

    Returns: base64 envelope text.
    """
    if cipher not in SUPPORTED_CIPHERS:
        raise EncryptionError(f"Unsupported cipher: {cipher}")

    try:
        salt = secure_random(SALT_SIZE)
        data = plaintext.encode('utf-8')

        if cipher == CIPHER_AES_GCM:
            key = derive_key_argon2(password, salt)
            iv = secure_random(AES_GCM_IV_SIZE)
            ciphertext = AESGCM(key).encrypt(iv, data, None)
            kdf = KDF_ARGON2ID
        else:
            key = derive_key(password, salt)
            iv = secure_random(AES_CBC_IV_SIZE)
            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(data) + padder.finalize()
            encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
            kdf = KDF_PBKDF2
    except (ValueError, TypeError) as e:
        raise EncryptionError(f"Encryption failed: {e}") from e

    return _encode_envelope({
        "salt": salt.hex(),
        "iv": iv.hex(),
        "data": ciphertext.hex(),
        "cipher": cipher,
        "kdf": kdf,
    })


def decrypt(envelope_text: str, password: str) -> str:
    """
    Decrypt an envelope produced by encrypt().

    Raises: DecryptionError if the password is wrong or data is corrupted.
    CBC envelopes carry no integrity tag, so a wrong password can now and
    then yield padding-valid garbage; callers parsing the result must treat
    a parse failure as a wrong password too.
    """
    envelope = _decode_envelope(envelope_text)
    cipher = envelope.get("cipher", CIPHER_AES_CBC)

    try:
        salt = bytes.fromhex(envelope["salt"])
        iv = bytes.fromhex(envelope["iv"])
        ciphertext = bytes.fromhex(envelope["data"])

        if cipher == CIPHER_AES_GCM:
            key = derive_key_argon2(password, salt)
            plaintext = AESGCM(key).decrypt(iv, ciphertext, None)
        elif cipher == CIPHER_AES_CBC:
            key = derive_key(password, salt)
            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
        else:
            raise DecryptionError(f"Unsupported cipher: {cipher}")

        return plaintext.decode('utf-8')
    except DecryptionError:
        raise
    except (InvalidTag, ValueError, TypeError) as e:
        raise DecryptionError("Invalid password or corrupted data") from e


# ============================================
# Checksums
# ============================================

def checksum(data: str | bytes) -> str:
    """SHA-256 hex digest of the data."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def verify_checksum(data: str | bytes, digest: str) -> bool:
    """Check data against a digest from checksum()."""
    if not isinstance(digest, str):
        return False
    try:
        return hmac.compare_digest(checksum(data), digest.lower())
    except TypeError:
        # non-ASCII digest text
        return False


def double_sha256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()
