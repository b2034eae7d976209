"""
Crypto primitive tests: envelopes, key derivation, checksums, secret buffers.
"""

import base64
import json

import pytest

from wallet.crypto import (
    CIPHER_AES_CBC,
    CIPHER_AES_GCM,
    KDF_ARGON2ID,
    KDF_PBKDF2,
    SecretBuffer,
    checksum,
    decrypt,
    derive_key,
    double_sha256,
    encrypt,
    generate_entropy,
    generate_password_hash,
    secure_random,
    verify_checksum,
)
from wallet.errors import DecryptionError, EncryptionError


def _open_envelope(text: str) -> dict:
    return json.loads(base64.b64decode(text))


class TestEncryptDecrypt:
    """Password envelope round trips."""

    def test_round_trip(self):
        """Decrypt returns the exact plaintext."""
        envelope = encrypt("hello wallet", "pw")
        assert decrypt(envelope, "pw") == "hello wallet"

    def test_round_trip_unicode(self):
        text = "pässwörd-protected ✓"
        assert decrypt(encrypt(text, "pw"), "pw") == text

    def test_empty_plaintext(self):
        assert decrypt(encrypt("", "pw"), "pw") == ""

    def test_wrong_password(self):
        """Wrong password raises DecryptionError."""
        envelope = encrypt("a much longer secret that spans several cipher blocks", "right")
        with pytest.raises(DecryptionError):
            decrypt(envelope, "wrong")

    def test_fresh_salt_and_iv(self):
        """Same input never yields the same envelope."""
        a = encrypt("same", "pw")
        b = encrypt("same", "pw")
        assert a != b
        env_a, env_b = _open_envelope(a), _open_envelope(b)
        assert env_a["salt"] != env_b["salt"]
        assert env_a["iv"] != env_b["iv"]

    def test_envelope_fields(self):
        """Envelope is base64 JSON with hex salt, iv and data."""
        env = _open_envelope(encrypt("x", "pw"))
        assert env["cipher"] == CIPHER_AES_CBC
        assert env["kdf"] == KDF_PBKDF2
        assert len(bytes.fromhex(env["salt"])) == 32
        assert len(bytes.fromhex(env["iv"])) == 16
        assert len(bytes.fromhex(env["data"])) % 16 == 0

    def test_envelope_without_cipher_field(self):
        """Envelopes written without a cipher tag are read as CBC."""
        env = _open_envelope(encrypt("legacy", "pw"))
        del env["cipher"]
        del env["kdf"]
        legacy = base64.b64encode(json.dumps(env).encode()).decode()
        assert decrypt(legacy, "pw") == "legacy"

    def test_malformed_envelope(self):
        with pytest.raises(DecryptionError):
            decrypt("not base64 at all!!", "pw")
        with pytest.raises(DecryptionError):
            decrypt(base64.b64encode(b'{"salt": "00"}').decode(), "pw")

    def test_tampered_ciphertext(self):
        env = _open_envelope(encrypt("secret data", "pw"))
        env["data"] = "00" * (len(env["data"]) // 2)
        tampered = base64.b64encode(json.dumps(env).encode()).decode()
        with pytest.raises(DecryptionError):
            decrypt(tampered, "pw")

    def test_unsupported_cipher(self):
        with pytest.raises(EncryptionError):
            encrypt("x", "pw", cipher="rot13")


class TestAuthenticatedEnvelope:
    """AES-256-GCM envelopes keyed with Argon2id."""

    def test_round_trip(self):
        envelope = encrypt("gcm secret", "pw", cipher=CIPHER_AES_GCM)
        env = _open_envelope(envelope)
        assert env["cipher"] == CIPHER_AES_GCM
        assert env["kdf"] == KDF_ARGON2ID
        assert len(bytes.fromhex(env["iv"])) == 12
        assert decrypt(envelope, "pw") == "gcm secret"

    def test_wrong_password(self):
        envelope = encrypt("gcm secret", "pw", cipher=CIPHER_AES_GCM)
        with pytest.raises(DecryptionError):
            decrypt(envelope, "other")


class TestKeyDerivation:
    """PBKDF2 key and password hash derivation."""

    def test_derive_key_deterministic(self):
        salt = bytes(32)
        assert derive_key("pw", salt, iterations=1000) == derive_key("pw", salt, iterations=1000)
        assert len(derive_key("pw", salt, iterations=1000)) == 32

    def test_derive_key_depends_on_salt(self):
        assert derive_key("pw", bytes(32), 1000) != derive_key("pw", b"\x01" * 32, 1000)

    def test_password_hash_reproducible(self):
        digest, salt = generate_password_hash("pw")
        assert len(bytes.fromhex(digest)) == 64
        assert generate_password_hash("pw", salt) == (digest, salt)
        assert generate_password_hash("other", salt)[0] != digest


class TestChecksum:
    """SHA-256 checksums."""

    def test_checksum_known_value(self):
        assert checksum("") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

    def test_verify(self):
        digest = checksum("wallet data")
        assert verify_checksum("wallet data", digest)
        assert verify_checksum(b"wallet data", digest.upper())

    def test_single_byte_mutation_detected(self):
        digest = checksum("wallet data")
        assert not verify_checksum("wallet dat4", digest)

    def test_bad_digest_types(self):
        assert not verify_checksum("x", None)
        assert not verify_checksum("x", "ü" * 64)

    def test_double_sha256(self):
        assert double_sha256(b"").hex() == (
            "5df6e0e2761359d30a8275058e299fcc0381534545f55cf43e41983f5d4c9456"
        )


class TestRandomness:
    """Entropy generation."""

    @pytest.mark.parametrize("bits", [128, 256])
    def test_entropy_length(self, bits):
        assert len(generate_entropy(bits)) == bits // 8

    @pytest.mark.parametrize("bits", [0, 100, -32])
    def test_entropy_invalid_strength(self, bits):
        with pytest.raises(ValueError):
            generate_entropy(bits)

    def test_secure_random_unique(self):
        assert secure_random(32) != secure_random(32)


class TestSecretBuffer:
    """Wipeable byte buffers."""

    def test_wipe_zeroes_contents(self):
        buf = SecretBuffer(b"\x01\x02\x03")
        assert not buf.wiped
        buf.wipe()
        assert buf.wiped
        assert bytes(buf) == b"\x00\x00\x00"

    def test_context_manager_wipes(self):
        with SecretBuffer("seed words") as buf:
            assert buf.decode() == "seed words"
        assert buf.wiped

    def test_repr_hides_contents(self):
        buf = SecretBuffer(b"topsecret")
        assert "topsecret" not in repr(buf)
        assert "9 bytes" in repr(buf)

    def test_equality(self):
        assert SecretBuffer(b"abc") == b"abc"
        assert SecretBuffer(b"abc") == SecretBuffer(b"abc")
        assert SecretBuffer(b"abc") != b"abd"
