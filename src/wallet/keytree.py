"""
Wallet KeyTree - BIP-39/32/44 key derivation and signing.

One recovery phrase -> one seed -> one root node. Addresses live at
{currency base path}/0/{index}; private keys are re-derived for every
signature and never stored.
"""

import logging
from typing import Optional

from mnemonic import Mnemonic
from bip_utils import (
    Bip32KeyNetVersions,
    Bip32PathError,
    Bip32Slip10Secp256k1,
    Hash160,
    P2PKHAddrEncoder,
)
import coincurve

from networks import BITCOIN, Currency, NetworkParams
from models.wallet import Address
from .crypto import SecretBuffer, generate_entropy
from .errors import InvalidMnemonicError, ValidationError
from .transaction import (
    SIGHASH_ALL,
    SIGHASH_FORKID,
    SignedTransaction,
    TransactionTemplate,
    p2pkh_script,
)

logger = logging.getLogger(__name__)


# ============================================
# Constants
# ============================================

VALID_WORD_COUNTS = (12, 24)
NEW_PHRASE_ENTROPY_BITS = 256  # 24 words
EXTERNAL_CHAIN = 0
DEFAULT_OWNERSHIP_PROBE = 100

_mnemo = Mnemonic("english")


def pubkey_hash(public_key: bytes) -> bytes:
    """HASH160 (RIPEMD-160 of SHA-256) of a public key."""
    return Hash160.QuickDigest(public_key)


class KeyTree:
    """
    Hierarchical deterministic key tree for one recovery phrase.

    Usage:
        tree = KeyTree()                      # fresh 24-word phrase
        tree = KeyTree(phrase)                # restore
        addr = tree.derive_address(btc, 0)
        signed = tree.sign(template, [(addr.derivation_path, 0)])
        tree.wipe()
    """

    def __init__(self, phrase: Optional[str] = None, network: NetworkParams = BITCOIN):
        """Validate or generate the phrase and derive seed and root node."""
        if phrase is not None:
            self.validate_phrase(phrase)
            self._phrase = SecretBuffer(phrase)
        else:
            with SecretBuffer(generate_entropy(NEW_PHRASE_ENTROPY_BITS)) as entropy:
                self._phrase = SecretBuffer(_mnemo.to_mnemonic(bytes(entropy)))

        self._seed = SecretBuffer(Mnemonic.to_seed(self._phrase.decode(), passphrase=""))
        self.network = network
        self._roots: dict[str, Bip32Slip10Secp256k1] = {}
        self._accounts: dict[tuple[str, str], Bip32Slip10Secp256k1] = {}
        self._wiped = False
        self._root_for(network)

    # ============================================
    # Phrase
    # ============================================

    @staticmethod
    def is_valid_phrase(phrase: str) -> bool:
        if not isinstance(phrase, str):
            return False
        if len(phrase.split(" ")) not in VALID_WORD_COUNTS:
            return False
        return _mnemo.check(phrase)

    @classmethod
    def validate_phrase(cls, phrase: str) -> None:
        """Raises InvalidMnemonicError unless phrase is a 12/24-word BIP-39 phrase."""
        if not cls.is_valid_phrase(phrase):
            raise InvalidMnemonicError("Invalid mnemonic phrase")

    @property
    def phrase(self) -> str:
        """The recovery phrase (sensitive - only show during backup!)."""
        self._require_open()
        return self._phrase.decode()

    @property
    def word_count(self) -> int:
        return len(self.phrase.split(" "))

    # ============================================
    # Derivation
    # ============================================

    def _require_open(self) -> None:
        if self._wiped:
            raise ValidationError("Key tree has been wiped")

    def _root_for(self, params: NetworkParams) -> Bip32Slip10Secp256k1:
        self._require_open()
        root = self._roots.get(params.name)
        if root is None:
            root = Bip32Slip10Secp256k1.FromSeed(
                bytes(self._seed), Bip32KeyNetVersions(params.xpub, params.xprv)
            )
            self._roots[params.name] = root
        return root

    def _node(self, path: str, params: Optional[NetworkParams] = None) -> Bip32Slip10Secp256k1:
        try:
            return self._root_for(params or self.network).DerivePath(path)
        except (Bip32PathError, ValueError) as e:
            raise ValidationError(f"Invalid derivation path '{path}': {e}") from e

    def _account(self, currency: Currency) -> Bip32Slip10Secp256k1:
        key = (currency.symbol, currency.derivation_path)
        node = self._accounts.get(key)
        if node is None:
            node = self._node(currency.derivation_path, currency.params)
            self._accounts[key] = node
        return node

    def derive_address(self, currency: Currency, index: int) -> Address:
        """
        Derive the receive address at the given index.

        Pure: the same (phrase, currency, index) always gives the same address.
        """
        if index < 0:
            raise ValidationError(f"Address index must be non-negative, got {index}")

        node = self._account(currency).DerivePath(f"{EXTERNAL_CHAIN}/{index}")
        public_key = node.PublicKey().RawCompressed().ToBytes()
        address = P2PKHAddrEncoder.EncodeKey(
            public_key, net_ver=bytes([currency.params.pubkey_hash])
        )
        return Address(
            address=address,
            derivation_path=f"{currency.derivation_path}/{EXTERNAL_CHAIN}/{index}",
            public_key=public_key.hex(),
            currency=currency,
        )

    def derive_addresses(self, currency: Currency, count: int, start: int = 0) -> list[Address]:
        return [self.derive_address(currency, start + i) for i in range(count)]

    def derive_private_key(self, path: str) -> SecretBuffer:
        """
        Re-derive the private key at a full path.

        WARNING: Handle with extreme care! Wipe the buffer after signing.
        """
        return SecretBuffer(self._node(path).PrivateKey().Raw().ToBytes())

    def derive_public_key(self, path: str) -> bytes:
        return self._node(path).PublicKey().RawCompressed().ToBytes()

    def master_public_key(self) -> str:
        return self._root_for(self.network).PublicKey().ToExtended()

    def extended_public_key(self, currency: Currency) -> str:
        """Account-level xpub for watch-only use."""
        return self._account(currency).PublicKey().ToExtended()

    def owns_address(self, address: str, currency: Currency,
                     max_index: int = DEFAULT_OWNERSHIP_PROBE) -> bool:
        """
        Check whether address is one of ours at index 0..max_index.

        Linear probe: cost grows with max_index, so callers must bound it.
        """
        for index in range(max_index + 1):
            if self.derive_address(currency, index).address == address:
                return True
        return False

    # ============================================
    # Signing
    # ============================================

    def sign(self, template: TransactionTemplate,
             inputs: list[tuple[str, int]],
             fork_id: Optional[int] = None) -> SignedTransaction:
        """
        Sign each (derivation_path, input_index) and finalize.

        With fork_id set (Bitcoin Cash), inputs are signed with
        SIGHASH_ALL|SIGHASH_FORKID over the value-committing digest, so
        every input must carry the amount it spends.

        Raises: ValidationError if a key does not control its input or an
        input is left unsigned.
        """
        hash_type = SIGHASH_ALL if fork_id is None else SIGHASH_ALL | SIGHASH_FORKID

        for path, input_index in inputs:
            public_key = self.derive_public_key(path)
            txin = template.inputs[input_index]
            if txin.script_code != p2pkh_script(pubkey_hash(public_key)):
                raise ValidationError(f"Key at {path} does not control input {input_index}")

            if fork_id is None:
                digest = template.signature_hash(input_index, hash_type)
            else:
                if txin.value <= 0:
                    raise ValidationError(f"Input {input_index} has no value to commit to")
                digest = template.signature_hash_forkid(input_index, fork_id, hash_type)

            with self.derive_private_key(path) as private_key:
                signature = coincurve.PrivateKey(bytes(private_key)).sign(digest, hasher=None)
            template.set_script_sig(input_index, signature, public_key, hash_type)

        if not template.is_finalized:
            raise ValidationError("Transaction has unsigned inputs")

        logger.debug(f"Signed {len(inputs)} input(s)")
        return SignedTransaction(
            raw_tx=template.to_hex(),
            tx_id=template.tx_id(),
            inputs=len(template.inputs),
        )

    # ============================================
    # Security: Memory Cleanup
    # ============================================

    def wipe(self) -> None:
        """
        Clear phrase and seed from memory.

        After wiping, the tree cannot derive or sign.
        """
        if hasattr(self, '_phrase'):
            self._phrase.wipe()
        if hasattr(self, '_seed'):
            self._seed.wipe()
        if hasattr(self, '_roots'):
            self._roots.clear()
            self._accounts.clear()
        self._wiped = True

    def __del__(self):
        """Attempt to clear sensitive data on destruction."""
        self.wipe()
