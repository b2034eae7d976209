"""
Wallet Transactions - Offline legacy transaction encoding.

Builds unsigned pay-to-public-key-hash spends, computes the SIGHASH_ALL
digests that KeyTree signs (legacy, or SIGHASH_FORKID on chains that
require it), and serializes the finalized transaction ready for external
broadcast.
"""

import struct
from dataclasses import dataclass, field
from typing import Optional

from bip_utils import Base58Decoder, Base58ChecksumError

from networks import NetworkParams, estimate_transaction_size
from .crypto import double_sha256
from .errors import ValidationError


# ============================================
# Script Constants
# ============================================

OP_DUP = 0x76
OP_HASH160 = 0xa9
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_CHECKSIG = 0xac
OP_PUSHDATA1 = 0x4c

SIGHASH_ALL = 0x01
SIGHASH_FORKID = 0x40
SEQUENCE_FINAL = 0xFFFFFFFF
TX_VERSION = 1

HASH160_SIZE = 20


# ============================================
# Encoding Helpers
# ============================================

def compact_size(n: int) -> bytes:
    """Bitcoin variable-length integer."""
    if n < 0xfd:
        return struct.pack("<B", n)
    if n <= 0xffff:
        return b"\xfd" + struct.pack("<H", n)
    if n <= 0xffffffff:
        return b"\xfe" + struct.pack("<I", n)
    return b"\xff" + struct.pack("<Q", n)


def push_data(data: bytes) -> bytes:
    """Script opcode(s) pushing data onto the stack."""
    if len(data) < OP_PUSHDATA1:
        return bytes([len(data)]) + data
    if len(data) <= 0xff:
        return bytes([OP_PUSHDATA1, len(data)]) + data
    raise ValueError("push_data supports at most 255 bytes")


def p2pkh_script(pubkey_hash: bytes) -> bytes:
    return bytes([OP_DUP, OP_HASH160]) + push_data(pubkey_hash) + bytes([OP_EQUALVERIFY, OP_CHECKSIG])


def p2sh_script(script_hash: bytes) -> bytes:
    return bytes([OP_HASH160]) + push_data(script_hash) + bytes([OP_EQUAL])


def script_for_address(address: str, params: NetworkParams) -> bytes:
    """
    Output script paying to a base58 address on the given network.

    Raises: ValidationError for malformed addresses, bad checksums, or
    addresses that belong to another network.
    """
    try:
        payload = Base58Decoder.CheckDecode(address)
    except (ValueError, TypeError, Base58ChecksumError) as e:
        raise ValidationError(f"Invalid address '{address}': {e}") from e

    if len(payload) != 1 + HASH160_SIZE:
        raise ValidationError(f"Invalid address '{address}': unexpected length")

    version, digest = payload[0], payload[1:]
    if version == params.pubkey_hash:
        return p2pkh_script(digest)
    if version == params.script_hash:
        return p2sh_script(digest)
    raise ValidationError(f"Address '{address}' is not valid on {params.name}")


def is_valid_address(address: str, params: NetworkParams) -> bool:
    try:
        script_for_address(address, params)
        return True
    except ValidationError:
        return False


def _txid_bytes(txid: str) -> bytes:
    try:
        raw = bytes.fromhex(txid)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid transaction id: {txid!r}") from e
    if len(raw) != 32:
        raise ValidationError(f"Invalid transaction id: {txid!r}")
    # Displayed ids are byte-reversed
    return raw[::-1]


def validate_outpoint(txid: str, vout: int) -> None:
    """Raises ValidationError unless (txid, vout) can be spent as an input."""
    _txid_bytes(txid)
    if isinstance(vout, bool) or not isinstance(vout, int) or not 0 <= vout <= 0xFFFFFFFF:
        raise ValidationError(f"Invalid output index: {vout!r}")


# ============================================
# Transaction Template
# ============================================

@dataclass
class TxInput:
    txid: str
    vout: int
    script_code: bytes              # scriptPubKey of the output being spent
    script_sig: bytes = b""
    sequence: int = SEQUENCE_FINAL
    value: int = 0                  # Amount of the output being spent

    def outpoint_bytes(self) -> bytes:
        return _txid_bytes(self.txid) + struct.pack("<I", self.vout)

    def serialize(self, script_sig: Optional[bytes] = None) -> bytes:
        script = self.script_sig if script_sig is None else script_sig
        return (
            self.outpoint_bytes()
            + compact_size(len(script)) + script
            + struct.pack("<I", self.sequence)
        )


@dataclass
class TxOutput:
    value: int
    script: bytes

    def serialize(self) -> bytes:
        return struct.pack("<q", self.value) + compact_size(len(self.script)) + self.script


@dataclass
class TransactionTemplate:
    """An unsigned (or partially signed) legacy transaction."""
    inputs: list[TxInput] = field(default_factory=list)
    outputs: list[TxOutput] = field(default_factory=list)
    version: int = TX_VERSION
    locktime: int = 0

    def add_input(self, txid: str, vout: int, script_code: bytes, value: int = 0) -> int:
        """Append an input and return its index. value is needed for FORKID signing."""
        validate_outpoint(txid, vout)
        if value < 0:
            raise ValidationError(f"Input value must be non-negative, got {value}")
        self.inputs.append(TxInput(txid=txid, vout=vout, script_code=script_code, value=value))
        return len(self.inputs) - 1

    def add_output(self, value: int, script: bytes) -> int:
        if value <= 0:
            raise ValidationError(f"Output value must be positive, got {value}")
        self.outputs.append(TxOutput(value=value, script=script))
        return len(self.outputs) - 1

    @property
    def is_finalized(self) -> bool:
        return bool(self.inputs) and all(txin.script_sig for txin in self.inputs)

    def _serialize(self, script_sigs: list[bytes]) -> bytes:
        parts = [struct.pack("<i", self.version), compact_size(len(self.inputs))]
        parts.extend(txin.serialize(sig) for txin, sig in zip(self.inputs, script_sigs))
        parts.append(compact_size(len(self.outputs)))
        parts.extend(txout.serialize() for txout in self.outputs)
        parts.append(struct.pack("<I", self.locktime))
        return b"".join(parts)

    def signature_hash(self, index: int, hash_type: int = SIGHASH_ALL) -> bytes:
        """Legacy signature digest for one input."""
        if not 0 <= index < len(self.inputs):
            raise IndexError(f"Input index {index} out of range")
        script_sigs = [
            txin.script_code if i == index else b""
            for i, txin in enumerate(self.inputs)
        ]
        preimage = self._serialize(script_sigs) + struct.pack("<I", hash_type)
        return double_sha256(preimage)

    def signature_hash_forkid(self, index: int, fork_id: int = 0,
                              hash_type: int = SIGHASH_ALL | SIGHASH_FORKID) -> bytes:
        """
        Replay-protected digest (BIP143 layout) used by Bitcoin Cash.

        Commits to the amount of the spent output, so inputs must carry
        their value.
        """
        if not 0 <= index < len(self.inputs):
            raise IndexError(f"Input index {index} out of range")
        txin = self.inputs[index]
        hash_prevouts = double_sha256(b"".join(i.outpoint_bytes() for i in self.inputs))
        hash_sequence = double_sha256(b"".join(struct.pack("<I", i.sequence) for i in self.inputs))
        hash_outputs = double_sha256(b"".join(o.serialize() for o in self.outputs))
        preimage = (
            struct.pack("<i", self.version)
            + hash_prevouts
            + hash_sequence
            + txin.outpoint_bytes()
            + compact_size(len(txin.script_code)) + txin.script_code
            + struct.pack("<q", txin.value)
            + struct.pack("<I", txin.sequence)
            + hash_outputs
            + struct.pack("<I", self.locktime)
            + struct.pack("<I", (fork_id << 8) | hash_type)
        )
        return double_sha256(preimage)

    def set_script_sig(self, index: int, signature: bytes, public_key: bytes,
                       hash_type: int = SIGHASH_ALL) -> None:
        """Attach a P2PKH unlocking script (DER signature + pubkey)."""
        self.inputs[index].script_sig = push_data(signature + bytes([hash_type])) + push_data(public_key)

    def serialize(self) -> bytes:
        return self._serialize([txin.script_sig for txin in self.inputs])

    def to_hex(self) -> str:
        return self.serialize().hex()

    def tx_id(self) -> str:
        return double_sha256(self.serialize())[::-1].hex()

    def estimated_size(self) -> int:
        return estimate_transaction_size(len(self.inputs), len(self.outputs))


@dataclass
class SignedTransaction:
    """A finalized transaction ready for external broadcast."""
    raw_tx: str
    tx_id: str
    fee: int = 0
    inputs: int = 0
    change: int = 0

    def to_dict(self) -> dict:
        return {
            "raw_tx": self.raw_tx,
            "tx_id": self.tx_id,
            "fee": self.fee,
            "inputs": self.inputs,
            "change": self.change,
        }
