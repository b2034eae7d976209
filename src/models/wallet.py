"""
Wallet records.

Persisted shape of wallets and their derived addresses. Only the
recovery phrase is secret, and it is stored as an encrypted envelope.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Optional

from networks import Currency


BACKUP_FORMAT_VERSION = "1.0.0"

# Placeholder outpoint when no funding transaction was recorded locally
NULL_TXID = "00" * 32


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Address:
    """A derived address and its locally cached state."""
    address: str
    derivation_path: str            # Full path, e.g. "m/44'/0'/0'/0/3"
    public_key: str                 # Compressed public key (hex)
    currency: Currency
    balance: int = 0                # Smallest unit (satoshi)
    used: bool = False
    utxo_txid: Optional[str] = None  # Funding outpoint, if recorded
    utxo_vout: int = 0

    @property
    def index(self) -> int:
        return int(self.derivation_path.rsplit("/", 1)[-1])

    @property
    def outpoint(self) -> tuple[str, int]:
        """(txid, vout) funding this address; placeholders keep vout unique per index."""
        if self.utxo_txid is None:
            return (NULL_TXID, self.index)
        return (self.utxo_txid, self.utxo_vout)

    def to_dict(self) -> dict:
        d = {
            "address": self.address,
            "derivation_path": self.derivation_path,
            "public_key": self.public_key,
            "balance": self.balance,
            "used": self.used,
            "currency": self.currency.to_dict(),
        }
        if self.utxo_txid is not None:
            d["utxo_txid"] = self.utxo_txid
            d["utxo_vout"] = self.utxo_vout
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "Address":
        return cls(
            address=data["address"],
            derivation_path=data["derivation_path"],
            public_key=data["public_key"],
            currency=Currency.from_dict(data["currency"]),
            balance=int(data.get("balance", 0)),
            used=bool(data.get("used", False)),
            utxo_txid=data.get("utxo_txid"),
            utxo_vout=int(data.get("utxo_vout", 0)),
        )


@dataclass
class WalletRecord:
    """One wallet: encrypted phrase plus its append-only address list."""
    id: str
    name: str
    encrypted_seed: str
    addresses: list[Address] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)
    last_used: str = field(default_factory=utc_now)

    def addresses_for(self, currency: Currency) -> list[Address]:
        return [a for a in self.addresses if a.currency.symbol == currency.symbol]

    def find_address(self, address: str) -> Optional[Address]:
        for entry in self.addresses:
            if entry.address == address:
                return entry
        return None

    def touch(self) -> None:
        self.last_used = utc_now()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "encrypted_seed": self.encrypted_seed,
            "addresses": [a.to_dict() for a in self.addresses],
            "created_at": self.created_at,
            "last_used": self.last_used,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WalletRecord":
        return cls(
            id=data["id"],
            name=data["name"],
            encrypted_seed=data["encrypted_seed"],
            addresses=[Address.from_dict(a) for a in data.get("addresses", [])],
            created_at=data.get("created_at", ""),
            last_used=data.get("last_used", ""),
        )


@dataclass
class BackupSnapshot:
    """Full copy of the wallet list with a checksum over its plaintext."""
    wallets: list[WalletRecord]
    checksum: str
    version: str = BACKUP_FORMAT_VERSION
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "wallets": [w.to_dict() for w in self.wallets],
            "version": self.version,
            "timestamp": self.timestamp,
            "checksum": self.checksum,
        }


@dataclass
class BalanceInfo:
    """Cached balance; unconfirmed is always 0 (no chain sync)."""
    confirmed: int
    unconfirmed: int
    total: int
    currency: Currency

    def to_dict(self) -> dict:
        return {
            "confirmed": self.confirmed,
            "unconfirmed": self.unconfirmed,
            "total": self.total,
            "currency": self.currency.to_dict(),
        }
