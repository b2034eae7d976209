"""
Coldkeep Networks - Currency registry and chain parameters.

Supports Bitcoin (mainnet + testnet) and Bitcoin-derived P2PKH chains.
Static table only: balances are tracked locally, never fetched.
"""

from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

# ============================================
# Network Parameters
# ============================================

@dataclass(frozen=True)
class NetworkParams:
    """Version bytes for addresses and extended keys on one chain."""
    name: str
    pubkey_hash: int        # P2PKH address version byte
    script_hash: int        # P2SH address version byte
    xpub: bytes             # BIP-32 public version bytes
    xprv: bytes             # BIP-32 private version bytes
    fork_id: Optional[int] = None  # Set for chains that sign with SIGHASH_FORKID


NETWORK_PARAMS = {
    "bitcoin": NetworkParams(
        name="bitcoin",
        pubkey_hash=0x00,
        script_hash=0x05,
        xpub=bytes.fromhex("0488b21e"),
        xprv=bytes.fromhex("0488ade4"),
    ),
    "testnet": NetworkParams(
        name="testnet",
        pubkey_hash=0x6f,
        script_hash=0xc4,
        xpub=bytes.fromhex("043587cf"),
        xprv=bytes.fromhex("04358394"),
    ),
    "litecoin": NetworkParams(
        name="litecoin",
        pubkey_hash=0x30,
        script_hash=0x32,
        xpub=bytes.fromhex("019da462"),
        xprv=bytes.fromhex("019d9cfe"),
    ),
    "dogecoin": NetworkParams(
        name="dogecoin",
        pubkey_hash=0x1e,
        script_hash=0x16,
        xpub=bytes.fromhex("02facafd"),
        xprv=bytes.fromhex("02fac398"),
    ),
    # Legacy (base58) address format, not CashAddr
    "bitcoincash": NetworkParams(
        name="bitcoincash",
        pubkey_hash=0x00,
        script_hash=0x05,
        xpub=bytes.fromhex("0488b21e"),
        xprv=bytes.fromhex("0488ade4"),
        fork_id=0,
    ),
    "dash": NetworkParams(
        name="dash",
        pubkey_hash=0x4c,
        script_hash=0x10,
        xpub=bytes.fromhex("0488b21e"),
        xprv=bytes.fromhex("0488ade4"),
    ),
}

BITCOIN = NETWORK_PARAMS["bitcoin"]
TESTNET = NETWORK_PARAMS["testnet"]


# ============================================
# Currencies
# ============================================

@dataclass(frozen=True)
class Currency:
    """A supported currency. Immutable and owned by the registry."""
    symbol: str
    name: str
    network: str            # "mainnet" or "testnet"
    decimals: int
    derivation_path: str    # BIP-44 account path, e.g. "m/44'/0'/0'"
    chain: str              # Key into NETWORK_PARAMS

    @property
    def params(self) -> NetworkParams:
        return NETWORK_PARAMS[self.chain]

    @property
    def is_testnet(self) -> bool:
        return self.network == "testnet"

    def __deepcopy__(self, memo) -> "Currency":
        # Immutable: copies of wallet records share registry entries
        return self

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Currency":
        """Rebuild from a stored record, preferring the registry entry."""
        known = get_currency(data.get("symbol", ""))
        if known is not None and known.to_dict() == {k: data.get(k) for k in known.to_dict()}:
            return known
        chain = data.get("chain") or ("testnet" if data.get("network") == "testnet" else "bitcoin")
        return cls(
            symbol=data["symbol"],
            name=data["name"],
            network=data["network"],
            decimals=data["decimals"],
            derivation_path=data["derivation_path"],
            chain=chain,
        )


SUPPORTED_CURRENCIES = [
    Currency(
        symbol="BTC",
        name="Bitcoin",
        network="mainnet",
        decimals=8,
        derivation_path="m/44'/0'/0'",
        chain="bitcoin",
    ),
    Currency(
        symbol="BTC-TEST",
        name="Bitcoin Testnet",
        network="testnet",
        decimals=8,
        derivation_path="m/44'/1'/0'",
        chain="testnet",
    ),
    Currency(
        symbol="LTC",
        name="Litecoin",
        network="mainnet",
        decimals=8,
        derivation_path="m/44'/2'/0'",
        chain="litecoin",
    ),
    Currency(
        symbol="DOGE",
        name="Dogecoin",
        network="mainnet",
        decimals=8,
        derivation_path="m/44'/3'/0'",
        chain="dogecoin",
    ),
    Currency(
        symbol="BCH",
        name="Bitcoin Cash",
        network="mainnet",
        decimals=8,
        derivation_path="m/44'/145'/0'",
        chain="bitcoincash",
    ),
    Currency(
        symbol="DASH",
        name="Dash",
        network="mainnet",
        decimals=8,
        derivation_path="m/44'/5'/0'",
        chain="dash",
    ),
]

# Recommended fee rates (smallest unit per byte)
RECOMMENDED_FEE_RATES = {
    "BTC": 20,
    "BTC-TEST": 1,
    "LTC": 10,
    "DOGE": 1000,   # DOGE has low unit value
    "BCH": 1,
    "DASH": 5,
}
DEFAULT_FEE_RATE = 10

# Legacy P2PKH size model (bytes)
TX_BASE_SIZE = 10
TX_INPUT_SIZE = 148
TX_OUTPUT_SIZE = 34


# ============================================
# Registry Functions
# ============================================

def get_currency(symbol: str) -> Optional[Currency]:
    """Get currency by symbol (case-insensitive)."""
    for currency in SUPPORTED_CURRENCIES:
        if currency.symbol.lower() == symbol.lower():
            return currency
    return None


def is_supported(symbol: str) -> bool:
    return get_currency(symbol) is not None


def get_all_currencies() -> list[Currency]:
    return list(SUPPORTED_CURRENCIES)


def get_mainnet_currencies() -> list[Currency]:
    return [c for c in SUPPORTED_CURRENCIES if c.network == "mainnet"]


def get_testnet_currencies() -> list[Currency]:
    return [c for c in SUPPORTED_CURRENCIES if c.network == "testnet"]


def get_recommended_fee_rate(currency: Currency) -> int:
    """Recommended fee rate for the currency, per byte."""
    return RECOMMENDED_FEE_RATES.get(currency.symbol, DEFAULT_FEE_RATE)


def estimate_transaction_size(input_count: int, output_count: int) -> int:
    """Estimated size in bytes of a P2PKH transaction."""
    return TX_BASE_SIZE + TX_INPUT_SIZE * input_count + TX_OUTPUT_SIZE * output_count


def calculate_fee(input_count: int, output_count: int, currency: Currency,
                  fee_rate: Optional[int] = None) -> int:
    """Fee = estimated size x rate (rate defaults to the recommended one)."""
    rate = fee_rate if fee_rate is not None else get_recommended_fee_rate(currency)
    return estimate_transaction_size(input_count, output_count) * rate


# ============================================
# Amount Utilities
# ============================================

def from_base_units(amount: int, currency: Currency) -> Decimal:
    """Smallest unit (e.g. satoshi) -> whole coins."""
    return Decimal(amount).scaleb(-currency.decimals)


def to_base_units(amount: Decimal | str | int, currency: Currency) -> int:
    """Whole coins -> smallest unit, rounded half-up."""
    value = Decimal(str(amount)).scaleb(currency.decimals)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def format_amount(amount: int, currency: Currency) -> str:
    """Format base units as e.g. '0.00150000 BTC'."""
    coins = from_base_units(amount, currency)
    return f"{coins:.{currency.decimals}f} {currency.symbol}"


def is_valid_amount(amount: Decimal | str | int, currency: Currency) -> bool:
    """Positive and representable in the currency's smallest unit."""
    try:
        value = Decimal(str(amount))
    except ArithmeticError:
        return False
    if not value.is_finite() or value <= 0:
        return False
    return value.scaleb(currency.decimals) == value.scaleb(currency.decimals).to_integral_value()


def format_address(address: str, chars: int = 8) -> str:
    """Shorten an address as 1LqBGSKu...KYYWeabA"""
    if len(address) <= chars * 2:
        return address
    return f"{address[:chars]}...{address[-chars:]}"
