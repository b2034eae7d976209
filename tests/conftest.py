"""
Coldkeep Test Fixtures
"""

import pytest

from networks import get_currency
from models.store import EncryptedStore
from utils import Settings
from wallet.manager import WalletManager


# BIP-39 test phrase (all-zero entropy)
ABANDON_12 = " ".join(["abandon"] * 11 + ["about"])
ABANDON_24 = " ".join(["abandon"] * 23 + ["art"])

# m/44'/0'/0'/0/0 for ABANDON_12
ABANDON_12_BTC_0 = "1LqBGSKuX5yYUonjxT5qGfpUsXKYYWeabA"

# Well-known P2SH address (bitcoin mainnet)
P2SH_ADDRESS = "3J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy"

PASSWORD = "correct horse battery staple"


@pytest.fixture
def phrase() -> str:
    return ABANDON_12


@pytest.fixture
def btc():
    return get_currency("BTC")


@pytest.fixture
def store(tmp_path) -> EncryptedStore:
    """Empty store rooted in a temp directory."""
    return EncryptedStore(tmp_path / "wallets")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(wallet_dir=str(tmp_path / "wallets"))


@pytest.fixture
def manager(store, settings) -> WalletManager:
    """Initialized manager with no wallets."""
    m = WalletManager(store, settings)
    m.initialize(PASSWORD)
    return m


@pytest.fixture
def funded_wallet(manager, btc):
    """Wallet from ABANDON_12 with two funded BTC addresses (100k + 50k sat)."""
    wallet_id = manager.create_wallet("Funded", ABANDON_12)["wallet_id"]
    second = manager.generate_new_address(wallet_id, btc)
    first = manager.list_addresses(wallet_id, btc)[0]
    manager.update_address_balance(wallet_id, first.address, 100_000)
    manager.update_address_balance(wallet_id, second.address, 50_000)
    return wallet_id
