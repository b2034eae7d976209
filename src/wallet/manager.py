"""
Wallet Manager - Multi-wallet custody.

Owns the master password, the wallet collection and a cache of
materialized key trees. Every mutation is a read-modify-persist of the
whole collection under one lock, and rolls back in memory if the
atomic write does not happen.
"""

import copy
import hmac
import time
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from networks import (
    Currency,
    calculate_fee,
    format_amount,
    get_all_currencies,
    get_currency,
)
from models.wallet import Address, BalanceInfo, WalletRecord
from models.store import EncryptedStore
from utils import Settings, load_settings
from .crypto import decrypt, encrypt, secure_random
from .errors import (
    DecryptionError,
    InsufficientFundsError,
    InvalidMnemonicError,
    InvalidPasswordError,
    NotInitializedError,
    ValidationError,
    WalletNotFoundError,
)
from .keytree import KeyTree
from .transaction import (
    SignedTransaction,
    TransactionTemplate,
    script_for_address,
    validate_outpoint,
)

logger = logging.getLogger(__name__)

# One payment output plus one change output
FEE_ESTIMATE_OUTPUTS = 2


class WalletManager:
    """
    Manages every wallet under one master password.

    Usage:
        manager = WalletManager(EncryptedStore(path))
        manager.initialize("master-password")
        created = manager.create_wallet("Savings")   # {"wallet_id", "phrase"}
        addr = manager.generate_new_address(created["wallet_id"], "BTC")
        tx = manager.create_transaction(wallet_id, "BTC", to_address, 50_000)
    """

    def __init__(self, store: Optional[EncryptedStore] = None,
                 settings: Optional[Settings] = None):
        """
        Initialize wallet manager.

        Args:
            store: Storage backend (default: from settings)
            settings: Settings (default: loaded from settings.json)
        """
        if settings is None:
            settings = load_settings()
        self.settings = settings
        self._store = store or EncryptedStore(settings.resolved_wallet_dir(), settings.cipher)
        self._password: Optional[str] = None
        self._wallets: dict[str, WalletRecord] = {}   # id -> record
        self._key_trees: dict[str, KeyTree] = {}      # id -> materialized tree
        self._lock = threading.RLock()

    @property
    def store(self) -> EncryptedStore:
        return self._store

    @property
    def is_initialized(self) -> bool:
        return self._password is not None

    # ============================================
    # Internals
    # ============================================

    def _require_password(self) -> str:
        if self._password is None:
            raise NotInitializedError("Wallet manager not initialized")
        return self._password

    @contextmanager
    def _mutation(self):
        """
        Mutual-exclusion scope for read-modify-persist.

        Restores the wallet map and password if the body raises, so a
        failed operation leaves memory matching what is on disk.
        """
        with self._lock:
            self._require_password()
            snapshot = copy.deepcopy(self._wallets)
            password = self._password
            try:
                yield
            except BaseException:
                self._wallets = snapshot
                self._password = password
                for wallet_id in list(self._key_trees):
                    if wallet_id not in self._wallets:
                        self._key_trees.pop(wallet_id).wipe()
                raise

    def _save(self) -> None:
        self._store.save(list(self._wallets.values()), self._require_password())

    def _get_record(self, wallet_id: str) -> WalletRecord:
        self._require_password()
        record = self._wallets.get(wallet_id)
        if record is None:
            raise WalletNotFoundError(wallet_id)
        return record

    def _load_key_tree(self, wallet_id: str) -> KeyTree:
        """Materialize (and cache) the key tree from the encrypted phrase."""
        record = self._get_record(wallet_id)
        tree = self._key_trees.get(wallet_id)
        if tree is not None:
            return tree

        try:
            tree = KeyTree(decrypt(record.encrypted_seed, self._require_password()))
        except (DecryptionError, InvalidMnemonicError) as e:
            raise InvalidPasswordError(f"Failed to load wallet {wallet_id}: invalid password") from e

        self._key_trees[wallet_id] = tree
        return tree

    def _generate_wallet_id(self) -> str:
        while True:
            wallet_id = f"wallet_{int(time.time() * 1000)}_{secure_random(8).hex()}"
            if wallet_id not in self._wallets:
                return wallet_id

    @staticmethod
    def _resolve_currency(currency: Currency | str) -> Currency:
        if isinstance(currency, Currency):
            return currency
        if isinstance(currency, str):
            resolved = get_currency(currency)
            if resolved is not None:
                return resolved
        raise ValidationError(f"Unsupported currency: {currency!r}")

    @staticmethod
    def _require_text(value, field: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{field} is required")
        return value

    @staticmethod
    def _require_positive_int(value, field: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError(f"{field} must be a positive integer, got {value!r}")
        return value

    # ============================================
    # Lifecycle
    # ============================================

    def initialize(self, password: str) -> None:
        """
        Unlock the store with the master password.

        A missing wallet file is a fresh, empty state.

        Raises:
            InvalidPasswordError: the stored collection does not decrypt
            StorageIOError: the wallet file cannot be read
        """
        self._require_text(password, "password")
        with self._lock:
            wallets = self._store.load(password)
            self._wipe_key_trees()
            self._wallets = {w.id: w for w in wallets}
            self._password = password

        if wallets:
            logger.info(f"Loaded {len(wallets)} wallet(s)")
        else:
            logger.info("No existing wallets found, starting fresh")

    def lock(self) -> None:
        """Forget the password and wipe all key trees from memory."""
        with self._lock:
            self._wipe_key_trees()
            self._wallets.clear()
            self._password = None

    def _wipe_key_trees(self) -> None:
        for tree in self._key_trees.values():
            tree.wipe()
        self._key_trees.clear()

    # ============================================
    # Wallets
    # ============================================

    def create_wallet(self, name: str, phrase: Optional[str] = None) -> dict:
        """
        Create a wallet from a new or supplied recovery phrase.

        Index-0 addresses are derived for every supported currency.

        Returns:
            {"wallet_id": ..., "phrase": ...}. This is the only time the
            plaintext phrase is handed out.
        """
        self._require_text(name, "name")
        with self._mutation():
            tree = KeyTree(phrase)
            wallet_id = self._generate_wallet_id()
            record = WalletRecord(
                id=wallet_id,
                name=name,
                encrypted_seed=encrypt(tree.phrase, self._password, self._store.cipher),
                addresses=[tree.derive_address(c, 0) for c in get_all_currencies()],
            )
            self._wallets[wallet_id] = record
            self._key_trees[wallet_id] = tree
            self._save()

        logger.info(f"Created wallet: {name} ({wallet_id})")
        return {"wallet_id": wallet_id, "phrase": tree.phrase}

    def restore_wallet(self, name: str, phrase: str) -> str:
        """
        Restore a wallet from its recovery phrase. Returns the new wallet id.

        Address usage history is not replayed; only index 0 is derived.
        """
        KeyTree.validate_phrase(phrase)
        result = self.create_wallet(name, phrase)
        logger.info(f"Restored wallet: {name}")
        return result["wallet_id"]

    def list_wallets(self) -> list[WalletRecord]:
        """All wallets, in creation order."""
        with self._lock:
            self._require_password()
            return copy.deepcopy(list(self._wallets.values()))

    def get_wallet(self, wallet_id: str) -> WalletRecord:
        with self._lock:
            return copy.deepcopy(self._get_record(wallet_id))

    def delete_wallet(self, wallet_id: str) -> None:
        """Remove a wallet and persist the remaining collection."""
        with self._mutation():
            self._get_record(wallet_id)
            del self._wallets[wallet_id]
            self._save()
            tree = self._key_trees.pop(wallet_id, None)

        if tree is not None:
            tree.wipe()
        logger.info(f"Deleted wallet: {wallet_id}")

    # ============================================
    # Addresses
    # ============================================

    def generate_new_address(self, wallet_id: str, currency: Currency | str) -> Address:
        """Derive and record the next receive address for a currency."""
        currency = self._resolve_currency(currency)
        with self._mutation():
            record = self._get_record(wallet_id)
            tree = self._load_key_tree(wallet_id)

            next_index = len(record.addresses_for(currency))
            address = tree.derive_address(currency, next_index)

            record.addresses.append(address)
            record.touch()
            self._save()
            result = copy.deepcopy(address)

        logger.info(f"Generated new {currency.symbol} address: {address.address}")
        return result

    def list_addresses(self, wallet_id: str,
                       currency: Optional[Currency | str] = None) -> list[Address]:
        with self._lock:
            record = self._get_record(wallet_id)
            if currency is None:
                return copy.deepcopy(record.addresses)
            return copy.deepcopy(record.addresses_for(self._resolve_currency(currency)))

    def update_address_balance(self, wallet_id: str, address: str, balance: int,
                               utxo_txid: Optional[str] = None, utxo_vout: int = 0) -> Address:
        """
        Record the last known balance (and funding outpoint) of an address.

        This is the only writer of the local balance cache.
        """
        if isinstance(balance, bool) or not isinstance(balance, int) or balance < 0:
            raise ValidationError(f"balance must be a non-negative integer, got {balance!r}")
        with self._mutation():
            record = self._get_record(wallet_id)
            entry = record.find_address(address)
            if entry is None:
                raise ValidationError(f"Address {address} does not belong to wallet {wallet_id}")

            entry.balance = balance
            entry.used = entry.used or balance > 0
            if utxo_txid is not None:
                validate_outpoint(utxo_txid, utxo_vout)
                entry.utxo_txid = utxo_txid
                entry.utxo_vout = utxo_vout
            record.touch()
            self._save()
            return copy.deepcopy(entry)

    def owns_address(self, wallet_id: str, address: str, currency: Currency | str,
                     max_index: Optional[int] = None) -> bool:
        """Probe indices 0..max_index for the address (bounded by settings)."""
        currency = self._resolve_currency(currency)
        if max_index is None:
            max_index = self.settings.owns_address_max_index
        with self._lock:
            return self._load_key_tree(wallet_id).owns_address(address, currency, max_index)

    def get_extended_public_key(self, wallet_id: str, currency: Currency | str) -> str:
        currency = self._resolve_currency(currency)
        with self._lock:
            return self._load_key_tree(wallet_id).extended_public_key(currency)

    # ============================================
    # Balances
    # ============================================

    def get_balance(self, wallet_id: str, currency: Currency | str) -> BalanceInfo:
        """
        Sum of cached address balances for a currency.

        A cache of the last recorded state, not a live balance.
        """
        currency = self._resolve_currency(currency)
        with self._lock:
            record = self._get_record(wallet_id)
            confirmed = sum(a.balance for a in record.addresses_for(currency))
        return BalanceInfo(
            confirmed=confirmed,
            unconfirmed=0,
            total=confirmed,
            currency=currency,
        )

    def get_coin_info(self, wallet_id: str) -> list[dict]:
        """Per-currency summary: first address, address count, balance."""
        with self._lock:
            record = self._get_record(wallet_id)
            info: dict[str, dict] = {}
            for address in record.addresses:
                symbol = address.currency.symbol
                if symbol not in info:
                    info[symbol] = {
                        "currency": address.currency.to_dict(),
                        "address": address.address,
                        "address_count": 0,
                        "balance": self.get_balance(wallet_id, address.currency).to_dict(),
                    }
                info[symbol]["address_count"] += 1
            return list(info.values())

    # ============================================
    # Transactions
    # ============================================

    def create_transaction(self, wallet_id: str, currency: Currency | str, to_address: str,
                           amount: int, fee_rate: Optional[int] = None) -> SignedTransaction:
        """
        Build and sign a spend offline from cached balances.

        Each funded address is one spendable unit. Broadcasting is up to
        the caller.

        Raises:
            ValidationError: bad amount, fee rate, or destination address
            InsufficientFundsError: balances do not cover amount + fee
        """
        currency = self._resolve_currency(currency)
        self._require_positive_int(amount, "amount")
        if fee_rate is not None:
            self._require_positive_int(fee_rate, "fee_rate")
        self._require_text(to_address, "to_address")

        with self._lock:
            self._require_password()
            record = self._get_record(wallet_id)
            tree = self._load_key_tree(wallet_id)

            addresses = record.addresses_for(currency)
            if not addresses:
                raise ValidationError(f"No {currency.symbol} addresses found in wallet {wallet_id}")
            payment_script = script_for_address(to_address, currency.params)

            spendable = [a for a in addresses if a.balance > 0]
            available = sum(a.balance for a in spendable)
            fee = calculate_fee(len(spendable), FEE_ESTIMATE_OUTPUTS, currency, fee_rate)
            needed = amount + fee

            if available < needed:
                raise InsufficientFundsError(
                    f"Insufficient balance. Available: {format_amount(available, currency)}, "
                    f"Needed: {format_amount(needed, currency)}",
                    available=available,
                    needed=needed,
                )

            template = TransactionTemplate()
            inputs_to_sign: list[tuple[str, int]] = []
            input_total = 0
            for address in spendable:
                if input_total >= needed:
                    break
                txid, vout = address.outpoint
                input_index = template.add_input(
                    txid, vout, script_for_address(address.address, currency.params),
                    value=address.balance,
                )
                inputs_to_sign.append((address.derivation_path, input_index))
                input_total += address.balance

            template.add_output(amount, payment_script)

            change = input_total - needed
            if change > 0:
                # First address of the currency receives change
                template.add_output(change, script_for_address(addresses[0].address, currency.params))

            signed = tree.sign(template, inputs_to_sign, fork_id=currency.params.fork_id)
            signed.fee = fee
            signed.change = change

        logger.info(f"Created transaction: {signed.tx_id}")
        return signed

    # ============================================
    # Backups
    # ============================================

    def create_backup(self) -> Path:
        with self._lock:
            return self._store.create_backup(list(self._wallets.values()), self._require_password())

    def list_backups(self) -> list[str]:
        self._require_password()
        return self._store.list_backups()

    def restore_from_backup(self, backup_path: str | Path) -> int:
        """
        Replace every wallet with the backup's contents (destructive).

        backup_path may be a path or a filename from list_backups(); a
        bare filename always refers to the backup directory.
        Returns the number of wallets restored.
        """
        path = Path(backup_path)
        if path.parent == Path("."):
            path = self._store.backup_path(path.name)

        with self._mutation():
            wallets = self._store.restore_from_backup(path, self._password)
            self._wallets = {w.id: w for w in wallets}
            self._save()
            stale_trees = list(self._key_trees.values())
            self._key_trees.clear()

        for tree in stale_trees:
            tree.wipe()
        logger.info(f"Restored {len(wallets)} wallet(s) from backup")
        return len(wallets)

    # ============================================
    # Password
    # ============================================

    def change_master_password(self, old_password: str, new_password: str) -> None:
        """
        Re-encrypt every phrase and the collection under a new password.

        Materialized key trees stay valid (cached by wallet id).
        """
        self._require_text(new_password, "new_password")
        with self._mutation():
            if self._store.has_wallet_data():
                self._store.load(old_password)
            elif not hmac.compare_digest(str(old_password).encode(), self._password.encode()):
                raise InvalidPasswordError("Invalid password")

            for record in self._wallets.values():
                try:
                    phrase = decrypt(record.encrypted_seed, old_password)
                except DecryptionError as e:
                    raise InvalidPasswordError(f"Failed to re-encrypt wallet {record.id}") from e
                record.encrypted_seed = encrypt(phrase, new_password, self._store.cipher)

            self._password = new_password
            self._save()

        logger.info("Master password changed successfully")
