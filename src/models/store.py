"""
Encrypted Store - Password-encrypted persistence for wallets and backups.

Layout under the storage root:
- wallets.encrypted   whole wallet collection (0600)
- backups/*.bak       timestamped snapshots, never overwritten (0700 dir)

Every write goes to a temp file first and is renamed into place, so a
reader never observes a partially written file.
"""

import os
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from wallet.crypto import (
    CIPHER_AES_CBC,
    SECURE_DIR_MODE,
    SECURE_FILE_MODE,
    checksum,
    decrypt,
    encrypt,
    set_secure_permissions,
    verify_checksum,
)
from wallet.errors import (
    CorruptedBackupError,
    DecryptionError,
    InvalidPasswordError,
    StorageIOError,
)
from .wallet import BACKUP_FORMAT_VERSION, BackupSnapshot, WalletRecord

logger = logging.getLogger(__name__)

WALLETS_FILENAME = "wallets.encrypted"
BACKUP_DIRNAME = "backups"
BACKUP_PREFIX = "wallet-backup-"
BACKUP_SUFFIX = ".bak"


def canonical_json(wallets: list[WalletRecord]) -> str:
    """Stable serialization of a wallet list (input to backup checksums)."""
    return json.dumps([w.to_dict() for w in wallets], sort_keys=True, separators=(",", ":"))


def _parse_wallets(items) -> list[WalletRecord]:
    if not isinstance(items, list):
        raise ValueError("wallet list expected")
    return [WalletRecord.from_dict(item) for item in items]


class EncryptedStore:
    """Atomic, password-encrypted storage for the wallet collection."""

    def __init__(self, root: str | Path, cipher: str = CIPHER_AES_CBC):
        self.root = Path(root)
        self.cipher = cipher
        self.wallets_file = self.root / WALLETS_FILENAME
        self.backup_dir = self.root / BACKUP_DIRNAME

    def initialize(self) -> None:
        """Create storage and backup directories (owner only). Idempotent."""
        try:
            self.root.mkdir(mode=SECURE_DIR_MODE, parents=True, exist_ok=True)
            self.backup_dir.mkdir(mode=SECURE_DIR_MODE, parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(f"Failed to initialize storage: {e}") from e
        set_secure_permissions(self.root, SECURE_DIR_MODE)
        set_secure_permissions(self.backup_dir, SECURE_DIR_MODE)

    def _write_atomic(self, path: Path, text: str) -> None:
        temp_path = path.with_name(path.name + '.tmp')
        try:
            fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, SECURE_FILE_MODE)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            temp_path.replace(path)
        except OSError as e:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError:
                pass
            raise StorageIOError(f"Failed to write {path.name}: {e}") from e
        set_secure_permissions(path)

    # ============================================
    # Wallet Collection
    # ============================================

    def save(self, wallets: list[WalletRecord], password: str) -> None:
        """Encrypt and atomically replace the wallet collection file."""
        self.initialize()
        data = json.dumps([w.to_dict() for w in wallets], indent=2)
        self._write_atomic(self.wallets_file, encrypt(data, password, self.cipher))
        logger.info(f"Saved {len(wallets)} wallet(s)")

    def load(self, password: str) -> list[WalletRecord]:
        """
        Load the wallet collection.

        Returns an empty list on first run (no file).

        Raises:
            InvalidPasswordError: wrong password, or content that does not parse
            StorageIOError: the file exists but cannot be read
        """
        if not self.wallets_file.exists():
            return []

        try:
            encrypted = self.wallets_file.read_text(encoding='utf-8')
        except OSError as e:
            raise StorageIOError(f"Failed to load wallets: {e}") from e

        try:
            return _parse_wallets(json.loads(decrypt(encrypted, password)))
        except DecryptionError as e:
            raise InvalidPasswordError("Invalid password") from e
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            # Unauthenticated cipher: garbage that survived unpadding
            raise InvalidPasswordError("Invalid password") from e

    def has_wallet_data(self) -> bool:
        return self.wallets_file.exists()

    def wallet_file_size(self) -> int:
        try:
            return self.wallets_file.stat().st_size
        except FileNotFoundError:
            return 0
        except OSError as e:
            raise StorageIOError(f"Failed to stat wallet file: {e}") from e

    def delete_wallet_data(self) -> None:
        """Delete the wallet collection file (use with care!). Backups stay."""
        try:
            self.wallets_file.unlink(missing_ok=True)
        except OSError as e:
            raise StorageIOError(f"Failed to delete wallet data: {e}") from e
        logger.info("Wallet data deleted")

    # ============================================
    # Backups
    # ============================================

    def _backup_path(self, timestamp: datetime, sequence: int = 0) -> Path:
        """Names sort lexically in write order: {stamp}-{sequence:03d}.bak"""
        stamp = timestamp.isoformat(timespec='milliseconds').replace("+00:00", "Z")
        stamp = stamp.replace(":", "-").replace(".", "-")
        return self.backup_dir / f"{BACKUP_PREFIX}{stamp}-{sequence:03d}{BACKUP_SUFFIX}"

    def create_backup(self, wallets: list[WalletRecord], password: str) -> Path:
        """
        Write an encrypted snapshot of the wallet list.

        Returns the backup path. Existing backups are never overwritten: a
        name clash within the same millisecond takes the next sequence number.
        """
        self.initialize()
        now = datetime.now(timezone.utc)
        snapshot = BackupSnapshot(
            wallets=list(wallets),
            checksum=checksum(canonical_json(wallets)),
            version=BACKUP_FORMAT_VERSION,
            timestamp=now.isoformat(),
        )
        encrypted = encrypt(json.dumps(snapshot.to_dict(), indent=2), password, self.cipher)

        sequence = 0
        path = self._backup_path(now, sequence)
        while True:
            try:
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, SECURE_FILE_MODE)
                break
            except FileExistsError:
                sequence += 1
                path = self._backup_path(now, sequence)
            except OSError as e:
                raise StorageIOError(f"Failed to create backup: {e}") from e

        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(encrypted)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            path.unlink(missing_ok=True)
            raise StorageIOError(f"Failed to write backup: {e}") from e

        logger.info(f"Backup created: {path.name}")
        return path

    def restore_from_backup(self, backup_path: str | Path, password: str) -> list[WalletRecord]:
        """
        Read and verify a backup. Persisted state is not touched.

        Raises:
            StorageIOError: backup missing or unreadable
            InvalidPasswordError: wrong password
            CorruptedBackupError: checksum mismatch
        """
        backup_path = Path(backup_path)
        try:
            encrypted = backup_path.read_text(encoding='utf-8')
        except FileNotFoundError as e:
            raise StorageIOError(f"Backup file not found: {backup_path}") from e
        except OSError as e:
            raise StorageIOError(f"Failed to read backup: {e}") from e

        try:
            data = json.loads(decrypt(encrypted, password))
            stored_checksum = data["checksum"]
            wallets = _parse_wallets(data["wallets"])
        except DecryptionError as e:
            raise InvalidPasswordError("Invalid password") from e
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise InvalidPasswordError("Invalid password") from e

        if not verify_checksum(canonical_json(wallets), stored_checksum):
            raise CorruptedBackupError(f"Backup data is corrupted: {backup_path.name}")

        logger.info(f"Restored {len(wallets)} wallet(s) from backup {backup_path.name}")
        return wallets

    def list_backups(self) -> list[str]:
        """Backup filenames, newest first."""
        if not self.backup_dir.exists():
            return []
        try:
            names = [p.name for p in self.backup_dir.iterdir() if p.name.endswith(BACKUP_SUFFIX)]
        except OSError as e:
            raise StorageIOError(f"Failed to list backups: {e}") from e
        return sorted(names, reverse=True)

    def backup_path(self, name: str) -> Path:
        """Resolve a backup filename from list_backups() to a path."""
        return self.backup_dir / Path(name).name
