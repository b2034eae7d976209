"""
Shared utility functions for Coldkeep.

Contains path helpers and settings loading used across packages.
"""

import os
import json
import logging
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

APP_DIR_ENV = "COLDKEEP_HOME"


def get_app_dir() -> Path:
    """Get the application data directory ($COLDKEEP_HOME or ~/.coldkeep)."""
    override = os.environ.get(APP_DIR_ENV)
    app_dir = Path(override).expanduser() if override else Path.home() / ".coldkeep"
    app_dir.mkdir(parents=True, exist_ok=True)
    return app_dir


def get_wallet_dir() -> Path:
    """Get the wallet storage directory."""
    return get_app_dir() / "wallets"


def get_settings_path() -> Path:
    """Get path to settings file."""
    return get_app_dir() / "settings.json"


def get_logs_dir() -> Path:
    """Get the logs directory."""
    logs_dir = get_app_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


@dataclass
class Settings:
    """User-editable settings (settings.json)."""
    cipher: str = "aes-256-cbc"         # or "aes-256-gcm" (authenticated)
    owns_address_max_index: int = 100
    log_level: str = "INFO"
    log_retention_days: int = 30
    wallet_dir: Optional[str] = None    # Defaults to get_wallet_dir()

    def resolved_wallet_dir(self) -> Path:
        if self.wallet_dir:
            return Path(self.wallet_dir).expanduser()
        return get_wallet_dir()

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings from disk, falling back to defaults."""
    settings_path = path or get_settings_path()
    if settings_path.exists():
        try:
            with open(settings_path, 'r') as f:
                return Settings.from_dict(json.load(f))
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Failed to load settings: {e}")
    return Settings()


def save_settings(settings: Settings, path: Optional[Path] = None) -> None:
    """Save settings to disk."""
    settings_path = path or get_settings_path()
    with open(settings_path, 'w') as f:
        json.dump(settings.to_dict(), f, indent=2)
