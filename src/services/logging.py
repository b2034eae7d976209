"""
Logging - Application logging configuration and disk persistence.

Provides:
- Python logging configuration with console and optional file output
- Log persistence to daily files: coldkeep-YYYY-MM-DD.log
- Automatic cleanup of old log files
- setup_logging(): both of the above driven by Settings
"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional
import logging

from utils import Settings, get_logs_dir

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def configure_logging(level: int | str = logging.INFO, log_dir: Optional[Path] = None) -> None:
    """
    Configure Python logging for the application.

    Sets up a root logger with console output and, when log_dir is given,
    a daily log file in that directory.

    Args:
        level: Logging level (default: INFO)
        log_dir: Directory for daily log files, or None for console only
    """
    root_logger = logging.getLogger()

    # Only configure if not already configured
    if root_logger.handlers:
        return

    root_logger.setLevel(level)

    # Console handler with simple format
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%H:%M:%S'))
    root_logger.addHandler(console_handler)

    if log_dir is not None:
        file_handler = logging.FileHandler(get_log_file_path(log_dir=log_dir), encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        root_logger.addHandler(file_handler)


def get_log_file_path(date: Optional[datetime] = None, log_dir: Optional[Path] = None) -> Path:
    """Get the log file path for a specific date (defaults to today)."""
    if date is None:
        date = datetime.now()
    filename = f"coldkeep-{date.strftime('%Y-%m-%d')}.log"
    return (log_dir or get_logs_dir()) / filename


def cleanup_old_logs(retention_days: int, log_dir: Optional[Path] = None) -> int:
    """
    Delete log files older than retention_days.

    Args:
        retention_days: Delete files older than this (0 = delete all but today)
        log_dir: Directory to clean (defaults to the app logs dir)

    Returns:
        Number of files deleted
    """
    if retention_days < 0:
        return 0

    logs_dir = log_dir or get_logs_dir()
    today = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
    cutoff_date = today - timedelta(days=retention_days)
    deleted_count = 0

    for file_path in logs_dir.glob("coldkeep-*.log"):
        # Parse date from filename
        try:
            file_date = datetime.strptime(file_path.stem.replace("coldkeep-", ""), "%Y-%m-%d")
        except ValueError:
            # Skip files that don't match expected format
            continue
        if file_date < cutoff_date:
            file_path.unlink()
            deleted_count += 1

    return deleted_count


def setup_logging(settings: Settings, log_dir: Optional[Path] = None) -> int:
    """
    Configure logging from settings and prune expired log files.

    Returns the number of old log files removed.
    """
    log_dir = log_dir or get_logs_dir()
    configure_logging(settings.log_level.upper(), log_dir=log_dir)
    deleted = cleanup_old_logs(settings.log_retention_days, log_dir=log_dir)
    if deleted:
        logging.getLogger(__name__).info(f"Removed {deleted} old log file(s)")
    return deleted
