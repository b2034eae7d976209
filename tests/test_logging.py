"""
Log file naming and retention tests.
"""

from datetime import datetime, timedelta

from services.logging import cleanup_old_logs, get_log_file_path, setup_logging
from utils import Settings


def _touch_log(log_dir, days_ago: int):
    path = get_log_file_path(datetime.now() - timedelta(days=days_ago), log_dir=log_dir)
    path.write_text("log line\n")
    return path


class TestLogFiles:
    """Daily log files."""

    def test_file_name(self, tmp_path):
        path = get_log_file_path(datetime(2024, 3, 9), log_dir=tmp_path)
        assert path == tmp_path / "coldkeep-2024-03-09.log"

    def test_cleanup_removes_expired(self, tmp_path):
        today = _touch_log(tmp_path, 0)
        recent = _touch_log(tmp_path, 3)
        old = _touch_log(tmp_path, 40)
        assert cleanup_old_logs(30, log_dir=tmp_path) == 1
        assert today.exists() and recent.exists()
        assert not old.exists()

    def test_cleanup_zero_keeps_today(self, tmp_path):
        today = _touch_log(tmp_path, 0)
        _touch_log(tmp_path, 1)
        assert cleanup_old_logs(0, log_dir=tmp_path) == 1
        assert today.exists()

    def test_cleanup_skips_unrelated_files(self, tmp_path):
        stray = tmp_path / "coldkeep-notes.log"
        stray.write_text("x")
        assert cleanup_old_logs(0, log_dir=tmp_path) == 0
        assert stray.exists()

    def test_setup_from_settings(self, tmp_path):
        _touch_log(tmp_path, 10)
        assert setup_logging(Settings(log_retention_days=5), log_dir=tmp_path) == 1
