"""Unit tests for the audit log module."""

import os
import threading
import time
from datetime import datetime, timedelta, timezone

from credstore.audit import AuditLogger


class TestAuditLoggerInit:
    """Tests for AuditLogger initialization."""

    def test_init_creates_directory(self, temp_store_dir):
        """Test that init creates a private log directory."""
        log_path = temp_store_dir / "subdir" / "audit.log"
        AuditLogger(log_path)

        assert log_path.parent.exists()
        assert oct(log_path.parent.stat().st_mode)[-3:] == "700"

    def test_init_keeps_existing_directory_mode(self, temp_store_dir):
        """Test that an existing directory, e.g. a shared sticky one, is left alone."""
        shared = temp_store_dir / "shared"
        shared.mkdir()
        shared.chmod(0o1777)

        AuditLogger(shared / "audit.log")

        assert shared.stat().st_mode & 0o7777 == 0o1777
        assert oct((shared / "audit.log").stat().st_mode)[-3:] == "600"

    def test_init_creates_log_file(self, temp_store_dir):
        """Test that init creates a 0600 log file."""
        log_path = temp_store_dir / "audit.log"
        AuditLogger(log_path)

        assert log_path.exists()
        assert oct(log_path.stat().st_mode)[-3:] == "600"

    def test_init_existing_log_file(self, temp_store_dir):
        """Test init keeps existing content."""
        log_path = temp_store_dir / "audit.log"
        log_path.write_text("existing content\n")

        AuditLogger(log_path)

        assert "existing content" in log_path.read_text()


class TestLogTransaction:
    """Tests for log_transaction."""

    def test_format(self, audit_logger):
        """Test log line format."""
        audit_logger.log_transaction("PUT", "db-prod", "COMMITTED", pid=4242, command="credstore")

        line = audit_logger.read_recent(1)[0]
        parts = line.strip().split()
        # Format: TIMESTAMP [PID/command] RESULT ACTION key
        assert len(parts) == 5
        assert parts[0].endswith("Z") and "T" in parts[0]
        assert parts[1] == "[4242/credstore]"
        assert parts[2] == "COMMITTED"
        assert parts[3] == "PUT"
        assert parts[4] == "db-prod"

    def test_reason(self, audit_logger):
        audit_logger.log_transaction("GET", "missing", "ABORTED", reason="NOT_FOUND")
        assert audit_logger.read_recent(1)[0].strip().endswith("ABORTED GET missing NOT_FOUND")

    def test_default_pid(self, audit_logger):
        audit_logger.log_transaction("LIST", "*", "READ")
        assert f"[{os.getpid()}/credstore]" in audit_logger.read_recent(1)[0]

    def test_line_breaks_in_key_escaped(self, audit_logger):
        """Test a hostile key cannot forge extra log lines."""
        audit_logger.log_transaction("GET", "a\nfake COMMITTED PUT x", "ABORTED")
        assert len(audit_logger.read_recent(10)) == 1

    def test_thread_safety(self, audit_logger):
        """Test concurrent logging loses no lines."""
        errors = []

        def log_entries():
            try:
                for i in range(10):
                    audit_logger.log_transaction("GET", f"key/{i}", "READ")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=log_entries) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(audit_logger.read_recent(100)) == 50


class TestLogRotation:
    """Tests for log rotation."""

    def _age_log(self, audit_logger, days):
        mtime = time.time() - days * 86400
        os.utime(audit_logger.log_path, (mtime, mtime))

    def test_rotation_moves_old_log(self, audit_logger):
        """Test a log last written on a previous day is rotated."""
        audit_logger.log_transaction("PUT", "old_entry", "COMMITTED")
        self._age_log(audit_logger, 2)
        audit_logger._last_rotation_check = None

        audit_logger._check_rotation()

        rotated = list(audit_logger.log_path.parent.glob("audit.log.*"))
        assert len(rotated) == 1
        assert "old_entry" in rotated[0].read_text()
        assert audit_logger.log_path.exists()
        assert audit_logger.log_path.read_text() == ""

    def test_rotation_not_needed_same_day(self, audit_logger):
        """Test no rotation when the log is from today."""
        audit_logger.log_transaction("PUT", "k", "COMMITTED")

        audit_logger._check_rotation()

        assert list(audit_logger.log_path.parent.glob("audit.log.*")) == []

    def test_rotation_checked_at_most_hourly(self, audit_logger):
        # log_transaction has just run a check
        audit_logger.log_transaction("PUT", "k", "COMMITTED")
        self._age_log(audit_logger, 2)

        audit_logger._check_rotation()
        assert list(audit_logger.log_path.parent.glob("audit.log.*")) == []


class TestLogCleanup:
    """Tests for old log cleanup."""

    def test_cleanup_removes_old_logs(self, temp_store_dir):
        """Test that rotated logs past retention are removed."""
        logger = AuditLogger(temp_store_dir / "audit.log", retention_days=7)

        old_date = datetime.now(timezone.utc) - timedelta(days=10)
        old_log = temp_store_dir / f"audit.log.{old_date.strftime('%Y%m%d')}"
        old_log.write_text("old content")

        recent_date = datetime.now(timezone.utc) - timedelta(days=2)
        recent_log = temp_store_dir / f"audit.log.{recent_date.strftime('%Y%m%d')}"
        recent_log.write_text("recent content")

        logger._cleanup_old_logs()

        assert not old_log.exists()
        assert recent_log.exists()
        assert logger.log_path.exists()

    def test_cleanup_ignores_unknown_suffix(self, audit_logger):
        stray = audit_logger.log_path.parent / "audit.log.backup"
        stray.write_text("keep me")
        audit_logger._cleanup_old_logs()
        assert stray.exists()


class TestReadRecent:
    """Tests for reading recent log entries."""

    def test_returns_last_lines(self, audit_logger):
        for i in range(5):
            audit_logger.log_transaction("GET", f"key/{i}", "READ")

        recent = audit_logger.read_recent(3)

        assert len(recent) == 3
        assert "key/2" in recent[0]
        assert "key/4" in recent[-1]

    def test_empty_log(self, audit_logger):
        assert audit_logger.read_recent(10) == []

    def test_file_removed(self, audit_logger):
        audit_logger.log_path.unlink()
        assert audit_logger.read_recent(10) == []


class TestGetLogFiles:
    """Tests for listing log files."""

    def test_current_first_then_newest_rotated(self, audit_logger):
        audit_logger.log_transaction("GET", "k", "READ")

        for i in range(3):
            date = datetime.now(timezone.utc) - timedelta(days=i + 1)
            (audit_logger.log_path.parent / f"audit.log.{date.strftime('%Y%m%d')}").write_text(f"content {i}")

        logs = audit_logger.get_log_files()

        assert len(logs) == 4
        assert logs[0].name == "audit.log"
        assert logs[1].read_text() == "content 0"
        assert logs[3].read_text() == "content 2"
