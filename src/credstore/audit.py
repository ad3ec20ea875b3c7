#!/usr/bin/env python3
"""Audit Log - Append-only record of store transactions.

Records which key was touched, by which process, and how the transaction
ended. Secret values are never written. Rotates daily and prunes old files.
"""

import os
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

# Transaction outcomes
COMMITTED = "COMMITTED"
READ = "READ"
NOOP = "NOOP"
ABORTED = "ABORTED"


class AuditLogger:
    """Append-only transaction log with daily rotation and retention."""

    def __init__(self, log_path: Path, retention_days: int = 30):
        """Open (and create if needed) the audit log.

        Args:
            log_path: Path to the log file (e.g., ~/.credstore.d/audit.log)
            retention_days: Number of days to keep rotated logs

        """
        self.log_path = Path(log_path)
        self.retention_days = retention_days
        self.lock = threading.Lock()
        self._last_rotation_check: Optional[datetime] = None

        # Only a directory created here is made private; a user-chosen one keeps its mode
        try:
            self.log_path.parent.mkdir(parents=True, mode=0o700)
        except FileExistsError:
            pass
        else:
            self.log_path.parent.chmod(0o700)

        if not self.log_path.exists():
            fd = os.open(
                str(self.log_path),
                os.O_CREAT | os.O_APPEND | os.O_WRONLY,
                0o600
            )
            os.close(fd)

    @property
    def rotated_prefix(self) -> str:
        return self.log_path.name + "."

    def log_transaction(
        self,
        action: str,
        key: str,
        result: str,
        reason: Optional[str] = None,
        pid: Optional[int] = None,
        command: str = "credstore",
    ) -> None:
        """Append one transaction line.

        Format: ISO8601Z [PID/command] RESULT ACTION key [reason]

        Args:
            action: GET | PUT | DELETE | LIST
            key: Record key (or "*" for whole-store actions)
            result: COMMITTED | READ | NOOP | ABORTED
            reason: Error code for ABORTED transactions
            pid: Process ID (default: current process)
            command: Program name

        """
        self._check_rotation()

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        pid = os.getpid() if pid is None else pid

        # Keep one entry per line whatever the key contains
        key = (key or "-").replace("\n", "\\n").replace("\r", "\\r")

        parts = [timestamp, f"[{pid}/{command}]", result, action, key]
        if reason:
            parts.append(reason)

        with self.lock, open(self.log_path, "a") as f:
            f.write(" ".join(parts) + "\n")

    def _check_rotation(self) -> None:
        """Rotate at most once per hour, when the log was last written on a previous day."""
        now = datetime.now(timezone.utc)

        if self._last_rotation_check and (now - self._last_rotation_check).total_seconds() < 3600:
            return
        self._last_rotation_check = now

        try:
            mtime = datetime.fromtimestamp(self.log_path.stat().st_mtime, tz=timezone.utc)
        except OSError:
            return

        if mtime < now.replace(hour=0, minute=0, second=0, microsecond=0):
            self._rotate(mtime)
            self._cleanup_old_logs()

    def _rotate(self, written: datetime) -> None:
        """Move the current log aside under the date it was last written."""
        target = self.log_path.parent / f"{self.rotated_prefix}{written.strftime('%Y%m%d')}"
        if target.exists():
            return
        try:
            self.log_path.rename(target)
        except OSError:
            return

        fd = os.open(str(self.log_path), os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o600)
        os.close(fd)

    def _cleanup_old_logs(self) -> None:
        """Delete rotated logs older than the retention period."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.retention_days)

        for rotated in self._rotated_files():
            try:
                stamp = datetime.strptime(
                    rotated.name[len(self.rotated_prefix):], "%Y%m%d"
                ).replace(tzinfo=timezone.utc)
            except ValueError:
                continue
            if stamp < cutoff:
                try:
                    rotated.unlink()
                except OSError:
                    pass

    def read_recent(self, lines: int = 100) -> List[str]:
        """Return up to the last ``lines`` entries, oldest first."""
        try:
            with open(self.log_path) as f:
                return f.readlines()[-lines:]
        except OSError:
            return []

    def get_log_files(self) -> List[Path]:
        """Current log followed by rotated logs, newest first."""
        logs = [self.log_path] if self.log_path.exists() else []
        return logs + self._rotated_files()

    def _rotated_files(self) -> List[Path]:
        return sorted(self.log_path.parent.glob(f"{self.rotated_prefix}*"), reverse=True)
