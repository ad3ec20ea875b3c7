#!/usr/bin/env python3
"""Ephemeral Workspace - Short-lived holding area for decrypted plaintext.

The workspace is an owner-only (0600) file, memory-backed when /dev/shm is
available. It is zeroed and unlinked when the scope exits, whatever the
exit path.
"""

import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

SHM_DIR = Path("/dev/shm")
TMPDIR_ENV = "CREDSTORE_TMPDIR"
PREFIX = "credstore-"


def default_workspace_dir() -> Path:
    """Pick the directory for plaintext workspaces.

    CREDSTORE_TMPDIR wins, then /dev/shm, then the system temp dir.
    """
    override = os.environ.get(TMPDIR_ENV)
    if override:
        return Path(override)
    if SHM_DIR.is_dir() and os.access(SHM_DIR, os.W_OK | os.X_OK):
        return SHM_DIR
    return Path(tempfile.gettempdir())


class Workspace:
    """An open plaintext workspace file."""

    def __init__(self, fd: int, path: Path):
        self.fd = fd
        self.path = path
        self.released = False

    def write(self, data: bytes) -> None:
        """Replace the workspace contents with data."""
        os.lseek(self.fd, 0, os.SEEK_SET)
        os.ftruncate(self.fd, 0)
        view = memoryview(data)
        while view:
            written = os.write(self.fd, view)
            view = view[written:]

    def read(self) -> bytes:
        os.lseek(self.fd, 0, os.SEEK_SET)
        chunks = []
        while True:
            chunk = os.read(self.fd, 65536)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)

    def release(self) -> None:
        """Zero the contents, then close and unlink. Safe to call twice."""
        if self.released:
            return
        self.released = True

        try:
            size = os.fstat(self.fd).st_size
            if size:
                os.lseek(self.fd, 0, os.SEEK_SET)
                os.write(self.fd, b"\0" * size)
                os.fsync(self.fd)
            os.ftruncate(self.fd, 0)
        finally:
            os.close(self.fd)
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass


@contextmanager
def ephemeral_workspace(directory: Optional[Path] = None) -> Iterator[Workspace]:
    """Acquire a plaintext workspace for the duration of a with-block.

    Args:
        directory: Where to create the file (default: see default_workspace_dir)

    Yields:
        Workspace, released on exit even if the block raises

    """
    directory = Path(directory) if directory else default_workspace_dir()
    # mkstemp opens with O_CREAT | O_EXCL and mode 0600
    fd, name = tempfile.mkstemp(prefix=PREFIX, dir=str(directory))
    workspace = Workspace(fd, Path(name))
    try:
        os.fchmod(fd, 0o600)
        yield workspace
    finally:
        workspace.release()
