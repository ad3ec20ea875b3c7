#!/usr/bin/env python3
"""Transaction Manager - decrypt, operate, re-encrypt over the store file.

Each operation runs as one transaction:

    Begin   acquire a plaintext workspace (and, for writes, the store lock)
    Load    decrypt the store into the workspace
    Decode  parse the workspace into a RecordSet
    Apply   get / put / delete / list
    Commit  serialize, encrypt, atomically replace the store (writes only)
    End     wipe and remove the workspace, release the lock

Plaintext only ever lives in the workspace and in memory. The live store
file is never written in place.
"""

import fcntl
import os
import tempfile
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional

from .audit import ABORTED, COMMITTED, NOOP, READ, AuditLogger
from .crypto import CipherProvider, RecipientKeyRef
from .errors import CredstoreError, KeyNotFoundError, StoreNotFoundError
from .records import Record, RecordSet, parse, serialize, validate_record
from .workspace import Workspace, ephemeral_workspace

DEFAULT_STORE = Path.home() / ".credstore"
DEFAULT_PUBKEY = Path.home() / ".credstore.pub"
DEFAULT_IDENTITY = Path.home() / ".credstore.key"
DEFAULT_RECORD_LENGTH = 20
LOCK_SUFFIX = ".lock"


@dataclass
class StoreConfig:
    """Everything a transaction needs to know, resolved once at startup."""

    store_path: Path = DEFAULT_STORE
    pubkey_path: Path = DEFAULT_PUBKEY
    identity_path: Path = DEFAULT_IDENTITY
    record_length: int = DEFAULT_RECORD_LENGTH
    audit_log_path: Optional[Path] = None
    workspace_dir: Optional[Path] = None
    lock: bool = True

    def __post_init__(self):
        self.store_path = Path(self.store_path)
        self.pubkey_path = Path(self.pubkey_path)
        self.identity_path = Path(self.identity_path)
        if self.audit_log_path is not None:
            self.audit_log_path = Path(self.audit_log_path)
        if self.workspace_dir is not None:
            self.workspace_dir = Path(self.workspace_dir)
        if self.record_length < 1:
            raise ValueError("record_length must be at least 1")

    @classmethod
    def from_env(
        cls,
        store_path=None,
        pubkey_path=None,
        identity_path=None,
        record_length=None,
        audit_log_path=None,
    ) -> "StoreConfig":
        """Build a config from explicit values, then environment, then defaults.

        Environment: CREDSTORE_PATH, CREDSTORE_PUBKEY, CREDSTORE_IDENTITY,
        CREDSTORE_LENGTH, CREDSTORE_AUDIT_LOG.
        """
        env = os.environ
        length = record_length or env.get("CREDSTORE_LENGTH") or DEFAULT_RECORD_LENGTH
        audit = audit_log_path or env.get("CREDSTORE_AUDIT_LOG")

        return cls(
            store_path=Path(store_path or env.get("CREDSTORE_PATH") or DEFAULT_STORE).expanduser(),
            pubkey_path=Path(pubkey_path or env.get("CREDSTORE_PUBKEY") or DEFAULT_PUBKEY).expanduser(),
            identity_path=Path(identity_path or env.get("CREDSTORE_IDENTITY") or DEFAULT_IDENTITY).expanduser(),
            record_length=int(length),
            audit_log_path=Path(audit).expanduser() if audit else None,
        )

    @property
    def lock_path(self) -> Path:
        return self.store_path.with_name(self.store_path.name + LOCK_SUFFIX)


def _fsync_dir(directory: Path) -> None:
    fd = os.open(str(directory), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def atomic_write(path: Path, data: bytes, mode: int = 0o600) -> None:
    """Replace path with data in one step.

    Writes a temp file in the same directory, fsyncs it and renames it over
    path. On any failure the temp file is removed and path is untouched.
    """
    path = Path(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)

    try:
        with os.fdopen(fd, "wb") as f:
            os.fchmod(f.fileno(), mode)
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            tmp_path.unlink()
        except FileNotFoundError:
            pass
        raise

    # The rename has landed; a failed directory sync must not report it as failed
    try:
        _fsync_dir(path.parent)
    except OSError:
        pass


@contextmanager
def store_lock(lock_path: Path) -> Iterator[None]:
    """Hold an exclusive advisory lock on lock_path for the with-block."""
    fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR, 0o600)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


class TransactionManager:
    """Runs get/put/delete/list transactions against one encrypted store."""

    def __init__(
        self,
        config: StoreConfig,
        cipher: Optional[CipherProvider] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.config = config
        self.cipher = cipher or CipherProvider(config.identity_path)
        if audit_logger is None and config.audit_log_path is not None:
            audit_logger = AuditLogger(config.audit_log_path)
        self.audit_logger = audit_logger

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> str:
        """Return the value stored under key.

        Raises:
            KeyNotFoundError: If no record has exactly this key

        """
        with self._audited("GET", key) as outcome:
            with self._workspace() as workspace:
                records = self._load(workspace)

            value = records.get(key)
            if value is None:
                raise KeyNotFoundError(key)
            outcome.result = READ
            return value

    def put(self, key: str, value: str) -> None:
        """Add a new record. Existing keys are never overwritten.

        Raises:
            InvalidRecordError: If key or value cannot be stored
            DuplicateKeyError: If key is already present (store unchanged)

        """
        validate_record(key, value)

        with self._audited("PUT", key):
            self._require_store()
            with self._locked(), self._workspace() as workspace:
                records = self._load(workspace)
                records.add(Record(key, value))
                self._commit(records, workspace)

    def delete(self, key: str) -> bool:
        """Remove the record with key.

        A missing key is a successful no-op that leaves the store file
        untouched.

        Returns:
            True if a record was removed

        """
        with self._audited("DELETE", key) as outcome:
            self._require_store()
            with self._locked(), self._workspace() as workspace:
                records = self._load(workspace)

                if not records.remove(key):
                    outcome.result = NOOP
                    return False

                self._commit(records, workspace)
                return True

    def list_keys(self) -> List[str]:
        """Keys in store order."""
        with self._audited("LIST", "*") as outcome:
            with self._workspace() as workspace:
                records = self._load(workspace)
            outcome.result = READ
            return records.keys()

    # ------------------------------------------------------------------
    # Transaction steps
    # ------------------------------------------------------------------

    def _recipient(self) -> RecipientKeyRef:
        return RecipientKeyRef.load(self.config.pubkey_path)

    def _workspace(self):
        return ephemeral_workspace(self.config.workspace_dir)

    def _locked(self):
        if not self.config.lock:
            return nullcontext()
        return store_lock(self.config.lock_path)

    def _require_store(self) -> None:
        """Fail before taking the lock, so a missing store leaves no lock file behind."""
        if not self.config.store_path.exists():
            raise StoreNotFoundError(f"Store not found: {self.config.store_path}")

    def _load(self, workspace: Workspace) -> RecordSet:
        """Load and Decode: decrypt the store into workspace and parse it."""
        store_path = self.config.store_path
        try:
            ciphertext = store_path.read_bytes()
        except FileNotFoundError:
            raise StoreNotFoundError(f"Store not found: {store_path}") from None

        workspace.write(self.cipher.decrypt(ciphertext, self._recipient()))
        return parse(workspace.read())

    def _commit(self, records: RecordSet, workspace: Workspace) -> None:
        """Serialize, encrypt and atomically replace the store."""
        workspace.write(serialize(records))
        ciphertext = self.cipher.encrypt(workspace.read(), self._recipient())
        atomic_write(self.config.store_path, ciphertext)

    @contextmanager
    def _audited(self, action: str, key: str):
        outcome = _Outcome(COMMITTED)
        try:
            yield outcome
        except CredstoreError as e:
            self._audit(action, key, ABORTED, e.code)
            raise
        except OSError:
            self._audit(action, key, ABORTED, "IO_ERROR")
            raise
        else:
            self._audit(action, key, outcome.result)

    def _audit(self, action: str, key: str, result: str, reason: Optional[str] = None) -> None:
        if self.audit_logger is not None:
            self.audit_logger.log_transaction(action, key, result, reason)


class _Outcome:
    """Mutable result slot filled in by an operation before it returns."""

    def __init__(self, result: str):
        self.result = result
