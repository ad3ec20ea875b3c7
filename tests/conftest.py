"""Pytest fixtures and utilities for credstore tests."""

import tempfile
from pathlib import Path

import pytest

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from credstore.bootstrap import ensure_key_pair_exists, ensure_store_exists
from credstore.crypto import CipherProvider
from credstore.store import StoreConfig, TransactionManager


@pytest.fixture
def temp_store_dir():
    """Create a temporary directory for store and key files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def workspace_dir(temp_store_dir):
    """Private directory for plaintext workspaces, so leftovers can be checked."""
    path = temp_store_dir / "workspaces"
    path.mkdir(mode=0o700)
    return path


@pytest.fixture
def key_pair(temp_store_dir):
    """Generate a key pair and return its paths and recipient."""
    pubkey_path = temp_store_dir / "store.pub"
    identity_path = temp_store_dir / "store.key"
    recipient = ensure_key_pair_exists(pubkey_path, identity_path)
    return {
        "pubkey_path": pubkey_path,
        "identity_path": identity_path,
        "recipient": recipient,
    }


@pytest.fixture
def store_config(temp_store_dir, key_pair, workspace_dir):
    """Config for a store that does not exist yet."""
    return StoreConfig(
        store_path=temp_store_dir / "test.store",
        pubkey_path=key_pair["pubkey_path"],
        identity_path=key_pair["identity_path"],
        workspace_dir=workspace_dir,
    )


@pytest.fixture
def empty_store(store_config, key_pair):
    """Create an empty encrypted store and return its config."""
    ensure_store_exists(
        store_config.store_path,
        key_pair["recipient"],
        CipherProvider(key_pair["identity_path"]),
    )
    return store_config


@pytest.fixture
def manager(empty_store):
    """Transaction manager over an empty store."""
    return TransactionManager(empty_store)


@pytest.fixture
def populated_manager(manager):
    """Transaction manager over a store with a few records."""
    entries = {
        "work/api/key": "sk_live_work_123",
        "work/db/password": "db_pass_456",
        "personal/email": "email,pass=789",
        "empty": "",
    }
    for key, value in entries.items():
        manager.put(key, value)
    manager.entries = entries
    return manager


@pytest.fixture
def audit_logger(temp_store_dir):
    """Create an audit logger with temp log path."""
    from credstore.audit import AuditLogger
    log_path = temp_store_dir / "audit.log"
    yield AuditLogger(log_path)


def assert_no_workspaces(directory: Path):
    """Helper to verify no plaintext workspace survived a transaction."""
    leftovers = list(Path(directory).iterdir())
    assert leftovers == [], f"residual workspaces: {leftovers}"


def assert_log_entry(audit_logger, result, action, key=None):
    """Helper to verify a log entry exists."""
    for line in audit_logger.read_recent(100):
        parts = line.strip().split()
        if len(parts) >= 5 and parts[2] == result and parts[3] == action:
            if key is None or parts[4] == key:
                return True
    return False
