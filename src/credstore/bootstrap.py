#!/usr/bin/env python3
"""Store Bootstrap - First-run creation of the key pair and an empty store.

Transactions never call these; the CLI does, after asking the user.
"""

from pathlib import Path

import nacl.encoding
import nacl.public

from .crypto import CipherProvider, RecipientKeyRef
from .errors import EncryptionError
from .records import RecordSet, serialize
from .store import atomic_write


def ensure_key_pair_exists(pubkey_path, identity_path) -> RecipientKeyRef:
    """Return the recipient for pubkey_path, generating a key pair if needed.

    The private key is written to identity_path with mode 0600.

    Raises:
        EncryptionError: If an identity exists without its public key, or the
            existing public key file is invalid

    """
    pubkey_path = Path(pubkey_path)
    identity_path = Path(identity_path)

    if pubkey_path.exists():
        return RecipientKeyRef.load(pubkey_path)

    if identity_path.exists():
        raise EncryptionError(
            f"Private key {identity_path} exists but public key {pubkey_path} is missing"
        )

    private_key = nacl.public.PrivateKey.generate()
    atomic_write(identity_path, private_key.encode(encoder=nacl.encoding.HexEncoder) + b"\n")
    atomic_write(
        pubkey_path,
        private_key.public_key.encode(encoder=nacl.encoding.HexEncoder) + b"\n",
        mode=0o644,
    )

    return RecipientKeyRef.load(pubkey_path)


def ensure_store_exists(store_path, recipient: RecipientKeyRef, cipher: CipherProvider = None) -> bool:
    """Create an encrypted, empty store at store_path if there is none.

    Returns:
        True if a new store was written

    """
    store_path = Path(store_path)
    if store_path.exists():
        return False

    cipher = cipher or CipherProvider()
    atomic_write(store_path, cipher.encrypt(serialize(RecordSet()), recipient))
    return True
