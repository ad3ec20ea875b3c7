#!/usr/bin/env python3
"""Cipher Provider - Public-key encryption of the whole store blob.

Uses libsodium sealed boxes (X25519 + XSalsa20-Poly1305) via pynacl.
Anyone holding the recipient public key can encrypt; only the holder of
the matching private key (the identity file) can decrypt.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import nacl.encoding
import nacl.exceptions
import nacl.public

from .errors import DecryptionError, EncryptionError


@dataclass(frozen=True)
class RecipientKeyRef:
    """Reference to the public key a store is encrypted for."""

    path: Path
    public_key: nacl.public.PublicKey

    @classmethod
    def load(cls, path) -> "RecipientKeyRef":
        """Load a hex-encoded public key file.

        Raises:
            EncryptionError: If the file is missing or not a valid key

        """
        path = Path(path)
        try:
            data = path.read_bytes().strip()
        except FileNotFoundError:
            raise EncryptionError(f"Public key not found: {path}") from None
        except OSError as e:
            raise EncryptionError(f"Cannot read public key {path}: {e.strerror}") from None

        try:
            public_key = nacl.public.PublicKey(data, encoder=nacl.encoding.HexEncoder)
        except (nacl.exceptions.CryptoError, ValueError, TypeError):
            raise EncryptionError(f"Invalid public key: {path}") from None

        return cls(path=path, public_key=public_key)

    def encode(self) -> bytes:
        """Hex encoding used in the public key file."""
        return self.public_key.encode(encoder=nacl.encoding.HexEncoder)


def load_private_key(identity_path) -> nacl.public.PrivateKey:
    """Load a hex-encoded private key (identity) file.

    Raises:
        DecryptionError: If the identity is missing or malformed

    """
    identity_path = Path(identity_path)
    try:
        data = identity_path.read_bytes().strip()
    except FileNotFoundError:
        raise DecryptionError(f"Private key not found: {identity_path}") from None
    except OSError as e:
        raise DecryptionError(f"Cannot read private key {identity_path}: {e.strerror}") from None

    try:
        return nacl.public.PrivateKey(data, encoder=nacl.encoding.HexEncoder)
    except (nacl.exceptions.CryptoError, ValueError, TypeError):
        raise DecryptionError(f"Invalid private key: {identity_path}") from None


class CipherProvider:
    """Encrypt/decrypt byte blobs for a recipient.

    Never touches durable storage beyond reading the identity file;
    callers own where ciphertext and plaintext are placed.
    """

    def __init__(self, identity_path: Optional[Path] = None):
        self.identity_path = Path(identity_path) if identity_path else None

    def encrypt(self, plaintext: bytes, recipient: Optional[RecipientKeyRef]) -> bytes:
        """Encrypt plaintext so that only the recipient can read it."""
        if recipient is None:
            raise EncryptionError("No recipient public key configured")

        try:
            return nacl.public.SealedBox(recipient.public_key).encrypt(plaintext)
        except (nacl.exceptions.CryptoError, TypeError) as e:
            raise EncryptionError(f"Encryption failed: {e}") from None

    def decrypt(self, ciphertext: bytes, recipient: RecipientKeyRef) -> bytes:
        """Decrypt ciphertext addressed to recipient.

        The identity must be the private half of ``recipient``.
        """
        if self.identity_path is None:
            raise DecryptionError("No private key configured")

        private_key = load_private_key(self.identity_path)
        if bytes(private_key.public_key) != bytes(recipient.public_key):
            raise DecryptionError(
                f"Private key {self.identity_path} does not match {recipient.path}"
            )

        try:
            return nacl.public.SealedBox(private_key).decrypt(ciphertext)
        except nacl.exceptions.CryptoError:
            raise DecryptionError("Store could not be decrypted with this key") from None
