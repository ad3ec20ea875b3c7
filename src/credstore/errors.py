"""Error taxonomy for store transactions.

Every error carries a short ``code`` used by the audit log and the CLI.
Messages never include secret values.
"""


class CredstoreError(Exception):
    """Base class for all credstore errors."""

    code = "ERROR"


class EncryptionError(CredstoreError):
    """Recipient key reference is missing or unusable."""

    code = "ENCRYPTION_FAILED"


class DecryptionError(CredstoreError):
    """No matching private key, malformed ciphertext, or wrong recipient."""

    code = "DECRYPTION_FAILED"


class ParseError(CredstoreError):
    """Decrypted plaintext is not a valid record set."""

    code = "PARSE_FAILED"


class StoreNotFoundError(CredstoreError):
    """The encrypted store file does not exist."""

    code = "STORE_NOT_FOUND"


class KeyNotFoundError(CredstoreError):
    """Lookup of a key that is not in the store."""

    code = "NOT_FOUND"

    def __init__(self, key: str):
        super().__init__(f"Entry not found: {key}")
        self.key = key


class DuplicateKeyError(CredstoreError):
    """Insert of a key that is already in the store."""

    code = "ALREADY_EXISTS"

    def __init__(self, key: str):
        super().__init__(f"Entry already exists: {key}")
        self.key = key


class InvalidRecordError(CredstoreError, ValueError):
    """Key or value cannot be represented in the record format."""

    code = "INVALID_RECORD"
