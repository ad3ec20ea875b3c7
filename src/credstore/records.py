#!/usr/bin/env python3
"""Record Codec - Plaintext format of a decrypted store.

One record per line, ``key,value``, split at the first comma. Keys are
matched literally, never as patterns.
"""

from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional

from .errors import DuplicateKeyError, InvalidRecordError, ParseError

DELIMITER = ","
LINE_END = "\n"
ENCODING = "utf-8"


@dataclass(frozen=True)
class Record:
    """A single key/value secret."""

    key: str
    value: str

    def __post_init__(self):
        validate_record(self.key, self.value)


def validate_record(key: str, value: str) -> None:
    """Check that key and value fit the line format.

    Raises:
        InvalidRecordError: On an empty key, a comma in the key, or a line
            terminator in either field

    """
    if not isinstance(key, str) or not isinstance(value, str):
        raise InvalidRecordError("Key and value must be strings")
    if not key:
        raise InvalidRecordError("Key must not be empty")
    if DELIMITER in key:
        raise InvalidRecordError("Key must not contain ','")
    if "\n" in key or "\r" in key:
        raise InvalidRecordError("Key must not contain a line break")
    if "\n" in value or "\r" in value:
        raise InvalidRecordError("Value must not contain a line break")


class RecordSet:
    """Ordered records with unique keys."""

    def __init__(self, records: Iterable[Record] = ()):
        self._records: List[Record] = []
        for record in records:
            self.add(record)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(list(self._records))

    def __contains__(self, key) -> bool:
        return any(r.key == key for r in self._records)

    def __eq__(self, other) -> bool:
        if not isinstance(other, RecordSet):
            return NotImplemented
        return self._records == other._records

    def __repr__(self) -> str:
        return f"RecordSet(keys={self.keys()!r})"

    def keys(self) -> List[str]:
        return [r.key for r in self._records]

    def get(self, key: str) -> Optional[str]:
        """Return the value for key, or None if absent (exact match)."""
        for record in self._records:
            if record.key == key:
                return record.value
        return None

    def add(self, record: Record) -> None:
        """Append a record.

        Raises:
            DuplicateKeyError: If the key is already present

        """
        if record.key in self:
            raise DuplicateKeyError(record.key)
        self._records.append(record)

    def remove(self, key: str) -> bool:
        """Drop the record with key. Returns whether anything was removed."""
        kept = [r for r in self._records if r.key != key]
        removed = len(kept) != len(self._records)
        self._records = kept
        return removed


def parse(plaintext: bytes) -> RecordSet:
    """Parse decrypted store contents.

    Raises:
        ParseError: On invalid UTF-8, a line without a comma, an invalid
            record, or a repeated key. Line numbers are reported, contents
            are not.

    """
    try:
        text = plaintext.decode(ENCODING)
    except UnicodeDecodeError:
        raise ParseError("Store contents are not valid UTF-8") from None

    records = RecordSet()
    for lineno, line in enumerate(text.split(LINE_END), start=1):
        if line.endswith("\r"):
            line = line[:-1]
        if not line:
            continue

        key, sep, value = line.partition(DELIMITER)
        if not sep:
            raise ParseError(f"Malformed record on line {lineno}: missing ','")

        try:
            records.add(Record(key, value))
        except DuplicateKeyError:
            raise ParseError(f"Duplicate key on line {lineno}") from None
        except InvalidRecordError as e:
            raise ParseError(f"Invalid record on line {lineno}: {e}") from None

    return records


def serialize(records: RecordSet) -> bytes:
    """Serialize records, one ``key,value`` line each, in order."""
    return "".join(
        f"{r.key}{DELIMITER}{r.value}{LINE_END}" for r in records
    ).encode(ENCODING)
