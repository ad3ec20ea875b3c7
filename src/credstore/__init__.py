"""Credstore - A single-file, public-key encrypted credential store.
Uses libsodium sealed boxes via pynacl.
"""

__version__ = "1.0.0"
