from __future__ import annotations

import logging

from cryptography.fernet import Fernet

logger = logging.getLogger("storage")


class ValueCipher:
    """Fernet wrapper for stored history and user config values."""

    def __init__(self, key: str | bytes) -> None:
        self._fernet = Fernet(key)

    @classmethod
    def generate(cls) -> "ValueCipher":
        return cls(Fernet.generate_key())

    def encrypt(self, plain: str) -> str:
        return self._fernet.encrypt(plain.encode("utf-8")).decode("ascii")

    def decrypt(self, stored: str) -> str:
        return self._fernet.decrypt(stored.encode("ascii")).decode("utf-8")


def build_cipher(encryption_key: str) -> ValueCipher | None:
    """Return a cipher for ``encryption_key``; an empty key disables encryption."""
    if not encryption_key:
        logger.warning("encryption_key is not set, stored values are kept in plain text")
        return None
    return ValueCipher(encryption_key)
