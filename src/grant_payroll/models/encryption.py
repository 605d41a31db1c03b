"""Encrypted column types for payroll amounts stored at rest."""

from __future__ import annotations

import base64
import hashlib
import logging
from decimal import Decimal
from functools import lru_cache
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator

from grant_payroll.config import get_settings

logger = logging.getLogger(__name__)


def derive_key_from_secret(secret: str) -> bytes:
    """Derive a Fernet key from an arbitrary secret string."""
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


@lru_cache(maxsize=1)
def get_cipher() -> Fernet:
    """Get the process Fernet cipher built from settings."""
    settings = get_settings()
    key = settings.encryption_key
    if not key:
        logger.warning("PAYROLL_ENCRYPTION_KEY not set; using key derived from SECRET_KEY")
        return Fernet(derive_key_from_secret(settings.secret_key))
    return Fernet(key.encode("utf-8"))


class DecryptionError(ValueError):
    """Raised when a stored amount cannot be decrypted with the current key."""


class EncryptedDecimal(TypeDecorator):
    """Decimal stored as a Fernet token.

    Values round-trip as their exact string form, so scale is preserved.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        if value is None:
            return None
        return get_cipher().encrypt(str(Decimal(value)).encode("utf-8")).decode("utf-8")

    def process_result_value(self, value: Any, dialect: Any) -> Decimal | None:
        if value is None:
            return None
        try:
            raw = get_cipher().decrypt(value.encode("utf-8"))
        except InvalidToken as e:
            raise DecryptionError("Stored payroll amount could not be decrypted") from e
        return Decimal(raw.decode("utf-8"))
