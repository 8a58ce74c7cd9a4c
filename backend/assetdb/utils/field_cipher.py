"""
Field-level encryption for sensitive asset attributes.

Serial numbers, MAC/IP addresses and device credentials are stored encrypted
at rest. Values are Fernet tokens (AES-128-CBC + HMAC) behind an ``enc:v1:``
prefix; the key is derived with PBKDF2 from ``FIELD_ENCRYPTION_SECRET``.

Rows written before encryption was enabled hold plaintext. Those values pass
through ``decrypt`` unchanged and are encrypted on their next write.
"""

from __future__ import annotations

import base64
import logging
import os
import warnings
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from sqlalchemy import String
from sqlalchemy.types import TypeDecorator

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "enc:v1:"
UNREADABLE_PLACEHOLDER = "[ENCRYPTED]"

SENSITIVE_ASSET_FIELDS = ("serial_number", "mac", "ip_address", "user_name", "password")


class FieldCipherError(Exception):
    """Raised when a value cannot be encrypted or decrypted."""


class FieldCipher:
    def __init__(self, secret: Optional[str] = None, salt: Optional[str] = None):
        self._secret = secret or os.getenv("FIELD_ENCRYPTION_SECRET")
        if not self._secret:
            warnings.warn(
                "FIELD_ENCRYPTION_SECRET not set. Using a random key - encrypted fields "
                "will not be readable after a restart!",
                RuntimeWarning,
            )
            self._secret = Fernet.generate_key().decode()
        self._salt = (salt or os.getenv("FIELD_ENCRYPTION_SALT", "assetdb_field_salt")).encode()
        self._fernet = self._create_cipher()

    def _create_cipher(self) -> Fernet:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=self._salt,
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(self._secret.encode()))
        return Fernet(key)

    @staticmethod
    def is_encrypted(value: Optional[str]) -> bool:
        return bool(value) and value.startswith(ENCRYPTED_PREFIX)

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if not plaintext:
            return plaintext
        if self.is_encrypted(plaintext):
            return plaintext
        token = self._fernet.encrypt(plaintext.encode("utf-8"))
        return f"{ENCRYPTED_PREFIX}{token.decode('ascii')}"

    def decrypt(self, value: Optional[str]) -> Optional[str]:
        if not value or not self.is_encrypted(value):
            return value
        token = value[len(ENCRYPTED_PREFIX):]
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise FieldCipherError("Invalid token or key") from exc


@lru_cache(maxsize=1)
def get_field_cipher() -> FieldCipher:
    return FieldCipher()


def encrypt_value(value: Optional[str]) -> Optional[str]:
    return get_field_cipher().encrypt(value)


def decrypt_value(value: Optional[str]) -> Optional[str]:
    return get_field_cipher().decrypt(value)


class EncryptedString(TypeDecorator):
    """
    String column that is encrypted on write and decrypted on load.

    ORM attributes always hold plaintext; only the database sees ciphertext.
    """

    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return encrypt_value(str(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return decrypt_value(value)
        except FieldCipherError:
            logger.error("Failed to decrypt field value", extra={"prefix": value[:12]})
            return UNREADABLE_PLACEHOLDER
