"""Symmetric encryption for credentials at rest."""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from cosense_mail_sync.core.exceptions import ConfigurationError


class TokenCipher:
    """Fernet cipher keyed by the SHA-256 of a secret passphrase."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ConfigurationError("token_encryption_key is not set")
        raw = secret.encode()
        # Accept a pre-generated Fernet key or a raw passphrase
        try:
            self._fernet = Fernet(raw)
        except ValueError:
            self._fernet = Fernet(base64.urlsafe_b64encode(hashlib.sha256(raw).digest()))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a value produced by encrypt().

        Raises:
            ConfigurationError: If the value was encrypted with another key or is corrupt.
        """
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise ConfigurationError("Stored credential cannot be decrypted") from e
