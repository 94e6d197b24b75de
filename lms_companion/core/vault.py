"""
Credential Vault.

Encrypts identity fields before they touch a store and decrypts them on the
way back out. One Fernet key is shared by the whole process; there is no
key rotation.

decrypt() never raises: malformed, foreign or missing ciphertext comes back
as "" and callers treat "" as "no value".
"""

from __future__ import annotations

import json
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from loguru import logger

from lms_companion.config import Settings
from lms_companion.core.errors import DecryptionError, EncryptionError

# Endpoints whose payloads are encrypted regardless of the *_all_* toggles
ENCRYPTED_LOGIN_ENDPOINTS = ("/api/new-login/",)


class CredentialVault:
    """Symmetric encryption of short strings with a process-wide key."""

    def __init__(
        self,
        key: str | bytes = "",
        *,
        backend_url: str | None = None,
        encrypt_all_payload: bool | None = None,
        decrypt_all_response: bool | None = None,
    ):
        self._fernet: Fernet | None = None
        if key:
            try:
                self._fernet = Fernet(key)
            except (ValueError, TypeError) as e:
                raise EncryptionError(f"Invalid encryption key: {e}") from e

        self.backend_url = backend_url
        self.encrypt_all_payload = encrypt_all_payload
        self.decrypt_all_response = decrypt_all_response

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialVault":
        return cls(
            settings.encryption_key,
            backend_url=settings.backend_url,
            encrypt_all_payload=settings.encrypt_all_payload,
            decrypt_all_response=settings.decrypt_all_response,
        )

    @property
    def is_configured(self) -> bool:
        return self._fernet is not None

    def _require_fernet(self) -> Fernet:
        if self._fernet is None:
            raise EncryptionError("ENCRYPTION_KEY not configured")
        return self._fernet

    # =========================================================================
    # Strings
    # =========================================================================

    def encrypt(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` into a urlsafe token."""
        fernet = self._require_fernet()
        try:
            return fernet.encrypt(str(plaintext).encode("utf-8")).decode("ascii")
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"Failed to encrypt data: {e}") from e

    def decrypt(self, ciphertext: str | None) -> str:
        """Decrypt ``ciphertext``; returns "" for anything that is not a valid token."""
        if not ciphertext or self._fernet is None:
            return ""
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError, TypeError):
            return ""

    # =========================================================================
    # JSON payloads
    # =========================================================================

    def encrypt_json(self, data: Any) -> str:
        try:
            return self.encrypt(json.dumps(data))
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"Failed to encrypt JSON data: {e}") from e

    def decrypt_json(self, ciphertext: str) -> Any:
        """Strict counterpart of decrypt() for JSON payloads."""
        plaintext = self.decrypt(ciphertext)
        if not plaintext:
            raise DecryptionError("Failed to decrypt data")
        try:
            return json.loads(plaintext)
        except json.JSONDecodeError as e:
            raise DecryptionError(f"Failed to decrypt JSON data: {e}") from e

    def _should_process(self, url: str, env_setting: bool | None) -> bool:
        if any(pattern in url for pattern in ENCRYPTED_LOGIN_ENDPOINTS):
            return True
        if env_setting is True:
            return bool(self.backend_url) and self.backend_url in url
        return False

    def should_encrypt_payload(self, url: str) -> bool:
        return self._should_process(url, self.encrypt_all_payload)

    def should_decrypt_response(self, url: str) -> bool:
        return self._should_process(url, self.decrypt_all_response)

    def conditional_encrypt_json(self, data: Any, url: str) -> Any:
        """Wrap ``data`` as ``{"data": <token>}`` when ``url`` requires encryption."""
        if not data or not self.should_encrypt_payload(url):
            return data
        return {"data": self.encrypt_json(data)}

    def conditional_decrypt_json(self, response_data: Any, url: str) -> Any:
        """Unwrap ``{"data": <token>}`` responses; returns the input if it cannot."""
        if not response_data or not self.should_decrypt_response(url):
            return response_data

        if isinstance(response_data, dict) and isinstance(response_data.get("data"), str):
            try:
                return self.decrypt_json(response_data["data"])
            except DecryptionError as e:
                logger.warning(f"Conditional decryption failed for {url}, returning original data: {e}")
                return response_data

        return response_data

