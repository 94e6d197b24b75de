"""
Exception hierarchy for lms-companion.

Transient network failures surface as plain ``httpx`` exceptions.
Everything raised on purpose by this package derives from ``LMSError``.
"""

from __future__ import annotations


class LMSError(Exception):
    """Base class for errors raised by lms-companion."""


class UnauthorizedError(LMSError):
    """The backend answered 401/403. Session state has already been destroyed."""

    def __init__(self, status_code: int, url: str = ""):
        self.status_code = status_code
        self.url = url
        super().__init__(f"Backend rejected the session ({status_code}) for {url or 'request'}")


class LoginError(LMSError):
    """The backend refused a login attempt."""


class EncryptionError(LMSError):
    """The vault is not configured or could not encrypt a value."""


class DecryptionError(LMSError):
    """A strict decrypt helper could not recover the plaintext."""
