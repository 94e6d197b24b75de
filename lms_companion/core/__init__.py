"""Session envelope and the building blocks it is made of."""

from lms_companion.core.cache import ResponseCache, generate_cache_key
from lms_companion.core.envelope import SessionEnvelope, SessionState
from lms_companion.core.errors import (
    DecryptionError,
    EncryptionError,
    LMSError,
    LoginError,
    UnauthorizedError,
)
from lms_companion.core.identity import IdentityRecord
from lms_companion.core.navigation import Navigator
from lms_companion.core.scheduler import LoopScheduler, Scheduler, VirtualScheduler
from lms_companion.core.storage import JsonFileStore, KeyValueStore, MemoryStore, SessionStores
from lms_companion.core.vault import CredentialVault

__all__ = [
    "CredentialVault",
    "DecryptionError",
    "EncryptionError",
    "IdentityRecord",
    "JsonFileStore",
    "KeyValueStore",
    "LMSError",
    "LoginError",
    "LoopScheduler",
    "MemoryStore",
    "Navigator",
    "ResponseCache",
    "Scheduler",
    "SessionEnvelope",
    "SessionState",
    "SessionStores",
    "UnauthorizedError",
    "VirtualScheduler",
    "generate_cache_key",
]
