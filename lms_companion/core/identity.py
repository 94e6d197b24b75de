"""
Identity Record.

The learner identity is only ever stored vault-encrypted, under the same
field names in both the session and the durable store.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any

from lms_companion.core.keys import IDENTITY_KEYS
from lms_companion.core.storage import KeyValueStore, SessionStores
from lms_companion.core.vault import CredentialVault


@dataclass
class IdentityRecord:
    """Decrypted learner identity. Empty strings mean "absent"."""

    student_id: str = ""
    email: str = ""
    name: str = ""
    picture: str = ""
    course_id: str = ""
    batch_id: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IdentityRecord":
        names = {f.name for f in fields(cls)}
        return cls(**{k: "" if v is None else str(v) for k, v in data.items() if k in names})

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @property
    def is_complete(self) -> bool:
        return bool(self.student_id and self.course_id and self.batch_id)

    # =========================================================================
    # Store access
    # =========================================================================

    def write(self, stores: SessionStores, vault: CredentialVault) -> None:
        """Encrypt every present field into both stores; empty fields are removed."""
        for attr, (durable_key, session_key) in IDENTITY_KEYS.items():
            value = getattr(self, attr)
            if not value:
                stores.durable.remove_item(durable_key)
                stores.session.remove_item(session_key)
                continue
            stores.durable.set_item(durable_key, vault.encrypt(value))
            stores.session.set_item(session_key, vault.encrypt(value))

    @classmethod
    def read(cls, store: KeyValueStore, vault: CredentialVault, durable: bool = True) -> "IdentityRecord":
        """Decrypt the identity held by ``store``."""
        values = {}
        for attr, (durable_key, session_key) in IDENTITY_KEYS.items():
            values[attr] = vault.decrypt(store.get_item(durable_key if durable else session_key))
        return cls(**values)

    @staticmethod
    def clear(stores: SessionStores) -> None:
        for durable_key, session_key in IDENTITY_KEYS.values():
            stores.durable.remove_item(durable_key)
            stores.session.remove_item(session_key)

    @staticmethod
    def copy_durable_to_session(stores: SessionStores) -> None:
        """Re-propagate the durable ciphertexts; the durable copy wins on mismatch."""
        for durable_key, session_key in IDENTITY_KEYS.values():
            value = stores.durable.get_item(durable_key)
            if value is None:
                stores.session.remove_item(session_key)
            else:
                stores.session.set_item(session_key, value)
