"""
Unit tests for the Credential Vault.
"""

import pytest
from cryptography.fernet import Fernet

from lms_companion.core.errors import DecryptionError, EncryptionError
from lms_companion.core.vault import CredentialVault


class TestRoundTrip:
    """decrypt(encrypt(x)) == x for non-empty strings."""

    @pytest.mark.parametrize(
        "plaintext",
        ["S-100", "ada@example.com", "Ünïcödé ✓", "a" * 2048, " leading and trailing "],
    )
    def test_round_trip(self, vault, plaintext):
        assert vault.decrypt(vault.encrypt(plaintext)) == plaintext

    def test_ciphertext_is_not_plaintext(self, vault):
        token = vault.encrypt("S-100")
        assert "S-100" not in token

    def test_encrypt_is_randomised(self, vault):
        assert vault.encrypt("S-100") != vault.encrypt("S-100")


class TestDecryptNeverRaises:
    """Malformed or absent ciphertext decrypts to ""."""

    @pytest.mark.parametrize("ciphertext", ["", None, "not-a-token", "gAAAAA", "%%%"])
    def test_invalid_input(self, vault, ciphertext):
        assert vault.decrypt(ciphertext) == ""

    def test_token_from_other_key(self, vault):
        other = CredentialVault(Fernet.generate_key())
        assert vault.decrypt(other.encrypt("S-100")) == ""

    def test_unconfigured_vault_decrypts_to_empty(self):
        assert CredentialVault().decrypt("anything") == ""


class TestConfiguration:
    def test_encrypt_without_key(self):
        vault = CredentialVault()

        assert vault.is_configured is False
        with pytest.raises(EncryptionError):
            vault.encrypt("S-100")

    def test_invalid_key(self):
        with pytest.raises(EncryptionError):
            CredentialVault("too-short")

    def test_from_settings(self, settings):
        vault = CredentialVault.from_settings(settings)

        assert vault.is_configured
        assert vault.backend_url == settings.backend_url


class TestJsonHelpers:
    def test_json_round_trip(self, vault):
        data = {"student_id": "S-100", "scores": [1, 2, 3]}
        assert vault.decrypt_json(vault.encrypt_json(data)) == data

    def test_decrypt_json_is_strict(self, vault):
        with pytest.raises(DecryptionError):
            vault.decrypt_json("garbage")

    def test_decrypt_json_rejects_non_json(self, vault):
        with pytest.raises(DecryptionError):
            vault.decrypt_json(vault.encrypt("plain text"))


class TestConditionalEncryption:
    """Login endpoints are always encrypted; the rest follows the toggles."""

    @pytest.fixture
    def toggled(self, fernet_key):
        return CredentialVault(
            fernet_key,
            backend_url="http://lms.test/",
            encrypt_all_payload=True,
            decrypt_all_response=True,
        )

    def test_login_endpoint_always_encrypted(self, vault):
        assert vault.should_encrypt_payload("http://lms.test/api/new-login/")
        assert vault.should_decrypt_response("http://lms.test/api/new-login/")

    def test_other_endpoints_untouched_by_default(self, vault):
        assert not vault.should_encrypt_payload("http://lms.test/api/student/activity/")
        assert vault.conditional_encrypt_json({"a": 1}, "http://lms.test/api/x/") == {"a": 1}

    def test_toggle_only_applies_to_backend(self, toggled):
        assert toggled.should_encrypt_payload("http://lms.test/api/student/activity/")
        assert not toggled.should_encrypt_payload("https://elsewhere.example/api/")

    def test_encrypted_body_shape(self, vault):
        wrapped = vault.conditional_encrypt_json({"email": "a@b.c"}, "http://lms.test/api/new-login/")

        assert set(wrapped) == {"data"}
        assert vault.decrypt_json(wrapped["data"]) == {"email": "a@b.c"}

    def test_decrypts_wrapped_response(self, toggled):
        wrapped = {"data": toggled.encrypt_json({"authorized": True})}
        assert toggled.conditional_decrypt_json(wrapped, "http://lms.test/api/validate-session/") == {"authorized": True}

    def test_undecryptable_response_returned_as_is(self, toggled):
        wrapped = {"data": "not-a-token"}
        assert toggled.conditional_decrypt_json(wrapped, "http://lms.test/api/x/") is wrapped

    def test_plain_response_returned_as_is(self, toggled):
        payload = {"authorized": True}
        assert toggled.conditional_decrypt_json(payload, "http://lms.test/api/x/") is payload
