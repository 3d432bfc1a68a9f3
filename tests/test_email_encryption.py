import pytest

from linguaflow_admin.services import email_encryption
from linguaflow_admin.services.email_encryption import EncryptionError

HEX_KEY = "0f" * 32


def test_encrypt_produces_iv_and_ciphertext_hex():
    encrypted = email_encryption.encrypt_password("s3cret-pass", key=HEX_KEY)

    iv_hex, ciphertext_hex = encrypted.split(":")
    assert len(iv_hex) == 32
    assert len(ciphertext_hex) % 32 == 0
    assert email_encryption.is_encrypted_value(encrypted)
    assert email_encryption.decrypt_password(encrypted, key=HEX_KEY) == "s3cret-pass"


def test_encrypt_uses_random_iv():
    first = email_encryption.encrypt_password("same", key=HEX_KEY)
    second = email_encryption.encrypt_password("same", key=HEX_KEY)

    assert first != second


def test_passphrase_keys_are_stretched():
    encrypted = email_encryption.encrypt_password("pw", key="not a hex key")

    assert email_encryption.decrypt_password(encrypted, key="not a hex key") == "pw"


def test_empty_string_is_allowed():
    encrypted = email_encryption.encrypt_password("", key=HEX_KEY)

    assert email_encryption.decrypt_password(encrypted, key=HEX_KEY) == ""


@pytest.mark.parametrize("value", [None, 123, b"bytes"])
def test_non_string_input_is_rejected(value):
    with pytest.raises(EncryptionError):
        email_encryption.encrypt_password(value, key=HEX_KEY)


def test_wrong_key_fails_to_decrypt():
    encrypted = email_encryption.encrypt_password("a longer password value", key=HEX_KEY)

    with pytest.raises(EncryptionError):
        email_encryption.decrypt_password(encrypted, key="1e" * 32)


@pytest.mark.parametrize("value", ["", "plain", "abc:def", "0" * 32 + ":" + "zz" * 16])
def test_malformed_ciphertext_is_rejected(value):
    with pytest.raises(EncryptionError):
        email_encryption.decrypt_password(value, key=HEX_KEY)


def test_missing_key_is_an_error(monkeypatch):
    monkeypatch.delenv("EMAIL_ENCRYPTION_KEY", raising=False)

    with pytest.raises(EncryptionError):
        email_encryption.encrypt_password("pw")


def test_generated_key_is_usable_hex():
    key = email_encryption.generate_encryption_key()

    assert len(key) == 64
    assert email_encryption.decrypt_password(email_encryption.encrypt_password("x", key=key), key=key) == "x"
