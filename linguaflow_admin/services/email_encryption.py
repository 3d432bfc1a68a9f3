"""AES-256-CBC encryption for stored SMTP passwords.

Ciphertexts are serialized as ``<iv_hex>:<ciphertext_hex>``. The key comes
from ``EMAIL_ENCRYPTION_KEY``: a 64-char hex value is used directly, any
other secret is stretched to 32 bytes with scrypt.
"""

import os
import re
import secrets

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

KEY_BYTES = 32
IV_BYTES = 16
KDF_SALT = b'linguaflow-smtp'
HEX_KEY_RE = re.compile(r'^[0-9a-fA-F]{64}$')
ENCRYPTED_VALUE_RE = re.compile(r'^[0-9a-f]{32}:(?:[0-9a-f]{32})+$')


class EncryptionError(ValueError):
    pass


def generate_encryption_key():
    return secrets.token_hex(KEY_BYTES)


def derive_key(secret=None):
    raw = secret if secret is not None else os.getenv('EMAIL_ENCRYPTION_KEY', '')
    raw = str(raw or '').strip()
    if not raw:
        raise EncryptionError('EMAIL_ENCRYPTION_KEY is not configured')
    if HEX_KEY_RE.match(raw):
        return bytes.fromhex(raw)
    kdf = Scrypt(salt=KDF_SALT, length=KEY_BYTES, n=2 ** 14, r=8, p=1)
    return kdf.derive(raw.encode('utf-8'))


def encrypt_password(plaintext, key=None):
    if not isinstance(plaintext, str):
        raise EncryptionError('Password must be a string')
    key_bytes = derive_key(key)
    iv = os.urandom(IV_BYTES)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext.encode('utf-8')) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key_bytes), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return f"{iv.hex()}:{ciphertext.hex()}"


def decrypt_password(value, key=None):
    if not is_encrypted_value(value):
        raise EncryptionError('Invalid encrypted password format')
    iv_hex, ciphertext_hex = value.split(':', 1)
    key_bytes = derive_key(key)
    decryptor = Cipher(algorithms.AES(key_bytes), modes.CBC(bytes.fromhex(iv_hex))).decryptor()
    padded = decryptor.update(bytes.fromhex(ciphertext_hex)) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode('utf-8')
    except ValueError as exc:
        # Wrong keys usually surface as a padding failure.
        raise EncryptionError('Failed to decrypt password') from exc


def is_encrypted_value(value):
    return isinstance(value, str) and bool(ENCRYPTED_VALUE_RE.match(value))
