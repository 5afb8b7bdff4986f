"""Secret box for carrier credentials stored at rest.

Ciphertexts are versioned strings of the form ``v1.<base64url(iv || tag || ciphertext)>``
produced with AES-256-GCM (12-byte IV, 16-byte tag).
"""

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

VERSION_PREFIX = "v1."
IV_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32


class SecretBoxError(Exception):
    """Raised when a stored secret cannot be decrypted."""


def _check_key(key: bytes) -> None:
    if len(key) != KEY_LENGTH:
        raise SecretBoxError(f"Encryption key must be {KEY_LENGTH} bytes")


def encrypt_string(plaintext: str, key: bytes) -> str:
    """Encrypt a UTF-8 string into the versioned secret format."""
    _check_key(key)

    iv = os.urandom(IV_LENGTH)
    encryptor = Cipher(algorithms.AES(key), modes.GCM(iv)).encryptor()
    ciphertext = encryptor.update(plaintext.encode("utf-8")) + encryptor.finalize()

    packed = iv + encryptor.tag + ciphertext
    encoded = base64.urlsafe_b64encode(packed).decode("ascii").rstrip("=")
    return f"{VERSION_PREFIX}{encoded}"


def decrypt_string(payload: str, key: bytes) -> str:
    """Decrypt a value produced by ``encrypt_string``.

    Raises SecretBoxError on unknown versions, truncated payloads, wrong keys
    or tampered ciphertext.
    """
    _check_key(key)

    if not payload.startswith(VERSION_PREFIX):
        raise SecretBoxError("Unsupported secret format")

    encoded = payload[len(VERSION_PREFIX):]
    try:
        packed = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
    except (binascii.Error, ValueError) as e:
        raise SecretBoxError("Secret is not valid base64url") from e

    if len(packed) < IV_LENGTH + TAG_LENGTH:
        raise SecretBoxError("Secret payload is truncated")

    iv = packed[:IV_LENGTH]
    tag = packed[IV_LENGTH:IV_LENGTH + TAG_LENGTH]
    ciphertext = packed[IV_LENGTH + TAG_LENGTH:]

    decryptor = Cipher(algorithms.AES(key), modes.GCM(iv, tag)).decryptor()
    try:
        plaintext = decryptor.update(ciphertext) + decryptor.finalize()
    except InvalidTag as e:
        raise SecretBoxError("Secret failed authentication") from e

    return plaintext.decode("utf-8")


def fingerprint_secret(value: str) -> str:
    """SHA-256 hex digest used to identify a credential without storing it."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
