"""
AES-256-CBC encryption for stored bank credentials.

Payload format: "<iv hex>:<ciphertext hex>"
- iv: 16 random bytes
- ciphertext: PKCS7-padded UTF-8 plaintext
- key: 32 bytes supplied as 64 hex characters
"""

import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

# Constants
KEY_LENGTH = 32  # 256 bits
IV_LENGTH = 16
BLOCK_SIZE_BITS = 128
PAYLOAD_SEPARATOR = ":"


class CredentialsError(Exception):
    """Base exception for credential handling errors."""

    pass


class DecryptionError(CredentialsError):
    """A payload could not be decrypted with the configured key."""

    pass


def parse_key(key_hex: str) -> bytes:
    """
    Parse a hex encryption key.

    Raises:
        CredentialsError: If the key is not 64 hex characters
    """
    try:
        key = bytes.fromhex(key_hex.strip())
    except ValueError as e:
        raise CredentialsError("Encryption key must be hex encoded") from e
    if len(key) != KEY_LENGTH:
        raise CredentialsError(
            f"Encryption key must be {KEY_LENGTH} bytes ({KEY_LENGTH * 2} hex chars), "
            f"got {len(key)} bytes"
        )
    return key


def generate_key() -> str:
    """Generate a fresh random key as 64 hex characters."""
    return os.urandom(KEY_LENGTH).hex()


def encrypt(plaintext: str, key_hex: str) -> str:
    """
    Encrypt text into the "<iv hex>:<ciphertext hex>" payload format.

    Args:
        plaintext: Text to encrypt (usually a JSON credential object)
        key_hex: 64-char hex key

    Returns:
        Encrypted payload
    """
    key = parse_key(key_hex)
    iv = os.urandom(IV_LENGTH)

    padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    return f"{iv.hex()}{PAYLOAD_SEPARATOR}{ciphertext.hex()}"


def decrypt(payload: str, key_hex: str) -> str:
    """
    Decrypt a "<iv hex>:<ciphertext hex>" payload.

    Args:
        payload: Encrypted payload
        key_hex: 64-char hex key

    Returns:
        Decrypted text

    Raises:
        CredentialsError: If the key is malformed
        DecryptionError: If the payload is malformed or the key is wrong
    """
    key = parse_key(key_hex)

    iv_hex, separator, cipher_hex = payload.strip().partition(PAYLOAD_SEPARATOR)
    if not separator or not iv_hex or not cipher_hex:
        raise DecryptionError("Payload must have the form '<iv hex>:<ciphertext hex>'")

    try:
        iv = bytes.fromhex(iv_hex)
        ciphertext = bytes.fromhex(cipher_hex)
    except ValueError as e:
        raise DecryptionError("Payload is not valid hex") from e
    if len(iv) != IV_LENGTH:
        raise DecryptionError(f"IV must be {IV_LENGTH} bytes, got {len(iv)}")

    try:
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        raise DecryptionError(f"Decryption failed: {e}") from e
