"""
Bank credentials.

Encrypted payloads ("<iv hex>:<ciphertext hex>", AES-256-CBC) are read from
the environment and decrypted once at startup.
"""

from .crypto import CredentialsError, DecryptionError, decrypt, encrypt, generate_key
from .provider import CredentialProvider

__all__ = [
    "CredentialProvider",
    "CredentialsError",
    "DecryptionError",
    "decrypt",
    "encrypt",
    "generate_key",
]
