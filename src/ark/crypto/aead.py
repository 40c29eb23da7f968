import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ark.utils.errors import DecryptError

KEY_SIZE = 32  # AES-256
NONCE_SIZE = 12  # 96-bit GCM nonce
SALT_SIZE = 32
TAG_SIZE = 16


def _cipher(key: bytes) -> AESGCM:
    if len(key) != KEY_SIZE:
        raise ValueError(f"invalid key size: expected {KEY_SIZE} bytes, got {len(key)}")
    return AESGCM(key)


def aead_encrypt(key: bytes, plaintext: bytes, aad: bytes | None = None) -> bytes:
    """Encrypt under AES-256-GCM and return ``nonce || ciphertext+tag``."""
    nonce = os.urandom(NONCE_SIZE)
    ct = _cipher(key).encrypt(nonce, plaintext, aad)
    return nonce + ct


def aead_decrypt(key: bytes, blob: bytes, aad: bytes | None = None) -> bytes:
    """Reverse :func:`aead_encrypt`. Raises DecryptError on any authentication failure."""
    aesgcm = _cipher(key)
    if len(blob) < NONCE_SIZE + TAG_SIZE:
        raise DecryptError("failed to decrypt data: ciphertext too short")
    nonce, ct = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
    try:
        return aesgcm.decrypt(nonce, ct, aad)
    except InvalidTag as exc:
        raise DecryptError("failed to decrypt data") from exc


def generate_salt() -> bytes:
    return os.urandom(SALT_SIZE)


def generate_key() -> bytes:
    return os.urandom(KEY_SIZE)
