from pathlib import Path

from argon2.exceptions import HashingError
from argon2.low_level import hash_secret_raw, Type as Argon2Type
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes

from ark.crypto.aead import KEY_SIZE, SALT_SIZE
from ark.utils.errors import DerivationError

# Argon2id parameters; changing any of these orphans every existing record.
ARGON2_TIME_COST = 1
ARGON2_MEMORY_COST_KiB = 64 * 1024
ARGON2_PARALLELISM = 4


def sha256_bytes(data: bytes) -> bytes:
    digest = hashes.Hash(hashes.SHA256(), backend=default_backend())
    digest.update(data)
    return digest.finalize()


def sha256_hex(data: bytes) -> str:
    return sha256_bytes(data).hex()


def derive_key(password: str, salt: bytes) -> bytes:
    """key = Argon2id(password, salt) -> 32 bytes"""
    if len(salt) != SALT_SIZE:
        raise ValueError(f"invalid salt size: expected {SALT_SIZE} bytes, got {len(salt)}")
    try:
        return hash_secret_raw(
            secret=password.encode("utf-8"),
            salt=salt,
            time_cost=ARGON2_TIME_COST,
            memory_cost=ARGON2_MEMORY_COST_KiB,
            parallelism=ARGON2_PARALLELISM,
            hash_len=KEY_SIZE,
            type=Argon2Type.ID,
        )
    except HashingError as exc:
        raise DerivationError(f"failed to derive key: {exc}") from exc


def cache_encryption_key(config_dir: Path | str, salt: bytes) -> bytes:
    """Key for the on-disk master key cache, bound to one installation (path + salt)."""
    return sha256_bytes(str(config_dir).encode("utf-8") + salt)
