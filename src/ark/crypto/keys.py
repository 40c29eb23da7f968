"""Master key lifecycle: derivation, in-memory holding and the encrypted disk cache.

The disk cache is an EncryptedBlob of ``{"key": <b64>, "expires_at": <iso8601>}``
under a key derived from the config directory path and the salt, so a copied
cache file is useless on another installation.

The cache lock below only serialises threads of one process; two ark processes
may still race on the cache file. Losing that race costs one extra prompt.
"""
import base64
import binascii
import datetime as _dt
import json
import logging
import threading

from pathlib import Path
from typing import Callable

from ark.crypto.aead import KEY_SIZE, aead_decrypt, aead_encrypt, generate_key, generate_salt
from ark.crypto.hash import cache_encryption_key, derive_key
from ark.utils.config import Config
from ark.utils.errors import ArkError, DecryptError, DerivationError, NotInitializedError, PromptError
from ark.utils.helper import ensure_private_dir, parse_iso, utc_now, write_private_file
from ark.utils.password import get_master_password

logger = logging.getLogger("ark.keys")

Clock = Callable[[], _dt.datetime]


class MasterKeyCache:
    def __init__(self, path: Path, encryption_key: bytes, clock: Clock = utc_now):
        self.path = Path(path)
        self._encryption_key = encryption_key
        self._clock = clock
        self._lock = threading.Lock()

    @classmethod
    def for_config(cls, config: Config, clock: Clock = utc_now) -> "MasterKeyCache":
        return cls(
            config.paths["cache"],
            cache_encryption_key(config.config_dir, config.salt),
            clock=clock,
        )

    def _discard(self, reason: str) -> None:
        logger.debug("discarding master key cache: %s", reason)
        self.path.unlink(missing_ok=True)

    def load(self) -> bytes | None:
        """Return the cached key, or None on miss. Corrupt or expired caches are deleted."""
        with self._lock:
            try:
                blob = self.path.read_bytes()
            except FileNotFoundError:
                return None

            try:
                entry = json.loads(aead_decrypt(self._encryption_key, blob))
                key = base64.b64decode(entry["key"], validate=True)
                expires_at = parse_iso(entry["expires_at"])
            except DecryptError:
                self._discard("decryption failed")
                return None
            except (ValueError, KeyError, TypeError, binascii.Error):
                self._discard("malformed entry")
                return None

            if len(key) != KEY_SIZE:
                self._discard("bad key length")
                return None
            if self._clock() >= expires_at:
                self._discard("expired")
                return None
            return key

    def save(self, key: bytes, timeout_seconds: int) -> None:
        expires_at = self._clock() + _dt.timedelta(seconds=timeout_seconds)
        entry = {
            "key": base64.b64encode(key).decode(),
            "expires_at": expires_at.isoformat(),
        }
        blob = aead_encrypt(self._encryption_key, json.dumps(entry).encode("utf-8"))
        with self._lock:
            ensure_private_dir(self.path.parent)
            write_private_file(self.path, blob)
        logger.debug("cached master key until %s", entry["expires_at"])

    def clear(self) -> None:
        with self._lock:
            self.path.unlink(missing_ok=True)


class MasterKeyManager:
    """Owns the master key for one command invocation.

    ``get_master_key`` is the single entry point callers use; it prompts only
    when neither memory nor the disk cache can supply the key.
    """

    def __init__(
        self,
        config: Config,
        prompt: Callable[[], str] = get_master_password,
        cache: MasterKeyCache | None = None,
        clock: Clock = utc_now,
    ):
        self.config = config
        self._prompt = prompt
        self._clock = clock
        self._cache = cache
        self._key: bytes | None = None

    @property
    def cache(self) -> MasterKeyCache:
        if self._cache is None:
            self._cache = MasterKeyCache.for_config(self.config, clock=self._clock)
        return self._cache

    @property
    def has_key(self) -> bool:
        return self._key is not None

    def get_master_key(self) -> bytes:
        if self._key is not None:
            return self._key

        timeout = self.config.security.password_cache_timeout
        if timeout > 0 and self.config.salt:
            cached = self.cache.load()
            if cached is not None:
                logger.debug("master key loaded from cache")
                self._key = cached
                return cached

        if not self.config.salt:
            raise NotInitializedError("no salt found in config - ark may not be initialized. Run 'ark init' first")

        try:
            password = self._prompt()
        except PromptError:
            raise
        except (EOFError, OSError) as exc:
            raise PromptError(f"failed to get master password: {exc}") from exc

        key = self.unlock_with(password)
        if timeout > 0:
            try:
                self.cache.save(key, timeout)
            except (OSError, ArkError) as exc:
                logger.warning("could not write master key cache: %s", exc)
        return key

    def unlock_with(self, password: str) -> bytes:
        """Derive from the stored salt and hold the key, without prompting."""
        if not self.config.salt:
            raise NotInitializedError()
        try:
            key = derive_key(password, self.config.salt)
        except ValueError as exc:
            raise DerivationError(f"failed to derive master key: {exc}") from exc
        self._key = key
        return key

    def set_master_password(self, password: str) -> bytes:
        """Regenerate salt and backup key for a new password and hold the new master key.

        The caller is responsible for re-encrypting existing records and saving the config.
        """
        self.cache.clear()
        self.config.salt = generate_salt()
        self.config.backup.encryption_key = generate_key()
        self._cache = None  # cache key depends on the salt
        return self.unlock_with(password)

    def forget(self) -> None:
        self._key = None
        self.cache.clear()
