"""Non-secret installation settings, persisted as ``<config_dir>/config.yaml``.

The salt lives here in plaintext. The master key and the backup encryption key
are runtime-only attributes and are never written to the YAML file.
"""
import base64
import binascii
import logging

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml

from ark.crypto.aead import SALT_SIZE
from ark.utils.dataModels import CONFIG_VERSION, DEFAULT_CACHE_TIMEOUT_SECONDS, now_iso
from ark.utils.errors import ConfigError, NotInitializedError
from ark.utils.helper import config_paths, ensure_private_dir, write_private_file

logger = logging.getLogger("ark.config")

LOG_LEVELS = ("debug", "info", "warn", "error")


@dataclass
class SecurityConfig:
    password_cache_timeout: int = DEFAULT_CACHE_TIMEOUT_SECONDS


@dataclass
class BackupConfig:
    directory: str = ""
    encryption_key: bytes | None = field(default=None, repr=False)  # runtime only


@dataclass
class Config:
    config_dir: Path
    version: str = CONFIG_VERSION
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    salt: bytes = b""
    log_level: str = "info"
    security: SecurityConfig = field(default_factory=SecurityConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)

    def __post_init__(self) -> None:
        if not self.backup.directory:
            self.backup.directory = str(self.paths["backup"])

    @property
    def paths(self) -> Dict[str, Path]:
        return config_paths(self.config_dir)

    @property
    def database_path(self) -> Path:
        return self.paths["db"]

    @classmethod
    def default(cls, config_dir: Path) -> "Config":
        return cls(config_dir=config_dir)

    @staticmethod
    def is_initialized(config_dir: Path) -> bool:
        return config_paths(config_dir)["config"].exists()

    @classmethod
    def load(cls, config_dir: Path) -> "Config":
        path = config_paths(config_dir)["config"]
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except FileNotFoundError:
            raise NotInitializedError() from None
        except yaml.YAMLError as exc:
            raise ConfigError(f"failed to parse config file: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError("failed to parse config file: expected a mapping")

        try:
            salt = base64.b64decode(raw.get("salt") or "", validate=True)
        except (binascii.Error, TypeError) as exc:
            raise ConfigError("failed to parse config file: salt is not valid base64") from exc

        security = raw.get("security") or {}
        backup = raw.get("backup") or {}
        cfg = cls(
            config_dir=config_dir,
            version=str(raw.get("version") or CONFIG_VERSION),
            created_at=str(raw.get("created_at") or now_iso()),
            updated_at=str(raw.get("updated_at") or now_iso()),
            salt=salt,
            log_level=str(raw.get("log_level") or "info").lower(),
            security=SecurityConfig(),
            backup=BackupConfig(directory=str(backup.get("directory") or "")),
        )
        timeout = security.get("password_cache_timeout_seconds")
        if timeout is not None:
            cfg.set_password_cache_timeout(int(timeout))
        logger.debug("loaded configuration from %s", path)
        return cfg

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "salt": base64.b64encode(self.salt).decode(),
            "log_level": self.log_level,
            "security": {"password_cache_timeout_seconds": self.security.password_cache_timeout},
            "backup": {"directory": self.backup.directory},
        }

    def save(self) -> None:
        self.updated_at = now_iso()
        ensure_private_dir(self.config_dir)
        data = yaml.safe_dump(self.to_dict(), sort_keys=False)
        write_private_file(self.paths["config"], data.encode("utf-8"))
        logger.debug("saved configuration to %s", self.paths["config"])

    def create_directory_structure(self) -> None:
        for name in ("data", "logs", "locks", "backup"):
            ensure_private_dir(self.paths[name])

    def set_password_cache_timeout(self, seconds: int) -> None:
        # 0 disables the disk cache
        self.security.password_cache_timeout = max(0, seconds)

    def validate(self) -> None:
        if not self.version:
            raise ConfigError("version is required")
        if len(self.salt) != SALT_SIZE:
            raise ConfigError("invalid salt size")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"invalid log level: {self.log_level}")
