#!/usr/bin/env python3
"""
ark: local encrypted credential vault and directory locker

Everything sensitive is sealed with one master key:
- Master key = Argon2id(password, salt) -> 32 bytes (t=1, m=64 MiB, p=4).
  The salt sits in config.yaml; the key itself is never written in the clear.
- Every store value is JSON, sealed as nonce(12) || AES-256-GCM(ciphertext+tag).
- After a successful prompt the key is cached on disk (encrypted under a key
  bound to this installation) for `security.password_cache_timeout_seconds`.

Layout (~/.ark by default, or $ARK_CONFIG_DIR / --config-dir):
  config.yaml              # salt, log level, cache timeout
  data/ark.db              # SQLite store; one table of (bucket, key, sealed value)
  data/.master_key_cache   # opaque, safe to delete
  locks/                   # per-directory advisory lock files
  backup/                  # encrypted store backups
  logs/ark.log

Commands:
  init                          Set the master password and create the store
  vault set|get|list|search|update|delete|tag|untag
  lock add|unlock|list          Turn a directory into one encrypted archive and back
  backup create|list|restore    Whole-store image, wrapped once more under the master key
  config show|cache-timeout
  change-password               New salt + key, all records re-encrypted
  logout                        Drop the cached master key
"""
from __future__ import annotations

import logging
import sqlite3
import sys

from ark.ui.cli import build_parser
from ark.utils.config import Config
from ark.utils.errors import ArkError
from ark.utils.helper import config_paths, resolve_config_dir
from ark.utils.logger import setup_logging

logger = logging.getLogger("ark.cli")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.config_dir = resolve_config_dir(args.config_dir)

    level = "info"
    if Config.is_initialized(args.config_dir):
        try:
            level = Config.load(args.config_dir).log_level
        except ArkError:
            pass  # the command itself reports a broken config
    setup_logging("debug" if args.verbose else level, config_paths(args.config_dir)["logs"])

    try:
        args.func(args)
    except ArkError as e:
        print(f"[!] {e}", file=sys.stderr)
        return 1
    except (OSError, sqlite3.Error) as e:
        logger.debug("command failed", exc_info=True)
        print(f"[!] {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print(file=sys.stderr)
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
