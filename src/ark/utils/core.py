import argparse
import base64
import json
import logging
import sys

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List

import yaml

from ark.crypto.aead import aead_decrypt, aead_encrypt, generate_key
from ark.crypto.hash import sha256_hex
from ark.crypto.keys import MasterKeyManager
from ark.storage.db import Bucket, Database
from ark.storage.vault import VaultManager, filter_by_tags, render_value
from ark.utils import password
from ark.utils.config import Config
from ark.utils.dataModels import BackupRecord, VaultEntry
from ark.utils.dirlock import DirLockService
from ark.utils.errors import (
    ArkError,
    AuthenticationError,
    DecryptError,
    NotFoundError,
    NotLockedError,
    PromptError,
)
from ark.utils.helper import ensure_private_dir, utc_now, write_private_file

logger = logging.getLogger("ark.cli")

INSTALLATION_KEY = "installation"


def key_manager(cfg: Config) -> MasterKeyManager:
    return MasterKeyManager(cfg, prompt=password.get_master_password)


def verify_master_key(db: Database, keys: MasterKeyManager) -> None:
    """A wrong master password derives a valid-looking key; prove it against a known record."""
    try:
        db.get(Bucket.CONFIG, INSTALLATION_KEY)
    except DecryptError:
        keys.forget()
        raise AuthenticationError() from None
    except NotFoundError:
        logger.debug("no installation record; skipping master key check")


def write_installation_record(db: Database, cfg: Config) -> None:
    backup_key = cfg.backup.encryption_key or generate_key()
    db.set(Bucket.CONFIG, INSTALLATION_KEY, {
        "version": cfg.version,
        "created_at": cfg.created_at,
        "backup_encryption_key": base64.b64encode(backup_key).decode(),
    })


@contextmanager
def open_store(args: argparse.Namespace) -> Iterator[tuple[Config, MasterKeyManager, Database]]:
    cfg = Config.load(args.config_dir)
    keys = key_manager(cfg)
    master_key = keys.get_master_key()
    with Database(cfg.database_path, master_key) as db:
        verify_master_key(db, keys)
        yield cfg, keys, db


def warn_if_weak(secret: str) -> None:
    try:
        password.validate_password_strength(secret)
    except PromptError as exc:
        print(f"[!] Warning: weak password ({exc})")


def cmd_init(args: argparse.Namespace) -> None:
    config_dir: Path = args.config_dir
    if Config.is_initialized(config_dir):
        print(f"[!] ark is already initialized at {config_dir}")
        return

    cfg = Config.default(config_dir)
    cfg.create_directory_structure()
    master_password = password.setup_master_password()
    warn_if_weak(master_password)
    keys = key_manager(cfg)
    master_key = keys.set_master_password(master_password)
    cfg.validate()
    with Database(cfg.database_path, master_key) as db:
        write_installation_record(db, cfg)
    cfg.save()
    print("[+] ark initialized")
    print(f"    configuration directory: {config_dir}")


# -- vault ---------------------------------------------------------------


def _read_value(args: argparse.Namespace) -> str | None:
    if args.value is not None:
        return args.value
    if args.interactive:
        return input("Enter value: ")
    if sys.stdin.isatty():
        return None
    return sys.stdin.read().strip()


def _print_entries(entries: List[VaultEntry], output: str) -> None:
    if output in ("json", "yaml"):
        summary = [
            {"key": e.key, "format": e.format, "description": e.description,
             "tags": e.tags, "created_at": e.created_at, "updated_at": e.updated_at}
            for e in entries
        ]
        if output == "json":
            print(json.dumps(summary, indent=2, ensure_ascii=False))
        else:
            print(yaml.safe_dump(summary, sort_keys=False), end="")
        return
    if not entries:
        print("(empty)")
        return
    print("KEY\tFORMAT\tDESCRIPTION\tTAGS\tCREATED")
    for e in entries:
        tags = ", ".join(e.tags) or "-"
        print(f"{e.key}\t{e.format}\t{e.description or '-'}\t{tags}\t{e.created_at[:16]}")


def cmd_vault_set(args: argparse.Namespace) -> None:
    value = _read_value(args)
    if not value:
        raise ArkError("value cannot be empty")
    with open_store(args) as (_, _, db):
        VaultManager(db).set(args.key, value, args.format or "text", args.description or "", args.tags or [])
    print(f"[+] Stored credential '{args.key}'")


def cmd_vault_get(args: argparse.Namespace) -> None:
    with open_store(args) as (_, _, db):
        entry = VaultManager(db).touch(args.key)
    if args.metadata:
        print(f"Key: {entry.key}")
        print(f"Format: {entry.format}")
        print(f"Description: {entry.description}")
        print(f"Tags: {', '.join(entry.tags)}")
        print(f"Created: {entry.created_at}")
        print(f"Updated: {entry.updated_at}")
        print("---")
    print(render_value(entry.value, entry.format))


def cmd_vault_list(args: argparse.Namespace) -> None:
    with open_store(args) as (_, _, db):
        entries = VaultManager(db).list()
    if args.tags:
        entries = filter_by_tags(entries, args.tags)
    if args.filter:
        needle = args.filter.lower()
        entries = [e for e in entries if needle in e.key.lower() or needle in e.description.lower()]
    _print_entries(entries, args.output)


def cmd_vault_search(args: argparse.Namespace) -> None:
    with open_store(args) as (_, _, db):
        entries = VaultManager(db).search(args.query)
    if not entries and args.output == "table":
        print(f"No credentials matching '{args.query}'")
        return
    _print_entries(entries, args.output)


def cmd_vault_update(args: argparse.Namespace) -> None:
    value = _read_value(args)
    with open_store(args) as (_, _, db):
        VaultManager(db).update(args.key, value=value or None, format=args.format,
                                description=args.description, tags=args.tags)
    print(f"[+] Updated credential '{args.key}'")


def _confirm(question: str) -> bool:
    try:
        answer = input(f"{question} [y/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def cmd_vault_delete(args: argparse.Namespace) -> None:
    with open_store(args) as (_, _, db):
        vault = VaultManager(db)
        if not vault.exists(args.key):
            raise NotFoundError(f"credential '{args.key}' not found")
        if not args.force and not _confirm(f"Delete credential '{args.key}'?"):
            print("Aborted.")
            return
        vault.delete(args.key)
    print(f"[+] Deleted credential '{args.key}'")


def cmd_vault_tag(args: argparse.Namespace) -> None:
    with open_store(args) as (_, _, db):
        VaultManager(db).add_tag(args.key, args.tag)
    print(f"[+] Tagged '{args.key}' with '{args.tag}'")


def cmd_vault_untag(args: argparse.Namespace) -> None:
    with open_store(args) as (_, _, db):
        VaultManager(db).remove_tag(args.key, args.tag)
    print(f"[+] Removed tag '{args.tag}' from '{args.key}'")


# -- lock ----------------------------------------------------------------


def cmd_lock_add(args: argparse.Namespace) -> None:
    with open_store(args) as (cfg, keys, db):
        secret = None
        if not args.use_master:
            secret = args.password or password.get_password_with_confirmation(
                "Set directory password: ", "Confirm password: ")
        svc = DirLockService(db, keys, cfg.paths["locks"])
        rec = svc.lock(args.directory, args.use_master, secret, args.hide)
    print(f"[+] Locked {rec.path}")


def cmd_lock_unlock(args: argparse.Namespace) -> None:
    with open_store(args) as (cfg, keys, db):
        svc = DirLockService(db, keys, cfg.paths["locks"])
        rec = svc.get(args.directory)
        secret = None
        if not rec.use_master:
            secret = args.password or password.get_directory_password()
        svc.unlock(args.directory, secret)
    print(f"[+] Unlocked {rec.path}")


def cmd_lock_list(args: argparse.Namespace) -> None:
    with open_store(args) as (cfg, keys, db):
        recs = DirLockService(db, keys, cfg.paths["locks"]).list()
    if not recs:
        print("No locked directories.")
        return
    for r in recs:
        print(f"{r.path}\tmaster={r.use_master}\thidden={r.hidden}\tlocked_at={r.locked_at}\t"
              f"last_accessed={r.last_accessed or '-'}")


def cmd_lock_status(args: argparse.Namespace) -> None:
    """Show one locked directory and record this access in its last-accessed time."""
    with open_store(args) as (cfg, keys, db):
        svc = DirLockService(db, keys, cfg.paths["locks"])
        try:
            rec = svc.get(args.directory)
        except NotLockedError:
            print(f"{args.directory}: not locked")
            return
        svc.stamp(rec.path)
    print(f"{rec.path}: locked")
    print(f"  key: {'master password' if rec.use_master else 'directory password'}")
    print(f"  hidden: {rec.hidden}")
    print(f"  locked at: {rec.locked_at}")
    print(f"  files: {rec.metadata.get('files', '?')}")
    print(f"  last accessed: {rec.last_accessed or 'never'}")


# -- backup --------------------------------------------------------------


def cmd_backup_create(args: argparse.Namespace) -> None:
    with open_store(args) as (cfg, keys, db):
        # outer layer: the store image never leaves this process unwrapped
        blob = aead_encrypt(keys.get_master_key(), db.backup())
        if args.output:
            out = Path(args.output).expanduser()
        else:
            out = ensure_private_dir(Path(cfg.backup.directory)) / f"ark-backup-{utc_now():%Y%m%d-%H%M%S}.bin"
        write_private_file(out, blob)
        record = BackupRecord(name=out.name, path=str(out.resolve()), size=len(blob), sha256=sha256_hex(blob))
        db.set_model(Bucket.BACKUP_METADATA, record.name, record)
    print(f"[+] Backup written to {out} ({len(blob)} bytes)")


def cmd_backup_list(args: argparse.Namespace) -> None:
    with open_store(args) as (_, _, db):
        records = [db.get_model(Bucket.BACKUP_METADATA, k) for k in db.list(Bucket.BACKUP_METADATA)]
    if not records:
        print("No backups found.")
        return
    for r in records:
        print(f"{r.name}\t{r.size} bytes\t{r.created_at}\t{r.path}")


def cmd_backup_restore(args: argparse.Namespace) -> None:
    src = Path(args.file).expanduser()
    try:
        blob = src.read_bytes()
    except FileNotFoundError:
        raise NotFoundError(f"backup file not found: {src}") from None
    with open_store(args) as (_, keys, db):
        try:
            data = aead_decrypt(keys.get_master_key(), blob)
        except DecryptError as exc:
            raise DecryptError("failed to decrypt backup (wrong master password or corrupted file)") from exc
        if not args.force and not _confirm("Restoring replaces every record in the store. Continue?"):
            print("Aborted.")
            return
        db.restore(data)
        verify_master_key(db, keys)
    print(f"[+] Restored store from {src}")
