import argparse
import logging

import yaml

from ark.crypto.keys import MasterKeyCache
from ark.utils import password
from ark.utils.config import Config
from ark.utils.core import open_store, warn_if_weak, write_installation_record
from ark.utils.dirlock import DirLockService
from ark.utils.errors import ArkError

logger = logging.getLogger("ark.cli")


def cmd_change_password(args: argparse.Namespace) -> None:
    """Change the master password and re-encrypt every record under the new key.

    Steps:
      1) Open the store with the current master key (prompting if needed).
      2) Refuse while directories locked with the master key exist; their
         archives are sealed under the old key and would become unreadable.
      3) Regenerate salt and backup key, derive the new master key.
      4) Re-encrypt all records in one transaction, then save the config.
    """
    with open_store(args) as (cfg, keys, db):
        svc = DirLockService(db, keys, cfg.paths["locks"])
        master_locked = [r.path for r in svc.list() if r.use_master]
        if master_locked:
            raise ArkError(
                "unlock these directories before changing the master password: " + ", ".join(master_locked)
            )

        new_password = password.get_password_with_confirmation("Enter new master password: ",
                                                               "Confirm new master password: ")
        if len(new_password) < password.MIN_PASSWORD_LENGTH:
            raise ArkError(f"password must be at least {password.MIN_PASSWORD_LENGTH} characters long")
        warn_if_weak(new_password)

        # config is saved only after the store has been re-encrypted
        new_key = keys.set_master_password(new_password)
        count = db.rekey(new_key)
        write_installation_record(db, cfg)
        cfg.save()
    print(f"[+] Master password changed; {count} records re-encrypted")


def cmd_cache_timeout(args: argparse.Namespace) -> None:
    cfg = Config.load(args.config_dir)
    cfg.set_password_cache_timeout(args.seconds)
    cfg.save()
    if cfg.security.password_cache_timeout == 0:
        MasterKeyCache.for_config(cfg).clear()
        print("[+] Master password caching disabled")
    else:
        print(f"[+] Master password cache timeout set to {cfg.security.password_cache_timeout}s")


def cmd_config_show(args: argparse.Namespace) -> None:
    cfg = Config.load(args.config_dir)
    shown = cfg.to_dict()
    shown.pop("salt")
    shown["config_dir"] = str(cfg.config_dir)
    shown["database_path"] = str(cfg.database_path)
    print(yaml.safe_dump(shown, sort_keys=False), end="")


def cmd_logout(args: argparse.Namespace) -> None:
    cfg = Config.load(args.config_dir)
    MasterKeyCache.for_config(cfg).clear()
    print("[+] Cached master key cleared")
