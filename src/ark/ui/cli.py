import argparse

from ark.utils.core import (
    cmd_backup_create,
    cmd_backup_list,
    cmd_backup_restore,
    cmd_init,
    cmd_lock_add,
    cmd_lock_list,
    cmd_lock_status,
    cmd_lock_unlock,
    cmd_vault_delete,
    cmd_vault_get,
    cmd_vault_list,
    cmd_vault_search,
    cmd_vault_set,
    cmd_vault_tag,
    cmd_vault_untag,
    cmd_vault_update,
)
from ark.utils.dataModels import VALID_FORMATS
from ark.utils.maintain import cmd_cache_timeout, cmd_change_password, cmd_config_show, cmd_logout


def _tags(value: str) -> list[str]:
    return [t.strip() for t in value.split(",") if t.strip()]


def _add_entry_flags(p: argparse.ArgumentParser, default_format: str | None) -> None:
    p.add_argument("key", help="Credential key")
    p.add_argument("value", nargs="?", help="Value (read from stdin when omitted)")
    p.add_argument("-f", "--format", default=default_format, choices=VALID_FORMATS, type=str.lower,
                   help="Format of the value")
    p.add_argument("-d", "--description", default=None, help="Description of the credential")
    p.add_argument("-t", "--tags", type=_tags, default=None, help="Comma-separated tags")
    p.add_argument("-i", "--interactive", action="store_true", help="Enter value interactively")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ark", description="Local encrypted credential vault and directory locker")
    p.add_argument("--config-dir", default=None, help="Configuration directory (default: $ARK_CONFIG_DIR or ~/.ark)")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_init = sub.add_parser("init", help="Initialize ark with a master password")
    p_init.set_defaults(func=cmd_init)

    # vault
    p_vault = sub.add_parser("vault", help="Manage credentials in the encrypted vault")
    vsub = p_vault.add_subparsers(dest="vault_cmd", required=True)

    p_set = vsub.add_parser("set", help="Store a credential")
    _add_entry_flags(p_set, "text")
    p_set.set_defaults(func=cmd_vault_set)

    p_get = vsub.add_parser("get", help="Show a credential")
    p_get.add_argument("key")
    p_get.add_argument("-m", "--metadata", action="store_true", help="Show description, tags and timestamps")
    p_get.set_defaults(func=cmd_vault_get)

    p_list = vsub.add_parser("list", help="List credentials")
    p_list.add_argument("-o", "--output", default="table", choices=("table", "json", "yaml"))
    p_list.add_argument("-t", "--tags", type=_tags, default=[], help="Only entries carrying all these tags")
    p_list.add_argument("--filter", default="", help="Filter by key name or description")
    p_list.set_defaults(func=cmd_vault_list)

    p_search = vsub.add_parser("search", help="Search credentials")
    p_search.add_argument("query")
    p_search.add_argument("-o", "--output", default="table", choices=("table", "json", "yaml"))
    p_search.set_defaults(func=cmd_vault_search)

    p_upd = vsub.add_parser("update", help="Update an existing credential")
    _add_entry_flags(p_upd, None)
    p_upd.set_defaults(func=cmd_vault_update)

    p_del = vsub.add_parser("delete", help="Delete a credential")
    p_del.add_argument("key")
    p_del.add_argument("--force", action="store_true", help="Do not ask for confirmation")
    p_del.set_defaults(func=cmd_vault_delete)

    p_tag = vsub.add_parser("tag", help="Add a tag to a credential")
    p_tag.add_argument("key")
    p_tag.add_argument("tag")
    p_tag.set_defaults(func=cmd_vault_tag)

    p_untag = vsub.add_parser("untag", help="Remove a tag from a credential")
    p_untag.add_argument("key")
    p_untag.add_argument("tag")
    p_untag.set_defaults(func=cmd_vault_untag)

    # lock
    p_lock = sub.add_parser("lock", help="Lock/unlock directories")
    lsub = p_lock.add_subparsers(dest="lock_cmd", required=True)

    p_add = lsub.add_parser("add", help="Lock a directory")
    p_add.add_argument("directory")
    p_add.add_argument("--use-master", action="store_true", help="Use the master key instead of a directory password")
    p_add.add_argument("--hide", action="store_true", help="Hide the locked directory (macOS)")
    p_add.add_argument("--password", default=None, help="Directory password (non-interactive)")
    p_add.set_defaults(func=cmd_lock_add)

    p_unl = lsub.add_parser("unlock", help="Unlock a directory")
    p_unl.add_argument("directory")
    p_unl.add_argument("--password", default=None, help="Directory password (non-interactive)")
    p_unl.set_defaults(func=cmd_lock_unlock)

    p_ll = lsub.add_parser("list", help="List locked directories")
    p_ll.set_defaults(func=cmd_lock_list)

    p_st = lsub.add_parser("status", help="Show a locked directory and mark it accessed")
    p_st.add_argument("directory")
    p_st.set_defaults(func=cmd_lock_status)

    # backup
    p_bak = sub.add_parser("backup", help="Create and restore encrypted store backups")
    bsub = p_bak.add_subparsers(dest="backup_cmd", required=True)

    p_bc = bsub.add_parser("create", help="Write an encrypted backup of the whole store")
    p_bc.add_argument("-o", "--output", default=None, help="Output file (default: backup directory)")
    p_bc.set_defaults(func=cmd_backup_create)

    p_bl = bsub.add_parser("list", help="List recorded backups")
    p_bl.set_defaults(func=cmd_backup_list)

    p_br = bsub.add_parser("restore", help="Replace the store with a backup")
    p_br.add_argument("file")
    p_br.add_argument("--force", action="store_true", help="Do not ask for confirmation")
    p_br.set_defaults(func=cmd_backup_restore)

    # config / maintenance
    p_cfg = sub.add_parser("config", help="Show or change settings")
    csub = p_cfg.add_subparsers(dest="config_cmd", required=True)

    p_show = csub.add_parser("show", help="Print the configuration")
    p_show.set_defaults(func=cmd_config_show)

    p_ct = csub.add_parser("cache-timeout", help="Set the master password cache timeout")
    p_ct.add_argument("seconds", type=int, help="Seconds to cache the master key (0 disables)")
    p_ct.set_defaults(func=cmd_cache_timeout)

    p_pw = sub.add_parser("change-password", help="Change the master password and re-encrypt the store")
    p_pw.set_defaults(func=cmd_change_password)

    p_out = sub.add_parser("logout", help="Forget the cached master key")
    p_out.set_defaults(func=cmd_logout)

    return p
