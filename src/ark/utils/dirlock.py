"""Lock a directory into a single encrypted archive in place, and back.

State per path is Unlocked -> Locked -> Unlocked. The LockedDirectory record in
the store is the commit point: it is written only after the archive sits at
the original path, and removed only after the extracted tree does. Until then
every failure rolls the filesystem back to the previous state.

Sibling paths used during a transform (``name`` is the directory's name):

    .name.ark_encrypted   archive being written
    .name.ark_original    original tree parked while the record is written
    .name.ark_temp        extraction target during unlock
    .name.ark_archive     archive parked while the record is deleted
"""
import logging
import os
import shutil
import stat
import subprocess
import sys

from pathlib import Path
from typing import List

from ark.crypto.aead import generate_salt
from ark.crypto.hash import derive_key, sha256_hex
from ark.crypto.keys import MasterKeyManager
from ark.storage.archive import extract_archive, is_archive, verify_archive_key, write_archive
from ark.storage.db import Bucket, Database
from ark.utils.dataModels import LockedDirectory
from ark.utils.errors import (
    AlreadyLockedError,
    ArkError,
    AuthenticationError,
    NotDirectoryError,
    NotFoundError,
    NotLockedError,
)
from ark.utils.lockfile import LockFile

logger = logging.getLogger("ark.dirlock")

LOCKED_MODE = 0o000
DEFAULT_UNLOCKED_MODE = 0o700


def _sibling(path: Path, suffix: str) -> Path:
    return path.with_name(f".{path.name}.{suffix}")


def _make_owner_writable(path: Path) -> None:
    """Give the owner rwx on every directory under ``path`` so the tree can be deleted."""
    os.chmod(path, stat.S_IRWXU)
    for root, dirs, _ in os.walk(path):
        for name in dirs:
            child = os.path.join(root, name)
            if not os.path.islink(child):
                os.chmod(child, stat.S_IRWXU)


def _remove_tree(path: Path) -> None:
    """Delete a whole directory tree, including read-only subdirectories. Errors propagate."""
    _make_owner_writable(path)
    shutil.rmtree(path)


def _remove_path(path: Path) -> None:
    """Best-effort cleanup of a temporary file or tree."""
    try:
        if path.is_dir() and not path.is_symlink():
            _remove_tree(path)
        elif path.exists():
            path.unlink()
    except OSError as exc:
        logger.debug("could not clean up %s: %s", path, exc)


def set_hidden(path: Path, hidden: bool) -> None:
    if sys.platform != "darwin":
        logger.debug("hidden attribute not supported on %s; skipping %s", sys.platform, path)
        return
    flag = "hidden" if hidden else "nohidden"
    result = subprocess.run(["chflags", flag, str(path)], capture_output=True, text=True, check=False)
    if result.returncode != 0:
        logger.warning("chflags %s %s failed: %s", flag, path, result.stderr.strip())


class DirLockService:
    def __init__(self, db: Database, keys: MasterKeyManager, locks_dir: Path, lock_timeout: float = 0):
        self.db = db
        self.keys = keys
        self.locks_dir = Path(locks_dir)
        self.lock_timeout = lock_timeout

    @staticmethod
    def _abs(path: Path | str) -> Path:
        return Path(os.path.abspath(os.path.expanduser(str(path))))

    def _path_lock(self, abs_path: Path) -> LockFile:
        name = sha256_hex(str(abs_path).encode("utf-8")) + ".lock"
        return LockFile(self.locks_dir / name, timeout=self.lock_timeout, description=str(abs_path))

    def _directory_key(self, use_master: bool, password: str | None, salt: bytes | None) -> bytes:
        if use_master:
            return self.keys.get_master_key()
        if not password:
            raise AuthenticationError("a password is required for this directory")
        return derive_key(password, salt)

    def lock(self, path: Path | str, use_master: bool, password: str | None = None, hide: bool = False) -> LockedDirectory:
        abs_path = self._abs(path)
        with self._path_lock(abs_path):
            if self.db.exists(Bucket.LOCKED_DIRS, str(abs_path)):
                raise AlreadyLockedError(f"already locked: {abs_path}")
            if not abs_path.exists():
                raise NotFoundError(f"no such directory: {abs_path}")
            if abs_path.is_symlink() or not abs_path.is_dir():
                raise NotDirectoryError(f"not a directory: {abs_path}")

            rec = LockedDirectory(path=str(abs_path), use_master=use_master, hidden=hide)
            salt = None
            if not use_master:
                salt = generate_salt()
                rec.set_salt(salt)
            key = self._directory_key(use_master, password, salt)

            original_mode = abs_path.stat().st_mode & 0o7777
            archive_tmp = _sibling(abs_path, "ark_encrypted")
            parked = _sibling(abs_path, "ark_original")
            if os.path.lexists(parked):
                raise ArkError(f"an earlier lock left its original tree at {parked}; remove it first")
            try:
                count = write_archive(abs_path, archive_tmp, key)
            except BaseException:
                _remove_path(archive_tmp)
                raise

            os.rename(abs_path, parked)
            try:
                os.rename(archive_tmp, abs_path)
                os.chmod(abs_path, LOCKED_MODE)
                if hide:
                    set_hidden(abs_path, True)
                rec.set_metadata("mode", "encrypted")
                rec.set_metadata("files", str(count))
                rec.set_metadata("permissions", oct(original_mode))
                self.db.set_model(Bucket.LOCKED_DIRS, str(abs_path), rec)
            except BaseException:
                logger.error("lock of %s failed; restoring original directory", abs_path)
                if abs_path.exists() and not abs_path.is_dir():
                    os.chmod(abs_path, 0o600)
                    abs_path.unlink()
                os.rename(parked, abs_path)
                _remove_path(archive_tmp)
                raise

            try:
                _remove_tree(parked)
            except OSError as exc:
                logger.error("locked %s but could not remove the original tree %s: %s", abs_path, parked, exc)
                raise ArkError(
                    f"{abs_path} is locked, but its unencrypted original remains at {parked}; remove it manually"
                ) from exc
            logger.info("locked %s (%d files, master=%s)", abs_path, count, use_master)
            return rec

    def unlock(self, path: Path | str, password: str | None = None) -> LockedDirectory:
        abs_path = self._abs(path)
        with self._path_lock(abs_path):
            rec = self.get(abs_path)
            key = self._directory_key(rec.use_master, password, rec.salt)

            if not abs_path.exists():
                raise NotFoundError(f"locked archive is missing: {abs_path}")
            os.chmod(abs_path, 0o600)
            temp_dir = _sibling(abs_path, "ark_temp")
            try:
                if not is_archive(abs_path):
                    raise NotLockedError(f"not a locked directory archive: {abs_path}")
                verify_archive_key(abs_path, key)
                _remove_path(temp_dir)
                temp_dir.mkdir(mode=0o700)
                extract_archive(abs_path, temp_dir, key)
            except BaseException:
                _remove_path(temp_dir)
                os.chmod(abs_path, LOCKED_MODE)
                raise

            parked = _sibling(abs_path, "ark_archive")
            if rec.hidden:
                set_hidden(abs_path, False)
            os.rename(abs_path, parked)
            try:
                os.rename(temp_dir, abs_path)
                os.chmod(abs_path, int(rec.metadata.get("permissions", oct(DEFAULT_UNLOCKED_MODE)), 8))
                self.db.delete(Bucket.LOCKED_DIRS, str(abs_path))
            except BaseException:
                logger.error("unlock of %s failed; restoring archive", abs_path)
                if abs_path.is_dir():
                    shutil.rmtree(abs_path)
                os.rename(parked, abs_path)
                os.chmod(abs_path, LOCKED_MODE)
                if rec.hidden:
                    set_hidden(abs_path, True)
                raise

            _remove_path(parked)
            rec.update_last_accessed()
            logger.info("unlocked %s", abs_path)
            return rec

    def get(self, path: Path | str) -> LockedDirectory:
        abs_path = self._abs(path)
        try:
            return self.db.get_model(Bucket.LOCKED_DIRS, str(abs_path))
        except NotFoundError:
            raise NotLockedError(f"not locked: {abs_path}") from None

    def list(self) -> List[LockedDirectory]:
        return [self.db.get_model(Bucket.LOCKED_DIRS, k) for k in self.db.list(Bucket.LOCKED_DIRS)]

    def is_locked(self, path: Path | str) -> bool:
        return self.db.exists(Bucket.LOCKED_DIRS, str(self._abs(path)))

    def stamp(self, path: Path | str) -> None:
        """Update last-accessed time of a locked directory record, if there is one."""
        key = str(self._abs(path))
        try:
            rec = self.db.get_model(Bucket.LOCKED_DIRS, key)
        except NotFoundError:
            return
        rec.update_last_accessed()
        self.db.set_model(Bucket.LOCKED_DIRS, key, rec)
