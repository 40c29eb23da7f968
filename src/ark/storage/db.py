"""Encrypted, bucket-organised record store on top of a single SQLite file.

Every value is JSON-encoded and then sealed with the master key before it
reaches SQLite, so the file itself (and every backup of it) only ever holds
EncryptedBlobs. Keys and bucket names are stored in the clear.
"""
import json
import logging
import os
import sqlite3

from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List

from ark.crypto.aead import aead_decrypt, aead_encrypt
from ark.utils.dataModels import BackupRecord, LockedDirectory, VaultEntry
from ark.utils.errors import (
    BucketMissingError,
    DecodeError,
    DecryptError,
    EncodeError,
    NotFoundError,
    CorruptDataError,
)
from ark.utils.lockfile import LockFile

logger = logging.getLogger("ark.storage")

SQLITE_MAGIC = b"SQLite format 3\x00"

SCHEMA = """
CREATE TABLE IF NOT EXISTS buckets (
    name TEXT PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS records (
    bucket TEXT NOT NULL REFERENCES buckets(name),
    key TEXT NOT NULL,
    value BLOB NOT NULL,
    PRIMARY KEY (bucket, key)
);
"""


class Bucket(str, Enum):
    VAULT = "vault"
    AWS_PROFILES = "aws_profiles"
    EC2_INSTANCES = "ec2_instances"
    LOCKED_DIRS = "locked_dirs"
    BACKUP_METADATA = "backup_metadata"
    CONFIG = "config"

    @property
    def model(self) -> type | None:
        """Value type stored in this bucket; None means a plain JSON value."""
        return _BUCKET_MODELS.get(self)


_BUCKET_MODELS: Dict[Bucket, type] = {
    Bucket.VAULT: VaultEntry,
    Bucket.LOCKED_DIRS: LockedDirectory,
    Bucket.BACKUP_METADATA: BackupRecord,
}


def _bucket_name(bucket: Bucket | str) -> str:
    return bucket.value if isinstance(bucket, Bucket) else str(bucket)


class Database:
    def __init__(self, path: Path | str, master_key: bytes, timeout: float = 1.0):
        self.path = Path(path)
        self._key = master_key
        self._timeout = timeout
        self._lock = LockFile(self.path.with_name(self.path.name + ".lock"), timeout=timeout,
                              description=f"database {self.path}")
        self._conn: sqlite3.Connection | None = None
        self._open()

    # -- lifecycle ---------------------------------------------------------

    def _open(self) -> None:
        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        self._lock.acquire()
        try:
            if not self.path.exists():
                os.close(os.open(self.path, os.O_WRONLY | os.O_CREAT, 0o600))
            conn = sqlite3.connect(str(self.path), timeout=self._timeout, isolation_level=None)
            try:
                conn.execute("PRAGMA journal_mode=DELETE")
                conn.execute("PRAGMA foreign_keys=ON")
                conn.executescript(SCHEMA)
                with self._transaction(conn):
                    conn.executemany(
                        "INSERT OR IGNORE INTO buckets (name) VALUES (?)",
                        [(b.value,) for b in Bucket],
                    )
            except sqlite3.DatabaseError as exc:
                conn.close()
                raise CorruptDataError(f"failed to open database: {exc}") from exc
        except BaseException:
            self._lock.release()
            raise
        self._conn = conn
        logger.debug("opened database %s", self.path)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        self._lock.release()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("database is closed")
        return self._conn

    @staticmethod
    @contextmanager
    def _transaction(conn: sqlite3.Connection, write: bool = True) -> Iterator[sqlite3.Connection]:
        conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    def _require_bucket(self, conn: sqlite3.Connection, bucket: Bucket | str) -> str:
        name = _bucket_name(bucket)
        row = conn.execute("SELECT 1 FROM buckets WHERE name = ?", (name,)).fetchone()
        if row is None:
            raise BucketMissingError(f"bucket {name} not found")
        return name

    # -- value codec -------------------------------------------------------

    def _seal(self, value: Any, key: bytes | None = None) -> bytes:
        try:
            data = json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncodeError(f"failed to marshal value: {exc}") from exc
        return aead_encrypt(key or self._key, data)

    def _open_blob(self, blob: bytes, key: bytes | None = None) -> Any:
        plaintext = aead_decrypt(key or self._key, blob)
        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise DecodeError(f"failed to unmarshal data: {exc}") from exc

    # -- operations --------------------------------------------------------

    def set(self, bucket: Bucket | str, key: str, value: Any) -> None:
        blob = self._seal(value)
        with self._transaction(self.conn) as conn:
            name = self._require_bucket(conn, bucket)
            conn.execute(
                "INSERT INTO records (bucket, key, value) VALUES (?, ?, ?) "
                "ON CONFLICT(bucket, key) DO UPDATE SET value = excluded.value",
                (name, key, blob),
            )

    def get(self, bucket: Bucket | str, key: str) -> Any:
        with self._transaction(self.conn, write=False) as conn:
            name = self._require_bucket(conn, bucket)
            row = conn.execute(
                "SELECT value FROM records WHERE bucket = ? AND key = ?", (name, key)
            ).fetchone()
        if row is None:
            raise NotFoundError(f"key {key} not found in bucket {name}")
        try:
            return self._open_blob(row[0])
        except DecryptError as exc:
            raise DecryptError(f"failed to decrypt data for {name}/{key}") from exc

    def delete(self, bucket: Bucket | str, key: str) -> None:
        with self._transaction(self.conn) as conn:
            name = self._require_bucket(conn, bucket)
            conn.execute("DELETE FROM records WHERE bucket = ? AND key = ?", (name, key))

    def list(self, bucket: Bucket | str) -> List[str]:
        with self._transaction(self.conn, write=False) as conn:
            name = self._require_bucket(conn, bucket)
            rows = conn.execute(
                "SELECT key FROM records WHERE bucket = ? ORDER BY key", (name,)
            ).fetchall()
        return [r[0] for r in rows]

    def search(self, bucket: Bucket | str, pattern: str) -> List[str]:
        return [k for k in self.list(bucket) if pattern in k]

    def exists(self, bucket: Bucket | str, key: str) -> bool:
        with self._transaction(self.conn, write=False) as conn:
            name = self._require_bucket(conn, bucket)
            row = conn.execute(
                "SELECT 1 FROM records WHERE bucket = ? AND key = ?", (name, key)
            ).fetchone()
        return row is not None

    def get_model(self, bucket: Bucket, key: str) -> Any:
        value = self.get(bucket, key)
        model = bucket.model
        if model is None:
            return value
        try:
            return model.from_dict(value)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise DecodeError(f"failed to unmarshal {bucket.value}/{key}: {exc}") from exc

    def set_model(self, bucket: Bucket, key: str, obj: Any) -> None:
        model = bucket.model
        if model is not None and not isinstance(obj, model):
            raise EncodeError(f"bucket {bucket.value} stores {model.__name__}, got {type(obj).__name__}")
        self.set(bucket, key, obj.to_dict() if model is not None else obj)

    def stats(self) -> Dict[str, int]:
        rows = self.conn.execute(
            "SELECT b.name, COUNT(r.key) FROM buckets b "
            "LEFT JOIN records r ON r.bucket = b.name GROUP BY b.name ORDER BY b.name"
        ).fetchall()
        return {name: count for name, count in rows}

    # -- whole-store operations -------------------------------------------

    def backup(self) -> bytes:
        """Consistent point-in-time image of the whole store file (values stay individually encrypted)."""
        with self._transaction(self.conn, write=False) as conn:
            return bytes(conn.serialize())

    def restore(self, data: bytes) -> None:
        """Replace the store file with ``data`` and reopen. Destructive."""
        if not data.startswith(SQLITE_MAGIC):
            raise CorruptDataError("backup data is not a database image")
        tmp = self.path.with_name(self.path.name + ".restore")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        # the process lock stays held across the swap
        self.conn.close()
        self._conn = None
        os.replace(tmp, self.path)
        self._open()
        logger.info("restored database from %d bytes", len(data))

    def rekey(self, new_key: bytes) -> int:
        """Re-encrypt every record under ``new_key`` in one transaction; returns the record count."""
        with self._transaction(self.conn) as conn:
            rows = conn.execute("SELECT bucket, key, value FROM records").fetchall()
            for bucket, key, blob in rows:
                value = self._open_blob(blob)
                conn.execute(
                    "UPDATE records SET value = ? WHERE bucket = ? AND key = ?",
                    (self._seal(value, new_key), bucket, key),
                )
        self._key = new_key
        logger.info("re-encrypted %d records under a new master key", len(rows))
        return len(rows)
