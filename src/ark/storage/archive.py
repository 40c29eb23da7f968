"""Single-file container for a locked directory.

Layout: a ZIP file (entries stored, not deflated) whose entries are

    <relative/posix/path>      EncryptedBlob of the file contents
    <relative/posix/dir>/      empty marker so empty directories survive

and whose ZIP comment is a fixed binary header:

    magic   : 4 bytes  -> b"ARK1"
    version : 1 byte   -> 0x01
    token   : EncryptedBlob(b"ark-dirlock")  (password verification)

File modes are kept in each entry's external attributes.
"""
import logging
import os
import stat
import struct
import zipfile

from pathlib import Path, PurePosixPath

from ark.crypto.aead import aead_decrypt, aead_encrypt
from ark.utils.errors import ArkError, AuthenticationError, CorruptDataError, DecryptError

logger = logging.getLogger("ark.archive")

ARCHIVE_MAGIC = b"ARK1"
ARCHIVE_VERSION = 1
ARCHIVE_HDR_FMT = ">4sB"
ARCHIVE_HDR_SIZE = struct.calcsize(ARCHIVE_HDR_FMT)
VERIFY_PLAINTEXT = b"ark-dirlock"


def _header(key: bytes) -> bytes:
    return struct.pack(ARCHIVE_HDR_FMT, ARCHIVE_MAGIC, ARCHIVE_VERSION) + aead_encrypt(key, VERIFY_PLAINTEXT)


def _parse_header(comment: bytes) -> bytes:
    if len(comment) < ARCHIVE_HDR_SIZE:
        raise CorruptDataError("archive header is too small or corrupt")
    magic, ver = struct.unpack(ARCHIVE_HDR_FMT, comment[:ARCHIVE_HDR_SIZE])
    if magic != ARCHIVE_MAGIC:
        raise CorruptDataError("invalid archive magic")
    if ver != ARCHIVE_VERSION:
        raise CorruptDataError("unsupported archive version")
    return comment[ARCHIVE_HDR_SIZE:]


def _safe_member(name: str) -> PurePosixPath:
    rel = PurePosixPath(name)
    if rel.is_absolute() or ".." in rel.parts or not rel.parts:
        raise CorruptDataError(f"unsafe archive entry: {name!r}")
    return rel


def _walk_error(exc: OSError) -> None:
    raise ArkError(f"cannot read {exc.filename}: {exc.strerror}") from exc


def _entry_mode(info: zipfile.ZipInfo) -> int | None:
    """Permission bits stored for an entry, or None when the entry carries no Unix mode."""
    attr = info.external_attr >> 16
    if not stat.S_IFMT(attr):
        return None
    return stat.S_IMODE(attr)


def write_archive(src_dir: Path, dest: Path, key: bytes) -> int:
    """Encrypt every file under ``src_dir`` into ``dest``; returns the number of files.

    ``dest`` is fully written and fsynced before this returns.
    """
    count = 0
    with dest.open("wb") as raw:
        with zipfile.ZipFile(raw, "w", compression=zipfile.ZIP_STORED) as zf:
            for root, dirs, files in os.walk(src_dir, onerror=_walk_error):
                dirs.sort()
                root_path = Path(root)
                rel_root = root_path.relative_to(src_dir)
                for name in dirs:
                    path = root_path / name
                    if path.is_symlink():
                        raise ArkError(f"cannot lock directory containing symlink: {path}")
                    info = zipfile.ZipInfo((rel_root / name).as_posix() + "/")
                    info.external_attr = (stat.S_IFDIR | stat.S_IMODE(path.stat().st_mode)) << 16
                    zf.writestr(info, b"")
                for name in sorted(files):
                    path = root_path / name
                    st = path.lstat()
                    if not stat.S_ISREG(st.st_mode):
                        raise ArkError(f"cannot lock directory containing non-regular file: {path}")
                    info = zipfile.ZipInfo((rel_root / name).as_posix())
                    info.external_attr = (stat.S_IFREG | stat.S_IMODE(st.st_mode)) << 16
                    zf.writestr(info, aead_encrypt(key, path.read_bytes()))
                    count += 1
            zf.comment = _header(key)
        raw.flush()
        os.fsync(raw.fileno())
    logger.debug("wrote archive %s with %d files", dest, count)
    return count


def is_archive(path: Path) -> bool:
    try:
        with zipfile.ZipFile(path) as zf:
            _parse_header(zf.comment)
    except (OSError, zipfile.BadZipFile, CorruptDataError):
        return False
    return True


def verify_archive_key(path: Path, key: bytes) -> None:
    """Raise AuthenticationError unless ``key`` opens the archive's verification token."""
    try:
        with zipfile.ZipFile(path) as zf:
            token = _parse_header(zf.comment)
    except zipfile.BadZipFile as exc:
        raise CorruptDataError(f"not a locked directory archive: {path}") from exc
    try:
        if aead_decrypt(key, token) != VERIFY_PLAINTEXT:
            raise AuthenticationError()
    except DecryptError:
        raise AuthenticationError() from None


def extract_archive(path: Path, dest_dir: Path, key: bytes) -> int:
    """Decrypt every entry into ``dest_dir``; any failing entry aborts with CorruptDataError.

    The caller owns cleanup of ``dest_dir`` on failure.
    """
    count = 0
    try:
        zf = zipfile.ZipFile(path)
    except zipfile.BadZipFile as exc:
        raise CorruptDataError(f"not a locked directory archive: {path}") from exc
    with zf:
        _parse_header(zf.comment)
        for info in zf.infolist():
            rel = _safe_member(info.filename)
            target = dest_dir.joinpath(*rel.parts)
            mode = _entry_mode(info)
            if info.is_dir():
                target.mkdir(mode=0o700, parents=True, exist_ok=True)
                continue
            try:
                plaintext = aead_decrypt(key, zf.read(info))
            except DecryptError as exc:
                raise CorruptDataError(f"failed to decrypt archive entry {info.filename}") from exc
            target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            target.write_bytes(plaintext)
            os.chmod(target, 0o600 if mode is None else mode)
            count += 1

        # directory modes last, so restrictive modes do not block the writes above
        for info in reversed(zf.infolist()):
            mode = _entry_mode(info)
            if info.is_dir() and mode is not None:
                os.chmod(dest_dir.joinpath(*_safe_member(info.filename).parts), mode)
    logger.debug("extracted %d files from %s", count, path)
    return count
