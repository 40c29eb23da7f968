"""Shared fixtures for ark tests."""
import datetime as _dt
import errno
import logging
import os
import zipfile

import pytest

from ark.crypto.aead import generate_key, generate_salt
from ark.crypto.keys import MasterKeyManager
from ark.storage.db import Database
from ark.utils.config import Config

MASTER_PASSWORD = "correct horse battery"


class FakeClock:
    def __init__(self, start: _dt.datetime | None = None):
        self.now = start or _dt.datetime(2026, 1, 1, 12, 0, tzinfo=_dt.timezone.utc)

    def __call__(self) -> _dt.datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += _dt.timedelta(seconds=seconds)


class CountingPrompt:
    def __init__(self, password: str = MASTER_PASSWORD):
        self.password = password
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        return self.password


@pytest.fixture(autouse=True)
def _reset_ark_logger():
    """main() detaches the ark logger from root; undo that between tests."""
    yield
    logger = logging.getLogger("ark")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True


@pytest.fixture
def config_dir(tmp_path):
    return tmp_path / "ark-home"


@pytest.fixture
def cfg(config_dir):
    config = Config.default(config_dir)
    config.salt = generate_salt()
    config.create_directory_structure()
    config.save()
    return config


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def prompt():
    return CountingPrompt()


@pytest.fixture
def keys(cfg, prompt, clock):
    return MasterKeyManager(cfg, prompt=prompt, clock=clock)


@pytest.fixture
def master_key():
    return generate_key()


@pytest.fixture
def db(tmp_path, master_key):
    database = Database(tmp_path / "store" / "ark.db", master_key)
    yield database
    database.close()


def tree_snapshot(root):
    """Relative path -> (mode, contents or None for directories)."""
    out = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            path = os.path.join(dirpath, name)
            mode = os.stat(path).st_mode & 0o777
            if os.path.isdir(path):
                data = None
            else:
                with open(path, "rb") as f:
                    data = f.read()
            out[os.path.relpath(path, root)] = (mode, data)
    return out


def make_tree(root):
    (root / "sub" / "deeper").mkdir(parents=True)
    (root / "empty").mkdir()
    (root / "a.txt").write_text("alpha")
    (root / "sub" / "b.bin").write_bytes(bytes(range(256)))
    (root / "sub" / "deeper" / "c").write_bytes(b"")
    os.chmod(root / "a.txt", 0o640)
    os.chmod(root / "sub", 0o750)
    return root


def tamper_archive_entry(src, dest, name):
    """Copy archive ``src`` to ``dest`` with one bit of entry ``name`` flipped."""
    with zipfile.ZipFile(src) as zin, zipfile.ZipFile(dest, "w") as zout:
        for info in zin.infolist():
            data = zin.read(info)
            if info.filename == name:
                data = data[:-1] + bytes([data[-1] ^ 1])
            zout.writestr(info, data)
        zout.comment = zin.comment


def deny_listing(monkeypatch, dirname):
    """Make every directory called ``dirname`` unlistable, as a 0o300 directory is for non-root users."""
    real_scandir = os.scandir

    def scandir(path="."):
        if os.path.basename(os.fspath(path)) == dirname:
            raise PermissionError(errno.EACCES, "Permission denied", os.fspath(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", scandir)
