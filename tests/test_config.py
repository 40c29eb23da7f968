"""Configuration file, paths, logging and password prompts."""
import io
import logging

import pytest
import yaml

from ark.crypto.aead import generate_salt
from ark.utils import password
from ark.utils.config import Config
from ark.utils.errors import ConfigError, NotInitializedError, PromptError
from ark.utils.helper import resolve_config_dir
from ark.utils.logger import parse_log_level, setup_logging


def test_save_and_load(cfg):
    cfg.set_password_cache_timeout(42)
    cfg.log_level = "debug"
    cfg.save()

    loaded = Config.load(cfg.config_dir)
    assert loaded.salt == cfg.salt
    assert loaded.log_level == "debug"
    assert loaded.security.password_cache_timeout == 42
    assert loaded.backup.directory == str(cfg.paths["backup"])
    loaded.validate()


def test_config_file_layout(cfg):
    path = cfg.paths["config"]
    assert path.stat().st_mode & 0o777 == 0o600
    raw = yaml.safe_load(path.read_text())
    assert set(raw) == {"version", "created_at", "updated_at", "salt", "log_level", "security", "backup"}
    assert raw["security"] == {"password_cache_timeout_seconds": 300}
    assert "encryption_key" not in raw["backup"]


def test_directory_structure(cfg):
    for name in ("data", "logs", "locks", "backup"):
        assert cfg.paths[name].is_dir()
        assert cfg.paths[name].stat().st_mode & 0o777 == 0o700


def test_load_uninitialized(tmp_path):
    assert not Config.is_initialized(tmp_path)
    with pytest.raises(NotInitializedError):
        Config.load(tmp_path)


def test_load_garbage(tmp_path):
    (tmp_path / "config.yaml").write_text("salt: [unclosed")
    with pytest.raises(ConfigError):
        Config.load(tmp_path)

    (tmp_path / "config.yaml").write_text("- just\n- a list\n")
    with pytest.raises(ConfigError):
        Config.load(tmp_path)

    (tmp_path / "config.yaml").write_text("salt: '***'\n")
    with pytest.raises(ConfigError, match="base64"):
        Config.load(tmp_path)


def test_validate(config_dir):
    cfg = Config.default(config_dir)
    with pytest.raises(ConfigError, match="salt"):
        cfg.validate()
    cfg.salt = generate_salt()
    cfg.log_level = "verbose"
    with pytest.raises(ConfigError, match="log level"):
        cfg.validate()


def test_resolve_config_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("ARK_CONFIG_DIR", str(tmp_path / "from-env"))
    assert resolve_config_dir(None) == tmp_path / "from-env"
    assert resolve_config_dir(str(tmp_path / "explicit")) == tmp_path / "explicit"
    monkeypatch.delenv("ARK_CONFIG_DIR")
    monkeypatch.setenv("HOME", str(tmp_path))
    assert resolve_config_dir(None) == tmp_path / ".ark"


def test_setup_logging_writes_file(tmp_path):
    logger = setup_logging("warn", tmp_path)
    assert not logger.propagate
    logging.getLogger("ark.test").debug("to the file only")
    for handler in logger.handlers:
        handler.flush()
    assert "to the file only" in (tmp_path / "ark.log").read_text()


def test_parse_log_level():
    assert parse_log_level("DEBUG") == logging.DEBUG
    assert parse_log_level("warn") == logging.WARNING
    assert parse_log_level("nonsense") == logging.INFO


class TestPasswordPrompts:
    def _stdin(self, monkeypatch, text):
        monkeypatch.setattr("sys.stdin", io.StringIO(text))

    def test_piped_master_password(self, monkeypatch):
        self._stdin(monkeypatch, "hunter22\n")
        assert password.get_master_password() == "hunter22"

    def test_empty_master_password(self, monkeypatch):
        self._stdin(monkeypatch, "\n")
        with pytest.raises(PromptError, match="empty"):
            password.get_master_password()

    def test_no_input(self, monkeypatch):
        self._stdin(monkeypatch, "")
        with pytest.raises(PromptError, match="no input"):
            password.get_master_password()

    def test_setup_requires_length_and_match(self, monkeypatch):
        self._stdin(monkeypatch, "short\nshort\n")
        with pytest.raises(PromptError, match="at least 8"):
            password.setup_master_password()

        self._stdin(monkeypatch, "long enough\ndifferent one\n")
        with pytest.raises(PromptError, match="do not match"):
            password.setup_master_password()

        self._stdin(monkeypatch, "long enough\nlong enough\n")
        assert password.setup_master_password() == "long enough"

    def test_strength(self):
        password.validate_password_strength("Str0ng!pass")
        with pytest.raises(PromptError, match="uppercase"):
            password.validate_password_strength("weak0!pass")
        with pytest.raises(PromptError, match="special"):
            password.validate_password_strength("NoSpecial1")
