"""Master key derivation, caching and expiry."""
import os

import pytest

from conftest import MASTER_PASSWORD, CountingPrompt

from ark.crypto.aead import generate_key
from ark.crypto.hash import cache_encryption_key, derive_key
from ark.crypto.keys import MasterKeyCache, MasterKeyManager
from ark.utils.config import Config
from ark.utils.errors import NotInitializedError, PromptError


def test_first_call_prompts_and_derives(keys, cfg, prompt):
    key = keys.get_master_key()
    assert key == derive_key(MASTER_PASSWORD, cfg.salt)
    assert prompt.calls == 1
    assert keys.has_key


def test_memory_hit_skips_prompt(keys, prompt):
    first = keys.get_master_key()
    assert keys.get_master_key() == first
    assert prompt.calls == 1


def test_cache_is_written_with_private_mode(keys, cfg):
    keys.get_master_key()
    cache_file = cfg.paths["cache"]
    assert cache_file.exists()
    assert cache_file.stat().st_mode & 0o777 == 0o600
    # opaque on disk
    assert keys.get_master_key() not in cache_file.read_bytes()


def test_cache_hit_within_timeout(cfg, clock):
    first = MasterKeyManager(cfg, prompt=CountingPrompt(), clock=clock)
    key = first.get_master_key()

    clock.advance(cfg.security.password_cache_timeout - 1)
    prompt = CountingPrompt()
    second = MasterKeyManager(cfg, prompt=prompt, clock=clock)
    assert second.get_master_key() == key
    assert prompt.calls == 0


def test_cache_expires(cfg, clock):
    MasterKeyManager(cfg, prompt=CountingPrompt(), clock=clock).get_master_key()

    clock.advance(cfg.security.password_cache_timeout + 1)
    prompt = CountingPrompt()
    MasterKeyManager(cfg, prompt=prompt, clock=clock).get_master_key()
    assert prompt.calls == 1


def test_expired_cache_is_deleted(cfg, clock):
    cache = MasterKeyCache.for_config(cfg, clock=clock)
    cache.save(generate_key(), 10)
    clock.advance(10)
    assert cache.load() is None
    assert not cache.path.exists()


def test_garbage_cache_self_heals(cfg, clock):
    cache_file = cfg.paths["cache"]
    cache_file.write_bytes(os.urandom(80))

    prompt = CountingPrompt()
    keys = MasterKeyManager(cfg, prompt=prompt, clock=clock)
    assert keys.get_master_key() == derive_key(MASTER_PASSWORD, cfg.salt)
    assert prompt.calls == 1
    # replaced by a fresh, valid cache
    assert MasterKeyCache.for_config(cfg, clock=clock).load() == keys.get_master_key()


def test_cache_bound_to_installation(cfg, clock, tmp_path):
    MasterKeyCache.for_config(cfg, clock=clock).save(generate_key(), 60)

    foreign_key = cache_encryption_key(tmp_path / "elsewhere", cfg.salt)
    assert MasterKeyCache(cfg.paths["cache"], foreign_key, clock=clock).load() is None


def test_timeout_zero_disables_cache(cfg, clock):
    cfg.set_password_cache_timeout(0)
    prompt = CountingPrompt()
    keys = MasterKeyManager(cfg, prompt=prompt, clock=clock)
    keys.get_master_key()
    assert not cfg.paths["cache"].exists()

    again = MasterKeyManager(cfg, prompt=prompt, clock=clock)
    again.get_master_key()
    assert prompt.calls == 2


def test_negative_timeout_clamps_to_zero(cfg):
    cfg.set_password_cache_timeout(-5)
    assert cfg.security.password_cache_timeout == 0


def test_cache_write_failure_is_not_fatal(cfg, clock, monkeypatch, caplog):
    def boom(self, key, timeout_seconds):
        raise OSError("disk full")

    monkeypatch.setattr(MasterKeyCache, "save", boom)
    keys = MasterKeyManager(cfg, prompt=CountingPrompt(), clock=clock)
    with caplog.at_level("WARNING", logger="ark.keys"):
        assert keys.get_master_key() == derive_key(MASTER_PASSWORD, cfg.salt)
    assert "could not write master key cache" in caplog.text


def test_missing_salt_is_not_initialized(config_dir, clock):
    cfg = Config.default(config_dir)
    prompt = CountingPrompt()
    with pytest.raises(NotInitializedError):
        MasterKeyManager(cfg, prompt=prompt, clock=clock).get_master_key()
    assert prompt.calls == 0


def test_prompt_error_propagates(cfg, clock):
    def failing():
        raise PromptError("password cannot be empty")

    keys = MasterKeyManager(cfg, prompt=failing, clock=clock)
    with pytest.raises(PromptError, match="cannot be empty"):
        keys.get_master_key()
    assert not keys.has_key


def test_eof_on_prompt_becomes_prompt_error(cfg, clock):
    def eof():
        raise EOFError()

    with pytest.raises(PromptError):
        MasterKeyManager(cfg, prompt=eof, clock=clock).get_master_key()


def test_set_master_password_regenerates_salt(keys, cfg):
    old_key = keys.get_master_key()
    old_salt = cfg.salt

    new_key = keys.set_master_password("another password")
    assert cfg.salt != old_salt
    assert new_key == derive_key("another password", cfg.salt)
    assert new_key != old_key
    assert cfg.backup.encryption_key is not None
    assert not cfg.paths["cache"].exists()
    assert keys.get_master_key() == new_key


def test_forget_drops_memory_and_cache(keys, cfg, prompt):
    keys.get_master_key()
    keys.forget()
    assert not keys.has_key
    assert not cfg.paths["cache"].exists()
    keys.get_master_key()
    assert prompt.calls == 2
