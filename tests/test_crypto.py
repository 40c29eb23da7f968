"""Tests for the AES-GCM primitive and the Argon2id key derivation."""
import pytest

from ark.crypto.aead import (
    KEY_SIZE,
    NONCE_SIZE,
    SALT_SIZE,
    aead_decrypt,
    aead_encrypt,
    generate_key,
    generate_salt,
)
from ark.crypto.hash import cache_encryption_key, derive_key, sha256_hex
from ark.utils.errors import DecryptError


@pytest.fixture
def key():
    return generate_key()


class TestAead:
    @pytest.mark.parametrize("plaintext", [b"", b"a", b"hello world", bytes(range(256)) * 40])
    def test_round_trip(self, key, plaintext):
        assert aead_decrypt(key, aead_encrypt(key, plaintext)) == plaintext

    def test_blob_layout(self, key):
        blob = aead_encrypt(key, b"hello")
        # nonce + ciphertext + 16-byte tag
        assert len(blob) == NONCE_SIZE + len(b"hello") + 16

    def test_same_plaintext_gives_different_ciphertexts(self, key):
        blobs = {aead_encrypt(key, b"same") for _ in range(50)}
        assert len(blobs) == 50
        assert len({b[:NONCE_SIZE] for b in blobs}) == 50

    def test_every_bit_flip_is_detected(self, key):
        blob = aead_encrypt(key, b"integrity matters")
        for i in range(len(blob)):
            for bit in (0x01, 0x80):
                tampered = bytearray(blob)
                tampered[i] ^= bit
                with pytest.raises(DecryptError):
                    aead_decrypt(key, bytes(tampered))

    def test_wrong_key_fails(self, key):
        blob = aead_encrypt(key, b"secret")
        with pytest.raises(DecryptError):
            aead_decrypt(generate_key(), blob)

    def test_truncated_blob_fails(self, key):
        with pytest.raises(DecryptError, match="too short"):
            aead_decrypt(key, b"\x00" * (NONCE_SIZE + 3))

    def test_rejects_bad_key_size(self):
        with pytest.raises(ValueError, match="invalid key size"):
            aead_encrypt(b"short", b"data")

    def test_random_material_sizes(self):
        assert len(generate_key()) == KEY_SIZE
        assert len(generate_salt()) == SALT_SIZE
        assert generate_salt() != generate_salt()


class TestDeriveKey:
    def test_deterministic(self):
        salt = generate_salt()
        assert derive_key("password", salt) == derive_key("password", salt)

    def test_output_is_32_bytes(self):
        assert len(derive_key("password", generate_salt())) == KEY_SIZE

    def test_differs_by_password(self):
        salt = generate_salt()
        assert derive_key("password", salt) != derive_key("Password", salt)

    def test_differs_by_salt(self):
        assert derive_key("password", generate_salt()) != derive_key("password", generate_salt())

    def test_known_vector(self):
        # Argon2id(t=1, m=65536 KiB, p=4, len=32) of raw UTF-8 password bytes
        from argon2.low_level import Type, hash_secret_raw

        salt = b"\x01" * SALT_SIZE
        expected = hash_secret_raw(b"pw", salt, time_cost=1, memory_cost=65536,
                                   parallelism=4, hash_len=32, type=Type.ID)
        assert derive_key("pw", salt) == expected

    def test_rejects_bad_salt(self):
        with pytest.raises(ValueError, match="invalid salt size"):
            derive_key("password", b"0123456789abcdef")


class TestCacheKey:
    def test_bound_to_directory_and_salt(self, tmp_path):
        salt = generate_salt()
        base = cache_encryption_key(tmp_path, salt)
        assert base == cache_encryption_key(str(tmp_path), salt)
        assert base != cache_encryption_key(tmp_path / "other", salt)
        assert base != cache_encryption_key(tmp_path, generate_salt())
        assert len(base) == KEY_SIZE

    def test_sha256_hex(self):
        assert sha256_hex(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
