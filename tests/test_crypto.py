"""Tests for token encryption helpers."""

import pytest

from timekeeper_sync.utils.crypto import InvalidToken, decrypt_token, encrypt_token, generate_key


def test_encrypt_decrypt():
    encrypted = encrypt_token("ghp_secret", "key-material", "salt")

    assert encrypted != "ghp_secret"
    assert decrypt_token(encrypted, "key-material", "salt") == "ghp_secret"


def test_encryption_is_randomized():
    assert encrypt_token("ghp_secret", "key-material", "salt") != encrypt_token("ghp_secret", "key-material", "salt")


def test_key_derivation_is_stable():
    assert generate_key("key-material", b"salt") == generate_key("key-material", b"salt")
    assert generate_key("key-material", b"salt") != generate_key("key-material", b"other")


@pytest.mark.parametrize("key,salt", [("wrong-key", "salt"), ("key-material", "other-salt")])
def test_wrong_key_or_salt(key, salt):
    encrypted = encrypt_token("ghp_secret", "key-material", "salt")

    with pytest.raises(InvalidToken):
        decrypt_token(encrypted, key, salt)


def test_plaintext_is_not_decryptable():
    with pytest.raises(InvalidToken):
        decrypt_token("ghp_secret", "key-material", "salt")
