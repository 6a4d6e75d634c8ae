import binascii
import hashlib
import os

import pytest
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from orderdesk.core.crypto import decrypt_secret, encrypt_secret, is_legacy_ciphertext
from orderdesk.domain.exceptions import ConfigurationError, DecryptionError

SECRET = "server-wide-secret"


def _legacy_encrypt(plaintext: str, secret: str) -> tuple[str, str]:
    key = hashlib.sha256(secret.encode("utf-8")).digest()
    iv = os.urandom(16)
    padder = padding.PKCS7(128).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    body = encryptor.update(padded) + encryptor.finalize()
    return binascii.hexlify(iv).decode(), binascii.hexlify(body).decode()


def test_round_trip_uses_versioned_tokens() -> None:
    token = encrypt_secret("5Kb8kLf9zgWQnogidDA76MzPL6TsZZY36hWXMssSzNydYXYB9KF", SECRET)
    assert token.startswith("v1:")
    assert not is_legacy_ciphertext(token)
    assert decrypt_secret(token, SECRET) == "5Kb8kLf9zgWQnogidDA76MzPL6TsZZY36hWXMssSzNydYXYB9KF"


def test_same_plaintext_encrypts_differently() -> None:
    assert encrypt_secret("abc", SECRET) != encrypt_secret("abc", SECRET)


def test_tampered_token_is_rejected() -> None:
    token = encrypt_secret("secret key material", SECRET)
    body = token[3:]
    flipped = body[:20] + ("A" if body[20] != "A" else "B") + body[21:]
    with pytest.raises(DecryptionError):
        decrypt_secret("v1:" + flipped, SECRET)


def test_changed_secret_is_rejected() -> None:
    token = encrypt_secret("secret key material", SECRET)
    with pytest.raises(DecryptionError):
        decrypt_secret(token, "another-secret")


def test_missing_secret_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        encrypt_secret("x", None)
    with pytest.raises(ConfigurationError):
        encrypt_secret("x", "")


def test_legacy_colon_record_decrypts() -> None:
    iv_hex, body_hex = _legacy_encrypt("legacy-key", SECRET)
    stored = f"{iv_hex}:{body_hex}"
    assert is_legacy_ciphertext(stored)
    assert decrypt_secret(stored, SECRET) == "legacy-key"


def test_legacy_record_with_separate_nonce_decrypts() -> None:
    iv_hex, body_hex = _legacy_encrypt("legacy-key", SECRET)
    assert decrypt_secret(body_hex, SECRET, nonce=iv_hex) == "legacy-key"


@pytest.mark.parametrize(
    "ciphertext",
    ["", "no-separator", "zz:zz", "00:" + "ab" * 16],
)
def test_malformed_ciphertext(ciphertext: str) -> None:
    with pytest.raises(DecryptionError):
        decrypt_secret(ciphertext, SECRET)


def test_legacy_record_with_wrong_secret_fails_cleanly() -> None:
    iv_hex, body_hex = _legacy_encrypt("legacy-key", SECRET)
    # CBC has no tag: a wrong key usually surfaces as bad padding, or as junk bytes.
    try:
        result = decrypt_secret(f"{iv_hex}:{body_hex}", "wrong")
    except DecryptionError:
        return
    assert result != "legacy-key"
