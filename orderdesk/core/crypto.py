from __future__ import annotations

import base64
import binascii
import hashlib
from functools import lru_cache
from typing import Final, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..domain.exceptions import ConfigurationError, DecryptionError

# Derive a Fernet key from the server-wide wallet secret.
# Accepts any string; we SHA-256 it and urlsafe_b64encode to a 32-byte Fernet key.
_PREFIX: Final[str] = "v1:"  # simple versioning for future key/alg rotation
_LEGACY_IV_BYTES: Final[int] = 16


def _derive_key(secret: str | bytes) -> bytes:
    if not secret:
        raise ConfigurationError(
            "WALLET_SECRET is not set; cannot (de)crypt wallet keys. "
            "Set a strong, unpredictable value in your environment."
        )
    raw_bytes = secret.encode("utf-8") if isinstance(secret, str) else secret
    return hashlib.sha256(raw_bytes).digest()  # 32 bytes


@lru_cache(maxsize=8)
def _fernet_for(secret: str) -> Fernet:
    return Fernet(base64.urlsafe_b64encode(_derive_key(secret)))


def encrypt_secret(plaintext: str, secret: str | None) -> str:
    """
    Encrypt key material (e.g. a base58 private key).
    Returns a versioned ciphertext string with a fresh random IV and an HMAC tag.
    """
    if plaintext is None:
        raise ValueError("plaintext must not be None")
    f = _fernet_for(secret or "")
    token = f.encrypt(plaintext.encode("utf-8"))
    return f"{_PREFIX}{token.decode('utf-8')}"


def decrypt_secret(ciphertext: str, secret: str | None, *, nonce: Optional[str] = None) -> str:
    """
    Decrypt a stored ciphertext back to plaintext.

    ``v1:`` tokens are authenticated; tampering or a changed secret raises
    DecryptionError. Unversioned ``ivhex:cthex`` values (or a bare ``cthex`` with
    the IV passed as ``nonce``) are legacy AES-256-CBC records kept readable for
    imported wallets.
    """
    if not isinstance(ciphertext, str) or not ciphertext:
        raise DecryptionError("invalid ciphertext format")

    if ciphertext.startswith(_PREFIX):
        f = _fernet_for(secret or "")
        try:
            data = f.decrypt(ciphertext[len(_PREFIX):].encode("utf-8"))
        except InvalidToken as exc:
            raise DecryptionError("ciphertext rejected (tampered or secret changed)") from exc
        return data.decode("utf-8")

    if nonce is None:
        if ":" not in ciphertext:
            raise DecryptionError("invalid ciphertext format")
        nonce, ciphertext = ciphertext.split(":", 1)
    return _decrypt_legacy(nonce, ciphertext, secret)


def _decrypt_legacy(iv_hex: str, body_hex: str, secret: str | None) -> str:
    key = _derive_key(secret or "")
    try:
        iv = binascii.unhexlify(iv_hex)
        body = binascii.unhexlify(body_hex)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError("legacy ciphertext is not hex encoded") from exc
    if len(iv) != _LEGACY_IV_BYTES or not body or len(body) % 16:
        raise DecryptionError("legacy ciphertext has an invalid length")

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        padded = decryptor.update(body) + decryptor.finalize()
        data = unpadder.update(padded) + unpadder.finalize()
        return data.decode("utf-8")
    except (ValueError, UnicodeDecodeError) as exc:
        raise DecryptionError("legacy ciphertext rejected (bad padding or secret changed)") from exc


def is_legacy_ciphertext(ciphertext: str) -> bool:
    return not ciphertext.startswith(_PREFIX)


__all__ = ["encrypt_secret", "decrypt_secret", "is_legacy_ciphertext"]
