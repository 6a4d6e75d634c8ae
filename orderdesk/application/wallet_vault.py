from __future__ import annotations

import logging
from typing import Dict

from solders.keypair import Keypair

from ..core.crypto import decrypt_secret, encrypt_secret, is_legacy_ciphertext
from ..core.logging_utils import mask
from ..domain.exceptions import (
    WALLET_ALREADY_EXISTS,
    ConfigurationError,
    ConflictError,
    DecryptionError,
    NotFoundError,
)
from ..domain.models import EncryptedKeyRecord, WalletCreation
from ..infrastructure.wallet_store import WalletStore

log = logging.getLogger(__name__)

_BASE58_ALPHABET = frozenset("123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz")
# base58 of a 64-byte ed25519 secret key
_SECRET_KEY_B58_LEN = range(80, 90)


def _keypair_from_base58(text: str) -> Keypair:
    text = text.strip()
    if len(text) not in _SECRET_KEY_B58_LEN or not set(text) <= _BASE58_ALPHABET:
        raise DecryptionError("decrypted key material is not a base58 secret key")
    try:
        return Keypair.from_base58_string(text)
    except Exception as exc:
        raise DecryptionError("decrypted key material is not a valid keypair") from exc


class WalletVault:
    """
    Custody of owner keypairs.

    The private key is encrypted with a key derived from the server-wide wallet
    secret and only ever leaves the vault as a return value (once at creation,
    or on explicit export).
    """

    def __init__(self, *, secret: str | None, store: WalletStore) -> None:
        self._secret = secret
        self._store = store

    def _require_secret(self) -> str:
        if not self._secret:
            raise ConfigurationError("WALLET_SECRET not configured")
        return self._secret

    async def create_wallet(self, owner_id: str) -> WalletCreation:
        secret = self._require_secret()
        if await self._store.get_wallet_record(owner_id) is not None:
            raise ConflictError(WALLET_ALREADY_EXISTS)

        keypair = Keypair()
        private_key = str(keypair)
        public_key = str(keypair.pubkey())
        record = EncryptedKeyRecord(
            owner_id=owner_id,
            public_key=public_key,
            ciphertext=encrypt_secret(private_key, secret),
        )
        if not await self._store.save_wallet_record(record):
            # Lost a race with a concurrent create for the same owner.
            raise ConflictError(WALLET_ALREADY_EXISTS)

        log.info("Wallet created | owner=%s public_key=%s", owner_id, mask(public_key))
        return WalletCreation(public_key=public_key, private_key_once=private_key, record=record)

    def load_signing_key(self, record: EncryptedKeyRecord) -> Keypair:
        secret = self._require_secret()
        if is_legacy_ciphertext(record.ciphertext):
            log.info("Loading legacy-format key | owner=%s", record.owner_id)
        plaintext = decrypt_secret(record.ciphertext, secret, nonce=record.nonce)
        keypair = _keypair_from_base58(plaintext)
        if str(keypair.pubkey()) != record.public_key:
            raise DecryptionError("decrypted key does not match the stored public key")
        return keypair

    async def get_record(self, owner_id: str) -> EncryptedKeyRecord:
        record = await self._store.get_wallet_record(owner_id)
        if record is None:
            raise NotFoundError("No wallet found for owner")
        return record

    async def get_public_key(self, owner_id: str) -> str:
        return (await self.get_record(owner_id)).public_key

    async def load_signing_key_for(self, owner_id: str) -> Keypair:
        return self.load_signing_key(await self.get_record(owner_id))

    async def export_wallet(self, owner_id: str) -> Dict[str, str]:
        record = await self.get_record(owner_id)
        keypair = self.load_signing_key(record)
        log.warning("Wallet exported | owner=%s public_key=%s", owner_id, mask(record.public_key))
        return {"public_key": record.public_key, "private_key": str(keypair)}


__all__ = ["WalletVault"]
