from __future__ import annotations

import base64
import binascii
import logging

from solders.keypair import Keypair
from solders.message import to_bytes_versioned
from solders.signature import Signature
from solders.transaction import Transaction, VersionedTransaction

from ..domain.exceptions import MalformedTransactionError, SigningError

log = logging.getLogger(__name__)


class TransactionSigner:
    """
    Sign opaque venue transactions.

    Payloads are tried as versioned transactions first and as legacy
    transactions second. Signing is pure: no I/O and no shared state.
    """

    def sign(self, unsigned_tx: bytes, keypair: Keypair) -> bytes:
        try:
            versioned = VersionedTransaction.from_bytes(unsigned_tx)
        except Exception as exc:
            log.debug("Versioned parse failed, trying legacy | err=%s", exc)
        else:
            return self._sign_versioned(versioned, keypair)

        try:
            legacy = Transaction.from_bytes(unsigned_tx)
        except Exception as exc:
            raise MalformedTransactionError(
                "transaction is neither a versioned nor a legacy encoding"
            ) from exc
        return self._sign_legacy(legacy, keypair)

    def sign_base64(self, unsigned_tx_b64: str, keypair: Keypair) -> str:
        """Transport form used by the venue: base64 in, base64 out."""
        try:
            raw = base64.b64decode(unsigned_tx_b64, validate=True)
        except (binascii.Error, ValueError, TypeError) as exc:
            raise MalformedTransactionError("transaction is not valid base64") from exc
        return base64.b64encode(self.sign(raw, keypair)).decode("ascii")

    @staticmethod
    def _signer_index(account_keys, num_required: int, keypair: Keypair) -> int:
        signers = list(account_keys)[:num_required]
        pubkey = keypair.pubkey()
        if pubkey not in signers:
            raise SigningError(f"key {pubkey} is not a required signer of this transaction")
        return signers.index(pubkey)

    def _sign_versioned(self, tx: VersionedTransaction, keypair: Keypair) -> bytes:
        message = tx.message
        num_required = message.header.num_required_signatures
        idx = self._signer_index(message.account_keys, num_required, keypair)

        signatures = list(tx.signatures)
        if len(signatures) < num_required:
            signatures.extend(Signature.default() for _ in range(num_required - len(signatures)))
        signatures[idx] = keypair.sign_message(to_bytes_versioned(message))
        signed = VersionedTransaction.populate(message, signatures)
        return bytes(signed)

    def _sign_legacy(self, tx: Transaction, keypair: Keypair) -> bytes:
        message = tx.message
        self._signer_index(message.account_keys, message.header.num_required_signatures, keypair)
        try:
            tx.partial_sign([keypair], message.recent_blockhash)
        except Exception as exc:
            raise SigningError(f"legacy transaction signing failed: {exc}") from exc
        return bytes(tx)


__all__ = ["TransactionSigner"]
