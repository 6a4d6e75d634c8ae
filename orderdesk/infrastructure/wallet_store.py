"""Key-value persistence for encrypted wallet records."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from redis.asyncio import Redis

from ..core.logging_utils import mask
from ..domain.models import EncryptedKeyRecord

log = logging.getLogger(__name__)


class WalletStore(Protocol):
    async def get_wallet_record(self, owner_id: str) -> Optional[EncryptedKeyRecord]: ...

    async def save_wallet_record(self, record: EncryptedKeyRecord) -> bool:
        """Persist ``record``; returns False when the owner already has one."""
        ...


class InMemoryWalletStore:
    """Process-local store; records are lost on restart."""

    def __init__(self) -> None:
        self._records: Dict[str, EncryptedKeyRecord] = {}
        self._lock = asyncio.Lock()

    async def get_wallet_record(self, owner_id: str) -> Optional[EncryptedKeyRecord]:
        async with self._lock:
            return self._records.get(owner_id)

    async def save_wallet_record(self, record: EncryptedKeyRecord) -> bool:
        async with self._lock:
            if record.owner_id in self._records:
                return False
            self._records[record.owner_id] = record
            return True


def _wallet_key(owner_id: str) -> str:
    return f"wallet:{owner_id}"


class RedisWalletStore:
    """One JSON document per owner under ``wallet:{owner_id}``."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def get_wallet_record(self, owner_id: str) -> Optional[EncryptedKeyRecord]:
        raw = await self._redis.get(_wallet_key(owner_id))
        if not raw:
            return None
        data = json.loads(raw)
        created_at = data.get("created_at")
        return EncryptedKeyRecord(
            owner_id=owner_id,
            public_key=data["public_key"],
            ciphertext=data["ciphertext"],
            nonce=data.get("nonce") or None,
            created_at=(
                datetime.fromisoformat(created_at) if created_at else datetime.now(timezone.utc)
            ),
        )

    async def save_wallet_record(self, record: EncryptedKeyRecord) -> bool:
        payload = json.dumps(
            {
                "public_key": record.public_key,
                "ciphertext": record.ciphertext,
                "nonce": record.nonce,
                "created_at": record.created_at.isoformat(),
            }
        )
        # SET NX claims the owner slot atomically.
        created = await self._redis.set(_wallet_key(record.owner_id), payload, nx=True)
        if not created:
            log.info("Wallet record already present | owner=%s", record.owner_id)
            return False
        log.info(
            "Wallet record saved | owner=%s public_key=%s",
            record.owner_id,
            mask(record.public_key),
        )
        return True


__all__ = ["WalletStore", "InMemoryWalletStore", "RedisWalletStore"]
