"""Delivery of notification text back to the messaging front-end."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import requests

from ..domain.exceptions import ExternalServiceError, ExternalTimeoutError

log = logging.getLogger(__name__)


class Messenger(Protocol):
    async def send_message(self, owner_id: str, text: str) -> None: ...


class LogMessenger:
    """Fallback when no front-end webhook is configured: log the message."""

    async def send_message(self, owner_id: str, text: str) -> None:
        log.info("Notification | owner=%s text=%s", owner_id, text.replace("\n", " / "))


class WebhookMessenger:
    """POST ``{"owner_id", "text"}`` to the front-end's webhook."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self._url = url
        self._timeout_s = float(timeout)
        self._session = session or requests.Session()

    async def send_message(self, owner_id: str, text: str) -> None:
        def _do() -> requests.Response:
            return self._session.post(
                self._url,
                json={"owner_id": owner_id, "text": text},
                timeout=self._timeout_s,
            )

        try:
            resp = await asyncio.wait_for(asyncio.to_thread(_do), timeout=self._timeout_s + 5)
        except (asyncio.TimeoutError, requests.Timeout) as exc:
            raise ExternalTimeoutError("send_message: webhook timed out") from exc
        except requests.RequestException as exc:
            raise ExternalServiceError(f"send_message: {exc}", retriable=True) from exc
        if resp.status_code >= 400:
            raise ExternalServiceError(
                f"send_message: webhook returned HTTP {resp.status_code}",
                code=resp.status_code,
                retriable=resp.status_code >= 500,
            )
        log.debug("Notification delivered | owner=%s status=%s", owner_id, resp.status_code)


__all__ = ["Messenger", "LogMessenger", "WebhookMessenger"]
