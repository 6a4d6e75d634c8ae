from __future__ import annotations

from typing import Any, Dict, List

import pytest
import requests

from orderdesk.domain.exceptions import ExternalServiceError, ExternalTimeoutError
from orderdesk.infrastructure.messenger import LogMessenger, WebhookMessenger


class _Response:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code


class _Session:
    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.posts: List[Dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> _Response:
        self.posts.append({"url": url, **kwargs})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return _Response(outcome)


async def test_webhook_posts_owner_and_text() -> None:
    session = _Session(200)
    messenger = WebhookMessenger("https://front.test/notify", timeout=1, session=session)  # type: ignore[arg-type]

    await messenger.send_message("u1", "SOL is above 100")

    assert session.posts[0]["url"] == "https://front.test/notify"
    assert session.posts[0]["json"] == {"owner_id": "u1", "text": "SOL is above 100"}


async def test_webhook_failures_are_typed() -> None:
    session = _Session(502, 404, requests.Timeout("slow"))
    messenger = WebhookMessenger("https://front.test/notify", timeout=1, session=session)  # type: ignore[arg-type]

    with pytest.raises(ExternalServiceError) as server:
        await messenger.send_message("u1", "x")
    assert server.value.retriable
    with pytest.raises(ExternalServiceError) as client:
        await messenger.send_message("u1", "x")
    assert not client.value.retriable
    with pytest.raises(ExternalTimeoutError):
        await messenger.send_message("u1", "x")


async def test_log_messenger_logs(caplog) -> None:
    caplog.set_level("INFO", logger="orderdesk.infrastructure.messenger")
    await LogMessenger().send_message("u1", "line one\nline two")
    assert "owner=u1" in caplog.text
    assert "line one / line two" in caplog.text
