from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import requests

from ...domain.enums import OrderKind, VenueOrderStatus
from ...domain.exceptions import ExternalServiceError, ExternalTimeoutError
from ...domain.venue import (
    CancelTransaction,
    ExecutionResult,
    QuoteResponse,
    RecurringOrderCreated,
    SolBalance,
    TriggerOrderCreated,
    VenueOrder,
    parse_order_list,
    parse_response,
    provider_error,
)
from ..metrics import DeskMetrics

log = logging.getLogger(__name__)

_EXECUTE_PATHS: Dict[Optional[OrderKind], str] = {
    OrderKind.TRIGGER: "/trigger/v1/execute",
    OrderKind.RECURRING: "/recurring/v1/execute",
    None: "/ultra/v1/execute",
}


def _summarize_payload(obj: Any) -> str:
    if isinstance(obj, dict):
        return f"dict(keys={list(obj.keys())[:8]})"
    if isinstance(obj, list):
        return f"list(len={len(obj)})"
    return type(obj).__name__


class JupiterClient:
    """
    Async facade over the Jupiter HTTP APIs (ultra, trigger, recurring, tokens).

    - Blocking ``requests`` calls are offloaded to a thread.
    - Every call is capped with ``asyncio.wait_for`` so it cannot wedge; a
      timeout surfaces as ``ExternalTimeoutError`` (retriable).
    - Responses are validated into typed models before they leave this class.
    """

    def __init__(
        self,
        *,
        base_url: str = "https://api.jup.ag",
        api_key: str | None = None,
        timeout: float = 15.0,
        session: requests.Session | None = None,
        metrics: DeskMetrics | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_s = float(timeout)
        self._session = session or requests.Session()
        self._metrics = metrics
        log.info(
            "JupiterClient init | base=%s api_key=%s timeout_s=%s",
            self._base_url,
            "set" if api_key else "unset",
            self._timeout_s,
        )

    # ---------- Utilities ----------

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    def _record_error(self, kind: str) -> None:
        if self._metrics:
            self._metrics.inc_venue_error(kind)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: Dict[str, Any] | None = None,
        body: Dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self._base_url}{path}"

        def _do() -> requests.Response:
            return self._session.request(
                method,
                url,
                params=params,
                json=body,
                headers=self._headers(),
                timeout=self._timeout_s,
            )

        start = time.perf_counter()
        try:
            resp = await asyncio.wait_for(asyncio.to_thread(_do), timeout=self._timeout_s + 5)
        except (asyncio.TimeoutError, requests.Timeout) as exc:
            self._record_error("timeout")
            raise ExternalTimeoutError(f"{operation}: venue timed out") from exc
        except requests.RequestException as exc:
            self._record_error("network")
            raise ExternalServiceError(f"{operation}: {exc}", retriable=True) from exc
        finally:
            elapsed = time.perf_counter() - start
            if self._metrics:
                self._metrics.observe_venue_latency(operation, elapsed)
            log.debug("%s %s: %.1f ms", method, path, elapsed * 1000)

        try:
            payload = resp.json()
        except ValueError:
            payload = {"raw": resp.text}

        log.info(
            "%s %s -> status=%s | %s",
            method,
            path,
            resp.status_code,
            _summarize_payload(payload),
        )
        if resp.status_code >= 400:
            retriable = resp.status_code == 429 or resp.status_code >= 500
            self._record_error("rate_limit" if resp.status_code == 429 else f"http_{resp.status_code // 100}xx")
            message = provider_error(payload) or f"HTTP {resp.status_code}"
            raise ExternalServiceError(
                f"{operation}: {message}", code=resp.status_code, retriable=retriable
            )
        return payload

    # ---------- Swaps ----------

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        taker: str | None = None,
    ) -> QuoteResponse:
        params: Dict[str, Any] = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
        }
        if taker:
            params["taker"] = taker
        payload = await self._request("GET", "/ultra/v1/order", operation="get_quote", params=params)
        return parse_response(QuoteResponse, payload, operation="get_quote")

    async def get_sol_balance(self, owner: str) -> SolBalance:
        payload = await self._request("GET", f"/ultra/v1/balances/{owner}", operation="get_balance")
        if isinstance(payload, dict) and provider_error(payload) is None:
            payload = payload.get("SOL") or {}
        return parse_response(SolBalance, payload, operation="get_balance")

    # ---------- Trigger / recurring orders ----------

    async def create_trigger_order(self, payload: Dict[str, Any]) -> TriggerOrderCreated:
        data = await self._request(
            "POST", "/trigger/v1/createOrder", operation="create_trigger_order", body=payload
        )
        return parse_response(TriggerOrderCreated, data, operation="create_trigger_order")

    async def create_recurring_order(self, payload: Dict[str, Any]) -> RecurringOrderCreated:
        data = await self._request(
            "POST", "/recurring/v1/createOrder", operation="create_recurring_order", body=payload
        )
        return parse_response(RecurringOrderCreated, data, operation="create_recurring_order")

    async def submit_signed_transaction(
        self,
        kind: OrderKind | None,
        signed_transaction: str,
        request_id: str,
    ) -> ExecutionResult:
        """Submit a signed base64 transaction; ``kind=None`` targets the swap executor."""
        data = await self._request(
            "POST",
            _EXECUTE_PATHS[kind],
            operation="execute",
            body={"signedTransaction": signed_transaction, "requestId": request_id},
        )
        return parse_response(ExecutionResult, data, operation="execute")

    async def cancel_order(self, kind: OrderKind, owner: str, order_id: str) -> CancelTransaction:
        if kind == OrderKind.TRIGGER:
            path = "/trigger/v1/cancelOrder"
            body: Dict[str, Any] = {"maker": owner, "order": order_id, "computeUnitPrice": "auto"}
        else:
            path = "/recurring/v1/cancelOrder"
            body = {"user": owner, "order": order_id, "recurringType": "time"}
        data = await self._request("POST", path, operation="cancel_order", body=body)
        return parse_response(CancelTransaction, data, operation="cancel_order")

    async def list_orders(
        self,
        kind: OrderKind,
        owner: str,
        status: VenueOrderStatus = VenueOrderStatus.ACTIVE,
    ) -> List[VenueOrder]:
        if kind == OrderKind.TRIGGER:
            path = "/trigger/v1/getTriggerOrders"
            params: Dict[str, Any] = {"user": owner, "orderStatus": status.value}
        else:
            path = "/recurring/v1/getRecurringOrders"
            params = {"user": owner, "orderStatus": status.value, "recurringType": "time"}
        data = await self._request("GET", path, operation="list_orders", params=params)
        return parse_order_list(data, operation="list_orders")

    # ---------- Tokens ----------

    async def search_tokens(self, query: str) -> List[Dict[str, Any]]:
        data = await self._request(
            "GET", "/tokens/v2/search", operation="search_tokens", params={"query": query}
        )
        if not isinstance(data, list):
            return []
        return [t for t in data if isinstance(t, dict)]

    async def trending_tokens(self, *, interval: str = "24h", limit: int = 5) -> List[Dict[str, Any]]:
        data = await self._request(
            "GET",
            f"/tokens/v2/toptrending/{interval}",
            operation="trending_tokens",
            params={"limit": limit},
        )
        if not isinstance(data, list):
            return []
        return [t for t in data if isinstance(t, dict)]


__all__ = ["JupiterClient"]
