import pytest

from orderdesk.domain.exceptions import ExternalServiceError, ResponseParseError
from orderdesk.domain.venue import (
    ExecutionResult,
    QuoteResponse,
    TriggerOrderCreated,
    parse_order_list,
    parse_response,
)


def test_trigger_order_requires_transaction() -> None:
    with pytest.raises(ResponseParseError) as info:
        parse_response(TriggerOrderCreated, {"requestId": "r1"}, operation="create_trigger_order")
    assert "transaction" in info.value.message


def test_provider_error_is_external_service_error() -> None:
    with pytest.raises(ExternalServiceError) as info:
        parse_response(
            TriggerOrderCreated,
            {"error": "Order value too small", "code": 400},
            operation="create_trigger_order",
        )
    assert not isinstance(info.value, ResponseParseError)
    assert info.value.code == 400
    assert "Order value too small" in info.value.message


def test_quote_parses_numeric_strings() -> None:
    quote = parse_response(
        QuoteResponse,
        {
            "requestId": "q1",
            "inAmount": "1000",
            "outAmount": "20",
            "priceImpactPct": "0.5",
            "routePlan": [{"swapInfo": {"label": "Pool", "ammKey": "k"}}],
            "unknownField": True,
        },
        operation="get_quote",
    )
    assert quote.in_amount == 1000
    assert quote.route_plan[0].swap_info.label == "Pool"
    assert quote.transaction is None


def test_execution_result_needs_signature() -> None:
    with pytest.raises(ResponseParseError):
        parse_response(ExecutionResult, {"status": "Success"}, operation="execute")


def test_order_list_envelopes() -> None:
    bare = parse_order_list([{"orderKey": "k1"}], operation="list_orders")
    wrapped = parse_order_list({"orders": [{"order": "k2", "status": "Open"}]}, operation="list_orders")
    recurring = parse_order_list({"all": []}, operation="list_orders")
    assert [o.order for o in bare] == ["k1"]
    assert wrapped[0].status == "Open"
    assert recurring == []
    with pytest.raises(ResponseParseError):
        parse_order_list({"orders": "nope"}, operation="list_orders")
