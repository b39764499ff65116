import json
from unittest.mock import AsyncMock, patch

import pytest

from app.tools.dispatcher import ToolDispatcher
from orats_client import OratsClient


@pytest.fixture
def dispatcher(registry):
    return ToolDispatcher(registry, OratsClient(timeout=5))


@pytest.mark.asyncio
async def test_successful_call_returns_pretty_json(dispatcher, orats_token, make_response):
    payload = {"data": [{"ticker": "AAPL", "strike": 150}]}
    with patch("orats_client.requests.get", return_value=make_response(payload=payload)) as mock_get:
        result = await dispatcher.dispatch("live_strikes", {"ticker": "AAPL"})

    assert result.isError is False
    assert len(result.content) == 1
    assert result.content[0].type == "text"
    assert result.content[0].text == json.dumps(payload, indent=2)
    url = mock_get.call_args.args[0]
    assert url.endswith("/live/strikes")
    assert mock_get.call_args.kwargs["params"] == {"token": orats_token, "ticker": "AAPL"}


@pytest.mark.asyncio
async def test_upstream_failure_becomes_error_result(dispatcher, orats_token, make_response):
    with patch("orats_client.requests.get", return_value=make_response(503, "Service Unavailable")):
        result = await dispatcher.dispatch("live_strikes", {"ticker": "AAPL"})

    assert result.isError is True
    assert result.content[0].text == "Error: API request failed: 503 Service Unavailable"


@pytest.mark.asyncio
async def test_unknown_tool_becomes_error_result(dispatcher, orats_token):
    with patch("orats_client.requests.get") as mock_get:
        result = await dispatcher.dispatch("no_such_tool", {})

    assert result.isError is True
    assert result.content[0].text == "Error: Unknown tool: no_such_tool"
    mock_get.assert_not_called()


@pytest.mark.asyncio
async def test_missing_token_becomes_error_result(dispatcher, monkeypatch):
    monkeypatch.delenv("ORATS_API_TOKEN", raising=False)
    result = await dispatcher.dispatch("tickers", None)
    assert result.isError is True
    assert result.content[0].text == "Error: ORATS_API_TOKEN environment variable is required"


@pytest.mark.asyncio
async def test_missing_required_arguments_are_passed_through(dispatcher, orats_token, make_response):
    # Upstream decides what a missing ticker means.
    with patch("orats_client.requests.get", return_value=make_response(payload={"data": []})) as mock_get:
        result = await dispatcher.dispatch("hist_strikes", {"ticker": "SPY"})

    assert result.isError is False
    assert mock_get.call_args.kwargs["params"] == {"token": orats_token, "ticker": "SPY"}


@pytest.mark.asyncio
async def test_unexpected_exception_is_contained(registry):
    client = OratsClient("tok")
    client.fetch = AsyncMock(side_effect=KeyError("boom"))
    result = await ToolDispatcher(registry, client).dispatch("cores", {"ticker": "AAPL"})

    assert result.isError is True
    assert result.content[0].text.startswith("Error: ")
    client.fetch.assert_awaited_once_with("/cores", {"ticker": "AAPL"})
