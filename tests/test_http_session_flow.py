"""
End-to-end session flow over HTTP against the real protocol server, with the
upstream API mocked out at the `requests` layer.
"""

import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from api_server import create_app
from app.core.settings import Settings
from session_manager import MCP_SESSION_ID_HEADER

HEADERS = {"Content-Type": "application/json", "Accept": "application/json, text/event-stream"}

INITIALIZE = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {
        "protocolVersion": "2025-03-26",
        "capabilities": {},
        "clientInfo": {"name": "pytest", "version": "0"},
    },
}


@pytest.fixture
def client():
    cfg = Settings(AUTH_TOKEN="secret", MCP_JSON_RESPONSE=True, RATE_LIMIT_ENABLED=False)
    with TestClient(create_app(cfg)) as c:
        yield c


def _post(client, message, session_id=None):
    headers = {**HEADERS, "Authorization": "Bearer secret"}
    if session_id:
        headers[MCP_SESSION_ID_HEADER] = session_id
    return client.post("/mcp", content=json.dumps(message), headers=headers)


def _open_session(client):
    r = _post(client, INITIALIZE)
    assert r.status_code == 200
    session_id = r.headers[MCP_SESSION_ID_HEADER]
    assert _post(client, {"jsonrpc": "2.0", "method": "notifications/initialized"}, session_id).status_code == 202
    return session_id, r.json()


def test_full_session_lifecycle(client, orats_token, make_response):
    session_id, init = _open_session(client)
    assert init["result"]["serverInfo"]["name"] == "orats-mcp-server"
    assert init["result"]["serverInfo"]["version"] == "1.0.0"
    assert client.app.state.session_manager.session_ids() == [session_id]

    listed = _post(client, {"jsonrpc": "2.0", "id": 2, "method": "tools/list"}, session_id).json()
    assert len(listed["result"]["tools"]) == 26

    payload = {"data": [{"ticker": "AAPL", "strike": 150}]}
    with patch("orats_client.requests.get", return_value=make_response(payload=payload)) as mock_get:
        called = _post(
            client,
            {"jsonrpc": "2.0", "id": 3, "method": "tools/call",
             "params": {"name": "live_strikes", "arguments": {"ticker": "AAPL"}}},
            session_id,
        ).json()
    assert called["result"]["isError"] is False
    assert json.loads(called["result"]["content"][0]["text"]) == payload
    assert mock_get.call_args.kwargs["params"] == {"token": orats_token, "ticker": "AAPL"}

    unknown = _post(
        client,
        {"jsonrpc": "2.0", "id": 4, "method": "tools/call", "params": {"name": "nope", "arguments": {}}},
        session_id,
    ).json()
    assert unknown["result"]["isError"] is True
    assert unknown["result"]["content"][0]["text"] == "Error: Unknown tool: nope"

    closed = client.delete("/mcp", headers={"Authorization": "Bearer secret", MCP_SESSION_ID_HEADER: session_id})
    assert closed.status_code == 200
    assert closed.json() == {"status": "session closed"}

    after = _post(client, {"jsonrpc": "2.0", "id": 5, "method": "tools/list"}, session_id)
    assert after.status_code == 400
    assert after.json() == {"error": "Bad request: no valid session"}


def test_sessions_are_isolated(client):
    first, _ = _open_session(client)
    second, _ = _open_session(client)
    assert first != second

    client.delete("/mcp", headers={"Authorization": "Bearer secret", MCP_SESSION_ID_HEADER: first})

    still_open = _post(client, {"jsonrpc": "2.0", "id": 2, "method": "tools/list"}, second)
    assert still_open.status_code == 200
    assert len(still_open.json()["result"]["tools"]) == 26
