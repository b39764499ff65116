import pytest

from app.tools.market_data import MARKET_TOOLS
from app.tools.registry import ToolDefinition, ToolParameter, ToolRegistry
from errors import UnknownToolError


def test_registry_exposes_all_market_tools(registry):
    assert len(registry) == 26
    names = registry.names()
    assert len(set(names)) == 26
    assert names[0] == "live_strikes"
    assert names[-1] == "live_intraday_summaries"


def test_endpoints_are_unique_and_absolute(registry):
    endpoints = [d.endpoint for d in registry.list_tools()]
    assert len(set(endpoints)) == len(endpoints)
    assert all(e.startswith("/") for e in endpoints)


@pytest.mark.parametrize(
    "name,endpoint",
    [
        ("live_strikes", "/live/strikes"),
        ("live_strikes_by_expiry", "/live/strikes/monthly"),
        ("live_strikes_by_opra", "/live/strikes/options"),
        ("tickers", "/tickers"),
        ("hist_ivrank", "/hist/ivrank"),
        ("live_intraday_strikes_chain", "/live/one-minute/strikes/chain"),
    ],
)
def test_resolve_endpoint(registry, name, endpoint):
    assert registry.resolve_endpoint(name) == endpoint


def test_unknown_tool_is_rejected(registry):
    with pytest.raises(UnknownToolError) as exc_info:
        registry.resolve_endpoint("no_such_tool")
    assert exc_info.value.message == "Unknown tool: no_such_tool"
    assert "no_such_tool" not in registry
    assert registry.get("no_such_tool") is None


def test_input_schema_lists_required_parameters(registry):
    schema = registry.get("hist_strikes").input_schema()
    assert schema["type"] == "object"
    assert set(schema["properties"]) == {"ticker", "tradeDate", "fields", "dte", "delta"}
    assert schema["required"] == ["ticker", "tradeDate"]
    assert all(p["type"] == "string" for p in schema["properties"].values())


def test_input_schema_omits_required_when_everything_is_optional(registry):
    schema = registry.get("tickers").input_schema()
    assert "required" not in schema
    assert set(schema["properties"]) == {"ticker"}


def test_to_mcp_tool(registry):
    tool = registry.get("live_expirations").to_mcp_tool()
    assert tool.name == "live_expirations"
    assert tool.description == "Get available expiration dates"
    assert tool.inputSchema["required"] == ["ticker"]
    assert "include" in tool.inputSchema["properties"]


def test_duplicate_names_are_rejected():
    tool = ToolDefinition("a", "A", "/a")
    with pytest.raises(ValueError, match="Duplicate tool name"):
        ToolRegistry([tool, ToolDefinition("a", "again", "/b")])


def test_shared_endpoints_are_rejected():
    with pytest.raises(ValueError, match="share endpoint"):
        ToolRegistry([ToolDefinition("a", "A", "/x"), ToolDefinition("b", "B", "/x")])


@pytest.mark.parametrize("endpoint", ["", "relative/path"])
def test_invalid_endpoints_are_rejected(endpoint):
    with pytest.raises(ValueError, match="invalid endpoint"):
        ToolRegistry([ToolDefinition("a", "A", endpoint)])


def test_declaration_order_is_preserved():
    defs = [
        ToolDefinition("zeta", "Z", "/z", (ToolParameter("ticker", required=True),)),
        ToolDefinition("alpha", "A", "/a"),
    ]
    reg = ToolRegistry(defs)
    assert reg.names() == ["zeta", "alpha"]
    assert reg.list_tools() == tuple(defs)


def test_market_tools_require_ticker_except_listing_endpoints():
    optional_ticker = {"tickers", "live_strikes_by_opra"}
    for d in MARKET_TOOLS:
        if d.name in optional_ticker:
            continue
        assert "ticker" in d.required, d.name
