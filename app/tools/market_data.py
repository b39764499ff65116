from typing import Any, Dict

import mcp.types as types
from mcp.server.lowlevel import Server

from app.tools.dispatcher import ToolDispatcher
from app.tools.registry import ToolDefinition, ToolParameter, ToolRegistry


def _req(name: str, description: str = "") -> ToolParameter:
    return ToolParameter(name=name, required=True, description=description)


def _opt(name: str, description: str = "") -> ToolParameter:
    return ToolParameter(name=name, required=False, description=description)


# Declaration order is the order clients see in tools/list.
MARKET_TOOLS = (
    # Live
    ToolDefinition("live_strikes", "Get live options strikes data for a ticker", "/live/strikes",
                   (_req("ticker", "Stock ticker symbol"),)),
    ToolDefinition("live_strikes_by_expiry", "Get live options strikes for specific expiration", "/live/strikes/monthly",
                   (_req("ticker"), _req("expiry", "YYYY-MM-DD"))),
    ToolDefinition("live_strikes_by_opra", "Get live options by OPRA symbol(s)", "/live/strikes/options",
                   (_req("tickers", "Comma-separated OPRA symbols"),)),
    ToolDefinition("live_expirations", "Get available expiration dates", "/live/expirations",
                   (_req("ticker"), _opt("include"))),
    ToolDefinition("live_monies_implied", "Get live implied volatility monies data", "/live/monies/implied",
                   (_req("ticker"),)),
    ToolDefinition("live_monies_forecast", "Get live forecast monies data", "/live/monies/forecast",
                   (_req("ticker"),)),
    ToolDefinition("live_summaries", "Get live summary data including IV rank", "/live/summaries",
                   (_req("ticker"),)),
    # Delayed
    ToolDefinition("tickers", "Get list of available tickers", "/tickers",
                   (_opt("ticker"),)),
    ToolDefinition("strikes", "Get options strikes data (delayed)", "/strikes",
                   (_req("ticker"), _opt("fields"), _opt("dte"), _opt("delta"))),
    ToolDefinition("monies_implied", "Get implied volatility monies (delayed)", "/monies/implied",
                   (_req("ticker"), _opt("fields"))),
    ToolDefinition("monies_forecast", "Get forecast monies (delayed)", "/monies/forecast",
                   (_req("ticker"), _opt("fields"))),
    ToolDefinition("summaries", "Get summary data (delayed)", "/summaries",
                   (_req("ticker"), _opt("fields"))),
    ToolDefinition("cores", "Get core data (price, earnings, dividends)", "/cores",
                   (_req("ticker"), _opt("fields"))),
    ToolDefinition("ivrank", "Get IV rank and percentile data", "/ivrank",
                   (_req("ticker"), _opt("fields"))),
    # Historical
    ToolDefinition("hist_strikes", "Get historical options strikes", "/hist/strikes",
                   (_req("ticker"), _req("tradeDate"), _opt("fields"), _opt("dte"), _opt("delta"))),
    ToolDefinition("hist_monies_implied", "Get historical implied monies", "/hist/monies/implied",
                   (_req("ticker"), _req("tradeDate"), _opt("fields"))),
    ToolDefinition("hist_summaries", "Get historical summaries", "/hist/summaries",
                   (_req("ticker"), _req("tradeDate"), _opt("fields"))),
    ToolDefinition("hist_cores", "Get historical core data", "/hist/cores",
                   (_req("ticker"), _req("tradeDate"), _opt("fields"))),
    ToolDefinition("hist_dailies", "Get historical daily prices", "/hist/dailies",
                   (_req("ticker"), _req("tradeDate"), _opt("fields"))),
    ToolDefinition("hist_hvs", "Get historical volatility data", "/hist/hvs",
                   (_req("ticker"), _req("tradeDate"), _opt("fields"))),
    ToolDefinition("hist_earnings", "Get earnings history", "/hist/earnings",
                   (_req("ticker"),)),
    ToolDefinition("hist_splits", "Get stock split history", "/hist/splits",
                   (_req("ticker"),)),
    ToolDefinition("hist_ivrank", "Get historical IV rank", "/hist/ivrank",
                   (_req("ticker"), _req("tradeDate"), _opt("fields"))),
    # Intraday (1-minute)
    ToolDefinition("live_intraday_strikes_chain", "Get live 1-min intraday chain", "/live/one-minute/strikes/chain",
                   (_req("ticker"),)),
    ToolDefinition("live_intraday_monies_implied", "Get live 1-min implied monies", "/live/one-minute/monies/implied",
                   (_req("ticker"),)),
    ToolDefinition("live_intraday_summaries", "Get live 1-min summaries", "/live/one-minute/summaries",
                   (_req("ticker"),)),
)


def build_market_registry() -> ToolRegistry:
    return ToolRegistry(MARKET_TOOLS)


def register_market_tools(server: Server, dispatcher: ToolDispatcher) -> None:
    """
    Wire tools/list and tools/call on a protocol server to the dispatcher.
    """

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [d.to_mcp_tool() for d in dispatcher.registry.list_tools()]

    # Required parameters are passed through; the upstream reports what is missing.
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: Dict[str, Any]) -> types.CallToolResult:
        return await dispatcher.dispatch(name, arguments)
