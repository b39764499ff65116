import json
from typing import Any, Dict, Mapping, Optional

import mcp.types as types

from app.tools.registry import ToolRegistry
from errors import classify_exception
from observability import build_log_context, log_event
from orats_client import OratsClient

DISPATCH_CTX = build_log_context(component="dispatcher")


def _text_result(text: str, *, is_error: bool = False) -> types.CallToolResult:
    return types.CallToolResult(content=[types.TextContent(type="text", text=text)], isError=is_error)


def _json_ok(data: Any) -> types.CallToolResult:
    return _text_result(json.dumps(data, indent=2))


def _json_err(message: str) -> types.CallToolResult:
    return _text_result(f"Error: {message}", is_error=True)


class ToolDispatcher:
    """
    Executes one tool invocation: registry lookup -> upstream fetch -> result envelope.

    Failures never escape as protocol faults; they come back as
    `isError=True` results so clients can tell a failed tool call from a
    broken connection.
    """

    def __init__(self, registry: ToolRegistry, client: OratsClient) -> None:
        self.registry = registry
        self.client = client

    async def dispatch(self, name: str, arguments: Optional[Mapping[str, Any]] = None) -> types.CallToolResult:
        args: Dict[str, Any] = dict(arguments or {})
        try:
            endpoint = self.registry.resolve_endpoint(name)
            result = await self.client.fetch(endpoint, args)
        except Exception as e:
            ae = classify_exception(e)
            log_event(
                "tool_call_failed",
                ctx=DISPATCH_CTX,
                data={"tool": name, "code": ae.code, "message": ae.message},
                level="warning",
            )
            return _json_err(ae.message)

        log_event("tool_call_ok", ctx=DISPATCH_CTX, data={"tool": name, "endpoint": endpoint})
        return _json_ok(result)
