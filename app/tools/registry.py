from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import mcp.types as types

from errors import UnknownToolError


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: str = "string"
    required: bool = False
    description: str = ""

    def to_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        return schema


@dataclass(frozen=True)
class ToolDefinition:
    """
    One tool exposed to clients, mapped 1:1 onto an upstream GET endpoint.
    """

    name: str
    description: str
    endpoint: str
    parameters: Tuple[ToolParameter, ...] = ()

    @property
    def required(self) -> List[str]:
        return [p.name for p in self.parameters if p.required]

    def input_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {
            "type": "object",
            "properties": {p.name: p.to_schema() for p in self.parameters},
        }
        if self.required:
            schema["required"] = self.required
        return schema

    def to_mcp_tool(self) -> types.Tool:
        return types.Tool(name=self.name, description=self.description, inputSchema=self.input_schema())


class ToolRegistry:
    """
    Immutable name -> ToolDefinition lookup.
    Declaration order is preserved by list_tools().
    """

    def __init__(self, definitions: Iterable[ToolDefinition]) -> None:
        self._tools: Dict[str, ToolDefinition] = {}
        endpoints: Dict[str, str] = {}
        for d in definitions:
            if not d.name:
                raise ValueError("Tool definitions must have a name")
            if d.name in self._tools:
                raise ValueError(f"Duplicate tool name: {d.name}")
            if not d.endpoint or not d.endpoint.startswith("/"):
                raise ValueError(f"Tool {d.name} has an invalid endpoint: {d.endpoint!r}")
            if d.endpoint in endpoints:
                raise ValueError(f"Tools {endpoints[d.endpoint]} and {d.name} share endpoint {d.endpoint}")
            endpoints[d.endpoint] = d.name
            self._tools[d.name] = d
        self._ordered: Tuple[ToolDefinition, ...] = tuple(self._tools.values())

    def list_tools(self) -> Tuple[ToolDefinition, ...]:
        return self._ordered

    def names(self) -> List[str]:
        return [d.name for d in self._ordered]

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def resolve_endpoint(self, name: str) -> str:
        d = self._tools.get(name)
        if d is None:
            raise UnknownToolError(name)
        return d.endpoint

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._ordered)
