from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional


class ToolRegistry:
    """Maps tool names to handlers and their published descriptors.

    Handlers take (arguments: dict, server) and return a JSON-serializable result.
    """

    def __init__(self) -> None:
        # name -> (handler, descriptor)
        self._tools: Dict[str, tuple[Callable[..., Any], Dict[str, Any]]] = {}

    def register(
        self,
        name: str,
        handler: Callable[..., Any],
        *,
        description: str,
        input_schema: Dict[str, Any],
    ) -> None:
        if not isinstance(name, str) or not name:
            raise ValueError("Tool name must be a non-empty string")
        descriptor = {"name": name, "description": description, "inputSchema": input_schema}
        self._tools[name] = (handler, descriptor)

    def get_handler(self, name: str) -> Optional[Callable[..., Any]]:
        entry = self._tools.get(name)
        return entry[0] if entry else None

    def list_tools(self) -> List[str]:
        return list(self._tools)

    def get_all_tool_schemas(self) -> List[Dict[str, Any]]:
        """Descriptors in registration order, as published by `tools/list`."""
        return [descriptor for _, descriptor in self._tools.values()]
