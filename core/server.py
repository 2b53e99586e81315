from __future__ import annotations

import logging
import time
from typing import Any, Dict, List

from handlers.arguments import ValidationError
from observability.metrics import record_tool_call
from storage import StorageError

from . import protocol
from .protocol import MalformedEnvelope, ToolRequest, ToolResponse
from .registry import ToolRegistry

logger = logging.getLogger(__name__)


class ToolDispatcher:
    """Translates one inbound JSON-RPC envelope into one response envelope.

    Routing covers `initialize`, `tools/list` and `tools/call`; tool
    handlers come from the registry and receive the runtime server
    (store, completion client, context settings). The dispatcher itself
    holds no per-request state, so one instance serves all request threads.
    """

    def __init__(self, registry: ToolRegistry, server: Any) -> None:
        self.registry = registry
        self.server = server

    # --- Public API ---
    def dispatch(self, envelope: Any) -> Dict[str, Any]:
        """Decode, route and encode. Raises MalformedEnvelope for unroutable payloads."""
        request = protocol.decode_request(envelope)
        return self.handle(request).to_dict()

    def handle(self, request: ToolRequest) -> ToolResponse:
        if request.method == "initialize":
            return protocol.success(request.id, self.server_info())
        if request.method == "tools/list":
            return protocol.success(request.id, {"tools": self.list_tools()})
        if request.method == "tools/call":
            return self.handle_tool_call(request)
        return protocol.failure(request.id, protocol.METHOD_NOT_FOUND, "Method not found")

    def handle_tool_call(self, request: ToolRequest) -> ToolResponse:
        params = request.params
        if not isinstance(params, dict):
            raise MalformedEnvelope("Invalid params")
        tool_name = params.get("name")
        if not isinstance(tool_name, str):
            raise MalformedEnvelope("Tool name required")
        arguments = params.get("arguments")
        if not isinstance(arguments, dict):
            arguments = {}

        handler = self.registry.get_handler(tool_name)
        if handler is None:
            return protocol.failure(request.id, protocol.METHOD_NOT_FOUND, "Tool not found")

        start = time.time()
        try:
            result = handler(arguments, self.server)
        except Exception as e:
            record_tool_call(tool_name, False, time.time() - start)
            if isinstance(e, (ValidationError, StorageError)):
                logger.warning("Tool %s failed: %s", tool_name, e)
            else:
                logger.exception("Tool %s raised an unexpected error", tool_name)
            return protocol.failure(request.id, protocol.INTERNAL_ERROR, str(e))

        record_tool_call(tool_name, True, time.time() - start)
        return protocol.success(request.id, protocol.text_content(result))

    def list_tools(self) -> List[Dict[str, Any]]:
        return self.registry.get_all_tool_schemas()

    @staticmethod
    def server_info() -> Dict[str, Any]:
        return {
            "protocolVersion": protocol.PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": protocol.SERVER_NAME, "version": protocol.SERVER_VERSION},
        }
