"""JSON-RPC 2.0 envelope types and encoders for the MCP endpoint."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"

SERVER_NAME = "whatsapp-mcp-server"
SERVER_VERSION = "1.0.0"

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class MalformedEnvelope(Exception):
    """The inbound payload cannot be routed; answered at the transport level (HTTP 400)."""


@dataclass(frozen=True)
class ToolError:
    code: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


@dataclass(frozen=True)
class ToolRequest:
    method: str
    id: Any = None
    params: Any = None


@dataclass(frozen=True)
class ToolResponse:
    id: Any = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[ToolError] = None

    def __post_init__(self) -> None:
        if (self.result is None) == (self.error is None):
            raise ValueError("ToolResponse carries exactly one of result or error")

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            body["error"] = self.error.to_dict()
        else:
            body["result"] = self.result
        return body


def decode_request(payload: Any) -> ToolRequest:
    """Turn a decoded JSON body into a ToolRequest or raise MalformedEnvelope."""
    if not isinstance(payload, dict):
        raise MalformedEnvelope("Invalid JSON")
    method = payload.get("method")
    if not isinstance(method, str):
        raise MalformedEnvelope("Method required")
    return ToolRequest(method=method, id=payload.get("id"), params=payload.get("params"))


def canonical_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def text_content(result: Any) -> Dict[str, Any]:
    """Wrap a tool result as MCP text content."""
    text = result if isinstance(result, str) else canonical_json(result)
    return {"content": [{"type": "text", "text": text}]}


def success(request_id: Any, result: Dict[str, Any]) -> ToolResponse:
    return ToolResponse(id=request_id, result=result)


def failure(request_id: Any, code: int, message: str) -> ToolResponse:
    return ToolResponse(id=request_id, error=ToolError(code=code, message=message))
