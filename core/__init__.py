"""JSON-RPC dispatch for the WhatsApp MCP endpoint.

Modules:
- server: ToolDispatcher, envelope routing and response encoding
- protocol: JSON-RPC envelope types and error codes
- registry: Tool registration and descriptor store
- context_manager: Bounded conversation windows for the completion backend
- fallback: Deterministic canned replies when the backend is unavailable
"""
