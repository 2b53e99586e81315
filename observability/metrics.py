"""
Prometheus metrics for tool calls and the completion backend.
All collectors live on a private registry exposed through `metrics_payload_bytes`.
"""
from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

__all__ = [
    "CONTENT_TYPE_LATEST",
    "record_tool_call",
    "record_provider_result",
    "record_fallback",
    "metrics_payload_bytes",
]

# Single registry for the process
_REGISTRY = CollectorRegistry()

TOOL_CALLS_TOTAL = Counter(
    "mcp_tool_calls_total",
    "Tool calls by tool name and outcome",
    ["tool", "outcome"],
    registry=_REGISTRY,
)
TOOL_CALL_LATENCY = Histogram(
    "mcp_tool_call_latency_seconds",
    "Tool call latency by tool name",
    ["tool"],
    registry=_REGISTRY,
)
PROVIDER_REQUESTS_TOTAL = Counter(
    "mcp_provider_requests_total",
    "Completion provider requests by outcome",
    ["outcome"],
    registry=_REGISTRY,
)
PROVIDER_LATENCY = Histogram(
    "mcp_provider_latency_seconds",
    "Completion provider request latency",
    registry=_REGISTRY,
)
FALLBACK_RESPONSES_TOTAL = Counter(
    "mcp_fallback_responses_total",
    "Replies served from the canned fallback list",
    registry=_REGISTRY,
)


def record_tool_call(tool: str, success: bool, latency_s: float) -> None:
    outcome = "success" if success else "failure"
    TOOL_CALLS_TOTAL.labels(tool=tool, outcome=outcome).inc()
    TOOL_CALL_LATENCY.labels(tool=tool).observe(max(0.0, latency_s))


def record_provider_result(success: bool, latency_s: float) -> None:
    outcome = "success" if success else "failure"
    PROVIDER_REQUESTS_TOTAL.labels(outcome=outcome).inc()
    PROVIDER_LATENCY.observe(max(0.0, latency_s))


def record_fallback() -> None:
    FALLBACK_RESPONSES_TOTAL.inc()


def metrics_payload_bytes() -> bytes:
    return generate_latest(_REGISTRY)
