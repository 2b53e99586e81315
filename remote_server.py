import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from core.protocol import MalformedEnvelope
from observability.metrics import CONTENT_TYPE_LATEST, metrics_payload_bytes
from storage import StorageError

logger = logging.getLogger(__name__)


def _decode_body(body: bytes) -> Any:
    return json.loads(body)


def create_app(server: Optional[Any] = None) -> FastAPI:
    """Build the HTTP surface. Without an explicit server the process singleton is used lazily."""

    def _server():
        if server is not None:
            return server
        import server as mcp_server
        return mcp_server.get_server_singleton()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        srv = _server()
        srv.cleanup.start()
        try:
            yield
        finally:
            srv.cleanup.stop()

    app = FastAPI(title="WhatsApp MCP Server", version="1.0.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        client = request.client.host if request.client else "unknown"
        logger.info("[%s] %s %s", client, request.method, request.url.path)
        return await call_next(request)

    @app.post("/mcp")
    async def mcp_endpoint(request: Request):
        try:
            payload = _decode_body(await request.body())
        except ValueError:
            return PlainTextResponse("Invalid JSON", status_code=400)
        try:
            # Dispatch blocks on storage and the completion API; keep it off the event loop
            result = await run_in_threadpool(_server().handle_message, payload)
        except MalformedEnvelope as e:
            return PlainTextResponse(str(e), status_code=400)
        return JSONResponse(result)

    @app.get("/tools")
    def tools():
        return {"tools": _server().dispatcher.list_tools()}

    @app.get("/health")
    def health():
        return _server().health()

    @app.get("/stats")
    def stats():
        try:
            return _server().storage.get_stats()
        except StorageError as e:
            logger.error("Failed to get stats: %s", e)
            return PlainTextResponse("Failed to get stats", status_code=500)

    @app.get("/metrics")
    def metrics():
        return Response(content=metrics_payload_bytes(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/webhook")
    def verify_webhook(request: Request):
        params = request.query_params
        challenge = _server().whatsapp.verify_webhook(
            params.get("hub.mode"), params.get("hub.verify_token"), params.get("hub.challenge")
        )
        if challenge is None:
            return Response(status_code=403)
        return PlainTextResponse(challenge)

    @app.post("/webhook")
    async def receive_webhook(request: Request):
        try:
            payload = _decode_body(await request.body())
        except ValueError as e:
            logger.error("Error decoding webhook: %s", e)
            return PlainTextResponse("Bad Request", status_code=400)
        try:
            await run_in_threadpool(_server().whatsapp.handle_webhook, payload)
        except ValueError as e:
            logger.error("Error decoding webhook: %s", e)
            return PlainTextResponse("Bad Request", status_code=400)
        return PlainTextResponse("OK")

    return app


app = create_app()
