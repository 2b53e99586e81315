import sys
import logging
from typing import Any, Dict, Optional

from config import Settings, get_settings
from core.context_manager import ContextManager
from core.protocol import SERVER_VERSION
from core.registry import ToolRegistry
from core.server import ToolDispatcher
from handlers import chat
from llm_client import CompletionClient
from maintenance import SessionCleanup
from models import format_rfc3339, utcnow
from storage import ConversationStore
from whatsapp import WhatsAppHandler

logger = logging.getLogger(__name__)

_server_singleton = None


class ChatServer:
    """Runtime container wiring settings, store, completion client and dispatcher."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        storage: Optional[ConversationStore] = None,
        completion: Optional[CompletionClient] = None,
    ):
        self.settings = settings or get_settings()
        self.model_name = self.settings.grok_model
        self.context = ContextManager()

        # Persistent conversation store
        self.storage = storage or ConversationStore(self.settings.database_path)

        # Completion backend is optional; without it every reply comes from the fallback list
        if completion is None and self.settings.grok_configured:
            completion = CompletionClient(
                api_key=self.settings.grok_api_key,
                base_url=self.settings.grok_base_url,
                model=self.settings.grok_model,
                timeout=self.settings.grok_timeout,
                context=self.context,
            )
            logger.info("Grok client initialized with model: %s", self.settings.grok_model)
        elif completion is None:
            logger.warning("GROK_API_KEY not set, using fallback responses")
        self.completion = completion

        self.registry = ToolRegistry()
        chat.register(self.registry)
        self.dispatcher = ToolDispatcher(self.registry, self)

        self.whatsapp = WhatsAppHandler(
            verify_token=self.settings.whatsapp_verify_token,
            access_token=self.settings.whatsapp_access_token,
            phone_number_id=self.settings.whatsapp_phone_number_id,
            store=self.storage,
        )
        self.cleanup = SessionCleanup(self.storage, self.settings.session_cleanup_interval)

    @property
    def completion_configured(self) -> bool:
        return self.completion is not None

    def handle_message(self, message: Any) -> Dict[str, Any]:
        """Dispatch one decoded envelope; MalformedEnvelope propagates to the transport."""
        return self.dispatcher.dispatch(message)

    def health(self) -> Dict[str, Any]:
        return {
            "status": "healthy",
            "service": "WhatsApp MCP Server",
            "timestamp": format_rfc3339(utcnow()),
            "version": SERVER_VERSION,
            "grok_api": "configured" if self.completion_configured else "not configured",
            "model": self.model_name,
        }

    def close(self) -> None:
        self.cleanup.stop()
        if self.completion is not None:
            self.completion.close()
        self.storage.close()


def get_server_singleton() -> ChatServer:
    global _server_singleton
    if _server_singleton is None:
        _server_singleton = ChatServer()
    return _server_singleton


def handle_message(message: Any) -> Dict[str, Any]:
    """Handle an incoming MCP envelope with the process-wide server"""
    return get_server_singleton().handle_message(message)


def main():
    """Main entry point for the WhatsApp MCP server"""
    import uvicorn

    from remote_server import create_app

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        server = get_server_singleton()
    except Exception as e:
        logger.error("Server startup error: %s", e)
        sys.exit(1)

    logger.info("WhatsApp MCP Server starting...")
    logger.info("Port: %s", settings.port)
    logger.info("Environment: %s", settings.environment)
    logger.info("Grok Model: %s", settings.grok_model)
    logger.info("Database: %s", settings.database_path)
    for name, path in (("Health", "/health"), ("Tools", "/tools"), ("Stats", "/stats"),
                       ("MCP", "/mcp"), ("Webhook", "/webhook"), ("Metrics", "/metrics")):
        logger.info("  %-8s http://localhost:%s%s", name + ":", settings.port, path)

    uvicorn.run(create_app(server), host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
