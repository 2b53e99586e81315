from __future__ import annotations

import logging
from typing import Any, Dict, List

from core.fallback import select_fallback
from handlers.arguments import parse_chat_arguments, parse_history_arguments
from llm_client import CompletionError
from models import ROLE_ASSISTANT, ROLE_USER, Message
from observability.metrics import record_fallback
from storage import DEFAULT_HISTORY_LIMIT, StorageError

logger = logging.getLogger(__name__)

CHAT_TOOL = {
    "name": "chat",
    "description": "Send a chat message and get AI response using Grok",
    "inputSchema": {
        "type": "object",
        "properties": {
            "user_id": {"type": "string", "description": "Unique identifier for the user"},
            "message": {"type": "string", "description": "The message content"},
        },
        "required": ["user_id", "message"],
    },
}

HISTORY_TOOL = {
    "name": "history",
    "description": "Get chat history for a user",
    "inputSchema": {
        "type": "object",
        "properties": {
            "user_id": {"type": "string", "description": "Unique identifier for the user"},
            "limit": {
                "type": "integer",
                "description": "Maximum number of messages to return",
                "default": DEFAULT_HISTORY_LIMIT,
            },
        },
        "required": ["user_id"],
    },
}


def generate_response(server, message: str, history: List[Message]) -> str:
    """Ask the completion backend for a reply; fall back to a canned one on any failure."""
    completion = getattr(server, "completion", None)
    if completion is not None:
        window = server.context.build_window(history, message)
        try:
            return completion.complete(window)
        except CompletionError as e:
            logger.warning("Completion API error, using fallback response: %s", e)
        except Exception:
            logger.exception("Unexpected completion failure, using fallback response")
    record_fallback()
    return select_fallback(message)


def handle_chat(arguments: Dict[str, Any], server) -> Dict[str, Any]:
    args = parse_chat_arguments(arguments)

    try:
        saved = server.storage.save_message(args.user_id, args.message, ROLE_USER)
    except StorageError as e:
        logger.error("Error saving user message for %s: %s", args.user_id, e)
        raise

    # The fetched rows include the message just saved; it goes last in the window instead
    try:
        history = server.storage.get_chat_history(args.user_id, server.context.max_history)
    except StorageError as e:
        logger.error("Error getting chat history for %s: %s", args.user_id, e)
        history = []
    history = [m for m in history if m.id != saved.id]

    response = generate_response(server, args.message, history)

    try:
        server.storage.save_message(args.user_id, response, ROLE_ASSISTANT)
    except StorageError as e:
        logger.error("Error saving assistant message for %s: %s", args.user_id, e)

    return {"response": response, "user_id": args.user_id}


def handle_history(arguments: Dict[str, Any], server) -> Dict[str, Any]:
    args = parse_history_arguments(arguments)

    try:
        history = server.storage.get_chat_history(args.user_id, args.limit)
    except StorageError as e:
        logger.error("Error getting chat history for %s: %s", args.user_id, e)
        raise StorageError(f"failed to get chat history: {e}") from e

    return {"messages": [m.to_dict() for m in history], "user_id": args.user_id}


def register(registry) -> None:
    for descriptor, handler in ((CHAT_TOOL, handle_chat), (HISTORY_TOOL, handle_history)):
        registry.register(
            descriptor["name"],
            handler,
            description=descriptor["description"],
            input_schema=descriptor["inputSchema"],
        )
