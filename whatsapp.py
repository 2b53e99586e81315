from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests

from storage import StorageError

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.facebook.com/v18.0"


class WhatsAppError(Exception):
    """Raised when an outbound WhatsApp call cannot be made or is rejected."""


@dataclass(frozen=True)
class InboundMessage:
    sender: str
    message_id: str
    text: str
    contact_name: str
    timestamp: str
    type: str


def _message_text(message: Dict[str, Any]) -> str:
    text = message.get("text")
    if isinstance(text, dict):
        return str(text.get("body") or "")
    return str(text or "")


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _contact_name(contacts: List[Any], sender: str) -> str:
    for contact in contacts:
        if isinstance(contact, dict) and contact.get("wa_id") == sender:
            return str(_as_dict(contact.get("profile")).get("name") or "")
    return ""


def extract_messages(payload: Dict[str, Any]) -> List[InboundMessage]:
    """Pull the inbound messages out of a webhook payload, paired with contact names.

    Parts of the payload with an unexpected shape are skipped.
    """
    inbound: List[InboundMessage] = []
    for entry in _as_list(payload.get("entry")):
        for change in _as_list(_as_dict(entry).get("changes")):
            change = _as_dict(change)
            if change.get("field") != "messages":
                continue
            value = _as_dict(change.get("value"))
            contacts = _as_list(value.get("contacts"))
            for message in _as_list(value.get("messages")):
                if not isinstance(message, dict):
                    continue
                sender = str(message.get("from") or "")
                inbound.append(
                    InboundMessage(
                        sender=sender,
                        message_id=str(message.get("id") or ""),
                        text=_message_text(message),
                        contact_name=_contact_name(contacts, sender),
                        timestamp=str(message.get("timestamp") or ""),
                        type=str(message.get("type") or ""),
                    )
                )
    return inbound


class WhatsAppHandler:
    """WhatsApp Business API webhook and send client.

    Inbound messages upsert the sender and are handed to `message_sink`
    when one is given; nothing routes them into the chat tool by default.
    """

    def __init__(
        self,
        verify_token: str,
        access_token: str = "",
        phone_number_id: str = "",
        store=None,
        message_sink: Optional[Callable[[InboundMessage], None]] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.verify_token = verify_token
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.store = store
        self.message_sink = message_sink
        self.session = session or requests.Session()
        self.timeout = timeout

    def verify_webhook(self, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
        """Return the challenge to echo back, or None when verification fails."""
        if mode == "subscribe" and self.verify_token and token == self.verify_token:
            logger.info("Webhook verified successfully")
            return challenge or ""
        logger.warning("Webhook verification failed")
        return None

    def handle_webhook(self, payload: Dict[str, Any]) -> List[InboundMessage]:
        if not isinstance(payload, dict):
            raise ValueError("webhook payload must be a JSON object")
        messages = extract_messages(payload)
        for message in messages:
            self._process_message(message)
        return messages

    def _process_message(self, message: InboundMessage) -> None:
        logger.info("Received message from %s (%s): %s", message.sender, message.contact_name, message.text)
        if self.store is not None and message.sender:
            try:
                self.store.create_or_update_user(message.sender, message.sender, message.contact_name)
            except StorageError as e:
                logger.error("Error recording contact %s: %s", message.sender, e)
        if self.message_sink is not None:
            self.message_sink(message)

    def send_message(self, to: str, body: str) -> str:
        """Send a text message and return the WhatsApp message id."""
        if not self.access_token:
            raise WhatsAppError("WhatsApp access token not configured")

        url = f"{GRAPH_API_URL}/{self.phone_number_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": body},
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.access_token}",
        }
        try:
            response = self.session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise WhatsAppError(f"failed to send request: {e}") from e

        if response.status_code != 200:
            raise WhatsAppError(f"WhatsApp API returned status {response.status_code}")

        try:
            message_id = response.json()["messages"][0]["id"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise WhatsAppError(f"failed to decode response: {e}") from e

        logger.info("Message sent successfully to %s, ID: %s", to, message_id)
        return message_id
