from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import requests
from requests.adapters import HTTPAdapter

from core.context_manager import ContextManager, HistoryEntry
from observability.metrics import record_provider_result

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000
DEFAULT_TIMEOUT = 30.0


class CompletionError(Exception):
    """Raised for any failed or unusable chat completion."""


class CompletionClient:
    """Client for an OpenAI-compatible `/chat/completions` endpoint (Grok by default).

    One request per call: no retries, a fixed timeout, and every failure
    raised as CompletionError so callers can fall back uniformly.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        timeout: float = DEFAULT_TIMEOUT,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        session: Optional[requests.Session] = None,
        context: Optional[ContextManager] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.context = context or ContextManager()
        self.session = session or self._build_session()

    @staticmethod
    def _build_session() -> requests.Session:
        """Pooled session shared by request threads; retries disabled."""
        session = requests.Session()
        adapter = HTTPAdapter(max_retries=0, pool_connections=10, pool_maxsize=20)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def build_payload(self, window: Sequence[Dict[str, str]]) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": list(window),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": False,
        }

    def complete(self, window: Sequence[Dict[str, str]]) -> str:
        """Send a conversation window and return the first choice's text."""
        start = time.time()
        try:
            text = self._request(window)
        except CompletionError:
            record_provider_result(False, time.time() - start)
            raise
        record_provider_result(True, time.time() - start)
        return text

    def _request(self, window: Sequence[Dict[str, str]]) -> str:
        url = f"{self.base_url}/chat/completions"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        try:
            response = self.session.post(
                url, json=self.build_payload(window), headers=headers, timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise CompletionError(f"request timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise CompletionError(f"failed to make request: {e}") from e

        if response.status_code != 200:
            raise CompletionError(self._error_message(response))

        try:
            data = response.json()
        except ValueError as e:
            raise CompletionError(f"failed to decode response: {e}") from e

        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise CompletionError("no response choices returned from the completion API")
        first = choices[0] if isinstance(choices[0], dict) else {}
        message = first.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content:
            raise CompletionError("completion choice has no text content")
        return content

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
            message = body["error"]["message"]
        except (ValueError, KeyError, TypeError):
            return f"API request failed with status {response.status_code}: {response.text[:200]}"
        return f"API error: {message}"

    def generate_response(self, message: str, history: List[HistoryEntry]) -> str:
        """Build the bounded window for `message` and complete it."""
        return self.complete(self.context.build_window(history, message))

    def close(self) -> None:
        self.session.close()
