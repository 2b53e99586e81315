from __future__ import annotations

import logging
import threading
from typing import Optional

from storage import StorageError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 3600


class SessionCleanup:
    """Purges expired sessions from the store on a fixed interval.

    Runs in its own daemon thread, independent of request handling. A failed
    pass is logged and the loop keeps going; `stop()` wakes the thread and
    waits for it to exit.
    """

    def __init__(self, store, interval_seconds: int = DEFAULT_INTERVAL_SECONDS) -> None:
        self.store = store
        self.interval_seconds = interval_seconds if interval_seconds > 0 else DEFAULT_INTERVAL_SECONDS
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="session-cleanup", daemon=True)
        self._thread.start()
        logger.info("Session cleanup started (interval=%ss)", self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> int:
        try:
            return self.store.cleanup_expired_sessions()
        except StorageError as e:
            logger.error("Error cleaning up sessions: %s", e)
            return 0

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("Unexpected error in session cleanup")
