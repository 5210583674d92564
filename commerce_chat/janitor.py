from __future__ import annotations

import logging
import threading
from typing import Optional

from .context_manager import ContextManager

logger = logging.getLogger("commerce_chat.janitor")


class SessionJanitor:
    """Background sweeper that deletes expired sessions on a fixed interval."""

    def __init__(self, contexts: ContextManager, interval_sec: float) -> None:
        """Purpose: Configure the sweeper without starting it.
        Inputs/Outputs: Inputs are the ContextManager and sweep interval; no return value.
        Side Effects / State: Creates the stop event; no thread yet.
        Dependencies: ContextManager.cleanup_expired_sessions.
        Failure Modes: None at init.
        If Removed: Expired sessions accumulate in the sessions file forever.
        Testing Notes: interval_sec <= 0 means start() is a no-op.
        """
        # The thread is created lazily in start().
        self._contexts = contexts
        self._interval = interval_sec
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def enabled(self) -> bool:
        return self._interval > 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if not self.enabled:
            logger.info("session janitor disabled")
            return
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="session-janitor", daemon=True)
        self._thread.start()
        logger.info("session janitor started interval=%ss", self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("session janitor stopped")

    def sweep(self) -> int:
        """Run one cleanup pass; errors are logged and the count is 0."""
        try:
            removed = self._contexts.cleanup_expired_sessions()
        except Exception:
            logger.exception("session janitor sweep failed")
            return 0
        logger.debug("session janitor sweep removed=%d", removed)
        return removed

    def _loop(self) -> None:
        # Event.wait doubles as the sleep so stop() interrupts it immediately.
        while not self._stop.wait(self._interval):
            self.sweep()
