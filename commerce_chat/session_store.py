from __future__ import annotations

import json
import logging
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from .models import SessionRecord, SessionSummary

logger = logging.getLogger("commerce_chat.sessions")

DEFAULT_TTL_SEC = 24 * 60 * 60


class SessionStore:
    """Session storage for chat messages and context, keyed by session_id."""

    def __init__(
        self,
        path: Optional[Path] = None,
        ttl_sec: float = DEFAULT_TTL_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Purpose: Initialize the session store and hydrate from disk if available.
        Inputs/Outputs: Inputs are an optional JSON file path, TTL seconds, and a clock.
        Side Effects / State: Loads sessions into memory; creates the lock registry.
        Dependencies: Calls _load; relies on SessionRecord models.
        Failure Modes: JSON decode errors are logged and leave an empty cache.
        If Removed: Conversations cannot be resumed and context is lost between turns.
        Testing Notes: Use path=None for an isolated in-memory store; inject a clock for TTL.
        """
        # Keep configuration and preload persisted sessions if present.
        self._path = path
        self._ttl_sec = ttl_sec
        self._clock = clock
        self._sessions: Dict[str, SessionRecord] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()
        self._io_lock = threading.Lock()
        self._id_lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        """Purpose: Load persisted session data from disk into memory.
        Inputs/Outputs: Reads from self._path; no return value.
        Side Effects / State: Populates the _sessions cache.
        Dependencies: Uses json.loads and SessionRecord validation.
        Failure Modes: Missing file or JSONDecodeError results in an empty cache.
        If Removed: Previously stored sessions are never restored on startup.
        Testing Notes: Corrupt JSON should not crash; valid JSON should hydrate the cache.
        """
        # Read and decode persisted JSON if present.
        if not self._path or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("sessions file %s is not valid JSON; starting empty", self._path)
            return
        for session_id, raw in (data.get("sessions") or {}).items():
            if isinstance(raw, dict):
                self._sessions[session_id] = SessionRecord(**raw)

    def _persist(self) -> None:
        """Purpose: Persist in-memory sessions to disk.
        Inputs/Outputs: Writes to self._path; no return value.
        Side Effects / State: Writes a JSON file with every session record.
        Dependencies: Uses json.dumps and Path.write_text.
        Failure Modes: IO errors raise exceptions (not caught here).
        If Removed: Messages and context are never saved across restarts.
        Testing Notes: Ensure the file is created and reloads into equal records.
        """
        # Serialize current cache to disk for persistence.
        if not self._path:
            return
        with self._io_lock:
            payload = {
                "sessions": {
                    session_id: record.model_dump() for session_id, record in list(self._sessions.items())
                }
            }
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, default=str), encoding="utf-8")

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        """Purpose: Serialize read-modify-write cycles on one session.
        Inputs/Outputs: Input is session_id; yields while holding that session's lock.
        Side Effects / State: Lazily creates a re-entrant lock per session.
        Dependencies: threading.RLock.
        Failure Modes: None; other sessions are never blocked.
        If Removed: Concurrent turns on one session can lose context updates.
        Testing Notes: Interleave updates from two threads and check no field is lost.
        """
        # Fetch or create the per-session lock, then hold it for the block.
        with self._registry_lock:
            session_lock = self._locks.setdefault(session_id, threading.RLock())
        with session_lock:
            yield

    def now(self) -> float:
        return self._clock()

    def new_session_id(self, user_id: str, now: Optional[float] = None) -> str:
        """Derive a unique id from the owner and creation time (milliseconds).

        Callers that insert the id must hold _id_lock across allocation and insert.
        """
        base = f"{user_id}_{int((self._clock() if now is None else now) * 1000)}"
        candidate = base
        suffix = 1
        while candidate in self._sessions:
            candidate = f"{base}_{suffix}"
            suffix += 1
        return candidate

    def get(self, session_id: str) -> Optional[SessionRecord]:
        """Return the stored record regardless of activity or expiry."""
        return self._sessions.get(session_id)

    def is_live(self, record: SessionRecord) -> bool:
        return record.is_active and record.expires_at > self._clock()

    def find_active(self, session_id: str, user_id: Optional[str] = None) -> Optional[SessionRecord]:
        """Purpose: Look up a session that is active, unexpired, and (optionally) owned by user_id.
        Inputs/Outputs: Inputs are session_id and optional user_id; returns a record or None.
        Side Effects / State: None; expired records are filtered, not deleted.
        Dependencies: Uses is_live and the injected clock.
        Failure Modes: None; mismatched owner returns None.
        If Removed: Sessions could be resumed after expiry or by another user.
        Testing Notes: Advance the clock past expires_at and verify None is returned.
        """
        # Filter by liveness and ownership.
        record = self._sessions.get(session_id)
        if record is None or not self.is_live(record):
            return None
        if user_id is not None and record.user_id != str(user_id):
            return None
        return record

    def save(self, record: SessionRecord) -> SessionRecord:
        """Purpose: Store a record and refresh its sliding expiry.
        Inputs/Outputs: Input is a SessionRecord; returns the same record.
        Side Effects / State: Updates last_active_at/expires_at and writes to disk.
        Dependencies: Uses _persist and the configured TTL.
        Failure Modes: Persist can raise IO errors.
        If Removed: Writes are never kept and expiry never slides forward.
        Testing Notes: Save twice with a moving clock and check expires_at advances.
        """
        # Refresh activity timestamps before writing.
        now = self._clock()
        record.last_active_at = now
        record.expires_at = now + self._ttl_sec
        self._sessions[record.session_id] = record
        self._persist()
        return record

    def create(self, user_id: str, context: Dict[str, object]) -> SessionRecord:
        """Create and persist a fresh session with an empty message log."""
        # Id allocation and insert share one critical section so ids stay unique.
        with self._id_lock:
            now = self._clock()
            record = SessionRecord(
                session_id=self.new_session_id(user_id, now),
                user_id=str(user_id),
                messages=[],
                context=context,
                created_at=now,
                last_active_at=now,
                expires_at=now + self._ttl_sec,
            )
            self._sessions[record.session_id] = record
        self._persist()
        return record

    def list_for_user(self, user_id: str, limit: int = 5) -> List[SessionSummary]:
        """Purpose: Return live session summaries for a user, most recent first.
        Inputs/Outputs: Inputs are user_id and limit; output is a list of SessionSummary.
        Side Effects / State: None.
        Dependencies: Uses is_live and SessionSummary.
        Failure Modes: None; returns empty list if no sessions.
        If Removed: Users cannot list and resume their conversations.
        Testing Notes: Ensure ordering by last_active_at descending and the limit.
        """
        # Sort live sessions by last activity.
        records = [
            record
            for record in self._sessions.values()
            if record.user_id == str(user_id) and self.is_live(record)
        ]
        records.sort(key=lambda r: r.last_active_at, reverse=True)
        summaries = []
        for record in records[:limit]:
            first_user = next((m.content for m in record.messages if m.role == "user"), "")
            title = first_user.strip().splitlines()[0][:48] if first_user.strip() else "New Chat"
            summaries.append(
                SessionSummary(
                    session_id=record.session_id,
                    title=title,
                    message_count=len(record.messages),
                    created_at=record.created_at,
                    last_active_at=record.last_active_at,
                )
            )
        return summaries

    def delete_expired(self) -> int:
        """Purpose: Physically delete sessions whose expires_at has passed.
        Inputs/Outputs: No inputs; returns the number of removed sessions.
        Side Effects / State: Mutates the cache, drops their locks, and persists.
        Dependencies: Uses the injected clock.
        Failure Modes: Persist can raise IO errors.
        If Removed: Expired sessions accumulate forever in the sessions file.
        Testing Notes: Expire one of two sessions and verify only it is removed.
        """
        # Collect expired ids first so the dict is not mutated while iterating.
        now = self._clock()
        expired = [sid for sid, record in self._sessions.items() if record.expires_at < now]
        for session_id in expired:
            self._sessions.pop(session_id, None)
            with self._registry_lock:
                self._locks.pop(session_id, None)
        if expired:
            self._persist()
        return len(expired)
