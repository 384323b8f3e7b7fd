# Setu
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of Setu.
#
# Setu is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""Session-scoped enforcement state.

``SessionRegistry`` owns everything that outlives a single tool call:
the hydration flag, the attempt tracker, the call-rate counter and the
pending hard-safety confirmation of each session. Lifecycle follows
the host's session signals:

    get_or_create  -> first tool call of a session
    reset          -> new session under the same id
    delete         -> session end

``ExistenceCache`` bounds filesystem pressure from gear checks with a
short TTL.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, Optional, TypeVar

from setu.constants import FILE_CACHE_TTL_SECONDS
from setu.enforcement.attempts import DEFAULT_MAX_ATTEMPTS, AttemptTracker
from setu.enforcement.hydration import HydrationState

logger = logging.getLogger("setu.enforcement.session")

T = TypeVar("T")


class SlidingWindowCounter:
    """Thread-safe sliding window counter for rate limiting.

    Tracks call timestamps in a fixed window (default 60 s) and counts
    them to get the current calls-per-window rate.
    """

    def __init__(self, window_seconds: float = 60.0, clock: Callable[[], float] = time.time) -> None:
        self._window = window_seconds
        self._clock = clock
        self._timestamps: list[float] = []
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        cutoff = now - self._window
        self._timestamps = [t for t in self._timestamps if t > cutoff]

    def add(self) -> int:
        """Record a call and return the current count in the window."""
        now = self._clock()
        with self._lock:
            self._prune(now)
            self._timestamps.append(now)
            return len(self._timestamps)

    def count(self) -> int:
        """Return the current count without adding a new entry."""
        now = self._clock()
        with self._lock:
            self._prune(now)
            return len(self._timestamps)

    def reset(self) -> None:
        with self._lock:
            self._timestamps.clear()


class ConfirmationStatus(str, Enum):
    """Answer state of a hard-safety ask."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


def action_fingerprint(tool: str, args: Any) -> str:
    """Stable identity of a tool call: tool name plus key-sorted JSON args."""
    try:
        encoded = json.dumps(args, sort_keys=True, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        encoded = repr(args)
    return f"{tool}:{encoded}"


@dataclass
class PendingConfirmation:
    """A hard-safety ask awaiting the user's one-time answer."""

    fingerprint: str
    reasons: list[str] = field(default_factory=list)
    status: ConfirmationStatus = ConfirmationStatus.PENDING
    requested_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "fingerprint": self.fingerprint,
            "reasons": list(self.reasons),
            "status": self.status.value,
            "requested_at": self.requested_at,
        }


@dataclass
class SessionState:
    """Mutable state of one agent session."""

    session_id: str
    hydration: HydrationState
    attempts: AttemptTracker
    rate_counter: SlidingWindowCounter = field(default_factory=SlidingWindowCounter)
    created_at: float = field(default_factory=time.time)
    confirmation: Optional[PendingConfirmation] = None


class SessionRegistry:
    """Thread-safe map of session id -> ``SessionState``."""

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self._max_attempts = max_attempts
        self._sessions: dict[str, SessionState] = {}
        self._lock = threading.Lock()

    def _new_state(self, session_id: str) -> SessionState:
        return SessionState(
            session_id=session_id,
            hydration=HydrationState(session_id=session_id),
            attempts=AttemptTracker(max_attempts=self._max_attempts),
        )

    def get(self, session_id: str) -> Optional[SessionState]:
        with self._lock:
            return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> SessionState:
        with self._lock:
            state = self._sessions.get(session_id)
            if state is None:
                state = self._new_state(session_id)
                self._sessions[session_id] = state
                logger.debug("Session %s created", session_id)
            return state

    def reset(self, session_id: str) -> SessionState:
        """Replace any existing state for *session_id* with a fresh one."""
        with self._lock:
            state = self._new_state(session_id)
            self._sessions[session_id] = state
        logger.debug("Session %s reset", session_id)
        return state

    def delete(self, session_id: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.debug("Session %s deleted", session_id)
        return removed

    def confirm_hydration(self, session_id: str) -> bool:
        """Confirm context under the registry lock. True on first confirmation."""
        with self._lock:
            return self._state_locked(session_id).hydration.confirm()

    # ------------------------------------------------------------------
    # One-time hard-safety confirmation
    # ------------------------------------------------------------------

    def _state_locked(self, session_id: str) -> SessionState:
        state = self._sessions.get(session_id)
        if state is None:
            state = self._new_state(session_id)
            self._sessions[session_id] = state
        return state

    def request_confirmation(self, session_id: str, fingerprint: str, reasons: list[str]) -> PendingConfirmation:
        """Replace any earlier confirmation with a new pending one."""
        with self._lock:
            pending = PendingConfirmation(fingerprint=fingerprint, reasons=list(reasons))
            self._state_locked(session_id).confirmation = pending
        logger.debug("Session %s awaiting confirmation of %s", session_id, fingerprint)
        return pending

    def _answer(self, session_id: str, fingerprint: str, status: ConfirmationStatus) -> bool:
        with self._lock:
            state = self._sessions.get(session_id)
            pending = state.confirmation if state is not None else None
            if pending is None or pending.fingerprint != fingerprint:
                return False
            pending.status = status
        logger.info("Session %s confirmation %s", session_id, status.value)
        return True

    def approve_confirmation(self, session_id: str, fingerprint: str) -> bool:
        """Approve the pending action once. False if nothing matches."""
        return self._answer(session_id, fingerprint, ConfirmationStatus.APPROVED)

    def deny_confirmation(self, session_id: str, fingerprint: str) -> bool:
        return self._answer(session_id, fingerprint, ConfirmationStatus.DENIED)

    def consume_confirmation(self, session_id: str, fingerprint: str) -> Optional[ConfirmationStatus]:
        """Status of the confirmation matching *fingerprint*, or None.

        An approval is used up by this call; pending and denied entries
        stay in place.
        """
        with self._lock:
            state = self._sessions.get(session_id)
            pending = state.confirmation if state is not None else None
            if pending is None or pending.fingerprint != fingerprint:
                return None
            if pending.status == ConfirmationStatus.APPROVED:
                state.confirmation = None
            return pending.status

    def clear_confirmation(self, session_id: str) -> None:
        with self._lock:
            state = self._sessions.get(session_id)
            if state is not None:
                state.confirmation = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()


class ExistenceCache(Generic[T]):
    """Key -> value cache whose entries expire after ``ttl_seconds``.

    A TTL of 0 disables caching: every ``get`` recomputes.
    """

    def __init__(self, ttl_seconds: float = FILE_CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, T]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, compute: Callable[[], T]) -> T:
        now = self._clock()
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None and now - cached[0] < self._ttl:
                return cached[1]
        value = compute()
        if self._ttl > 0:
            with self._lock:
                self._entries[key] = (now, value)
        return value

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one key, or every key when *key* is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)
