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
"""Attempt tracking with gear-shift suggestions.

Stops retry loops: after ``max_attempts`` failed approaches on one task
the agent is told to go back and revise RESEARCH.md / PLAN.md instead
of trying again.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger("setu.enforcement.attempts")

DEFAULT_MAX_ATTEMPTS = 3

# Failed approaches are handed to the persistence callback from this attempt on.
PERSIST_AFTER_ATTEMPTS = 2


@dataclass
class Approach:
    description: str
    succeeded: bool
    timestamp: float = field(default_factory=time.time)


@dataclass
class AttemptState:
    task_id: str
    max_attempts: int
    attempts: int = 0
    approaches: list[Approach] = field(default_factory=list)

    @property
    def failed(self) -> list[Approach]:
        return [a for a in self.approaches if not a.succeeded]

    @property
    def succeeded(self) -> list[Approach]:
        return [a for a in self.approaches if a.succeeded]


class AttemptTracker:
    """Per-session record of approaches tried for each task."""

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        on_failed_approach: Optional[Callable[[str], None]] = None,
    ):
        self._max_attempts = max_attempts
        self._on_failed_approach = on_failed_approach
        self._states: dict[str, AttemptState] = {}
        self._lock = threading.Lock()

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def record_attempt(self, task_id: str, approach: str, succeeded: bool) -> int:
        """Record one attempt and return the task's attempt count."""
        with self._lock:
            state = self._states.setdefault(
                task_id, AttemptState(task_id=task_id, max_attempts=self._max_attempts)
            )
            state.attempts += 1
            state.approaches.append(Approach(description=approach, succeeded=succeeded))
            count = state.attempts

        if not succeeded and count >= PERSIST_AFTER_ATTEMPTS and self._on_failed_approach:
            self._on_failed_approach(approach)
            logger.debug("Recorded failed approach %r for task %s", approach, task_id)

        return count

    def get_state(self, task_id: str) -> Optional[AttemptState]:
        with self._lock:
            return self._states.get(task_id)

    def should_suggest_gear_shift(self, task_id: str) -> bool:
        state = self.get_state(task_id)
        if state is None:
            return False
        return len(state.failed) >= state.max_attempts

    def gear_shift_message(self, task_id: str) -> str:
        state = self.get_state(task_id)
        if state is None:
            return ""
        failed = "\n".join(f"- {a.description}" for a in state.failed)
        return (
            f"After {state.attempts} attempts, consider shifting gear:\n"
            "- Use `setu_research` to update RESEARCH.md with learnings\n"
            "- Use `setu_plan` to revise PLAN.md with new approach\n"
            "\n"
            f"Failed approaches:\n{failed}"
        )

    def learnings(self, task_id: str) -> str:
        """Markdown section of what worked and what failed, for RESEARCH.md."""
        state = self.get_state(task_id)
        if state is None:
            return ""
        worked = "\n".join(f"- {a.description}" for a in state.succeeded) or "- (none yet)"
        failed = "\n".join(f"- {a.description}" for a in state.failed) or "- (none yet)"
        return f"### What Worked\n{worked}\n\n### What Failed\n{failed}"

    def reset(self, task_id: str) -> None:
        with self._lock:
            self._states.pop(task_id, None)

    def clear_all(self) -> None:
        with self._lock:
            self._states.clear()
