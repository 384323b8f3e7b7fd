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
"""Hydration gate: no side effects until context is confirmed.

Until the agent calls ``setu_context`` in a session, only exploration
is allowed: workflow tools, read-only tools, a short known-safe list
and read-only shell commands. Side-effect tools are blocked, and so is
every tool the gate does not recognise.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from setu.constants import is_known_safe_tool, is_read_only_tool, is_side_effect_tool, is_workflow_tool
from setu.enforcement.commands import is_read_only_bash_command

if TYPE_CHECKING:
    from setu.enforcement.session import SessionRegistry

logger = logging.getLogger("setu.enforcement.hydration")

BASH_BLOCKED = "bash_blocked"
SIDE_EFFECT_BLOCKED = "side_effect_blocked"
UNKNOWN_TOOL = "unknown_tool"

_COMMAND_PREVIEW = 50


@dataclass
class HydrationState:
    """Per-session context confirmation flag."""

    session_id: str
    context_confirmed: bool = False
    started_at: float = field(default_factory=time.time)
    confirmed_at: Optional[float] = None

    def confirm(self) -> bool:
        """Mark context confirmed. Returns False if it already was."""
        if self.context_confirmed:
            return False
        self.context_confirmed = True
        self.confirmed_at = time.time()
        return True


@dataclass
class HydrationBlockResult:
    blocked: bool
    reason: Optional[str] = None
    details: Optional[str] = None

    def __bool__(self):
        return self.blocked

    def to_dict(self) -> dict[str, Any]:
        return {"blocked": self.blocked, "reason": self.reason, "details": self.details}


_ALLOWED = HydrationBlockResult(blocked=False)


def should_block_during_hydration(tool: str, args: Any = None) -> HydrationBlockResult:
    """Decide whether *tool* is blocked while context is unconfirmed.

    Fail closed: a tool that matches none of the allow rules is blocked
    with ``unknown_tool``.
    """
    if not isinstance(args, dict):
        args = {}

    if is_workflow_tool(tool) or is_read_only_tool(tool) or is_known_safe_tool(tool):
        return HydrationBlockResult(blocked=False)

    if tool == "bash":
        command = args.get("command")
        if not isinstance(command, str):
            return HydrationBlockResult(
                blocked=True,
                reason=BASH_BLOCKED,
                details=f"Invalid command type: {type(command).__name__}",
            )
        if is_read_only_bash_command(command):
            return HydrationBlockResult(blocked=False)
        return HydrationBlockResult(blocked=True, reason=BASH_BLOCKED, details=command[:_COMMAND_PREVIEW])

    if is_side_effect_tool(tool):
        return HydrationBlockResult(blocked=True, reason=SIDE_EFFECT_BLOCKED, details=tool)

    logger.debug("Unknown tool '%s' blocked during hydration (fail-closed)", tool)
    return HydrationBlockResult(
        blocked=True,
        reason=UNKNOWN_TOOL,
        details=f"Tool '{tool}' not recognized. Register it as a known-safe tool if it has no side effects.",
    )


def create_hydration_block_message(reason: Optional[str] = None) -> str:
    """Guidance shown to the agent when hydration blocks a call."""
    if reason == BASH_BLOCKED:
        return 'Wait: Call setu_context({ summary: "...", task: "..." }) first, then explore with read/search.'
    return 'Wait: Call setu_context({ summary: "...", task: "..." }) first to confirm understanding.'


class HydrationGate:
    """Stateful hydration gate backed by a ``SessionRegistry``."""

    def __init__(self, registry: SessionRegistry):
        self._registry = registry

    def is_confirmed(self, session_id: str) -> bool:
        return self._registry.get_or_create(session_id).hydration.context_confirmed

    def check(self, session_id: str, tool: str, args: Any = None) -> HydrationBlockResult:
        if self.is_confirmed(session_id):
            return _ALLOWED
        result = should_block_during_hydration(tool, args)
        if result.blocked:
            logger.warning("Hydration blocked %s in session %s: %s", tool, session_id, result.reason)
        return result

    def confirm(self, session_id: str) -> bool:
        """Confirm context for *session_id*. Returns True on the first call only."""
        changed = self._registry.confirm_hydration(session_id)
        if changed:
            logger.info("Context confirmed for session %s", session_id)
        return changed
