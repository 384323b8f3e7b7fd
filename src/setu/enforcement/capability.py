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
"""Tool capability classification.

Every tool call is classified as ``read_only``, ``mutating``,
``orchestration`` or ``unknown``. Tools declare their capability in a
``CapabilityRegistry``; tools nobody declared fall back to a narrow
argument-shape heuristic. Precedence is fixed:

1. declared orchestration
2. declared mutating, or a mutating argument shape
3. declared read-only, or a read-only name hint with read-only arguments
4. unknown

An advisory pass may then escalate a decision to ``unknown``. It never
lowers risk.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from setu.constants import READ_ONLY_TOOLS, SIDE_EFFECT_TOOLS

logger = logging.getLogger("setu.enforcement.capability")


class ToolCapability(str, Enum):
    READ_ONLY = "read_only"
    MUTATING = "mutating"
    ORCHESTRATION = "orchestration"
    UNKNOWN = "unknown"


DETERMINISTIC_ONLY = "deterministic_only"
ADVISORY_ESCALATION = "advisory_escalation"

MUTATING_ARG_KEYS = frozenset({"content", "newString", "patchText", "todos", "command"})
MUTATING_ACTIONS = frozenset({"create", "update", "delete", "clear"})

READ_ONLY_ARG_KEYS = frozenset({
    "query", "url", "urls", "pattern", "path", "include", "filter",
    "limit", "offset", "filePath", "file_path", "dir_path",
    "repo_name", "repoName", "libraryName", "libraryId",
    "thinking", "format", "formats", "sources", "prompt", "schema",
})

READ_ONLY_NAME_HINT = re.compile(r"(read|search|query|fetch|get|scrape|map|crawl|status|wiki|doc)", re.IGNORECASE)

_CORE_ORCHESTRATION = frozenset({
    "setu_research", "setu_plan", "setu_verify", "setu_context",
    "setu_reset", "setu_feedback", "setu_doctor", "task",
})
# setu_task writes the active task record
_CORE_MUTATING = SIDE_EFFECT_TOOLS | {"bash", "setu_task"}


@dataclass
class CapabilityDecision:
    """Deterministic and advisory verdicts and the one that was applied."""

    deterministic: ToolCapability
    advisory: Optional[ToolCapability]
    final: ToolCapability
    source: str  # "deterministic_only" | "advisory_escalation"

    def to_dict(self) -> dict[str, Any]:
        return {
            "deterministic": self.deterministic.value,
            "advisory": self.advisory.value if self.advisory else None,
            "final": self.final.value,
            "source": self.source,
        }


class CapabilityRegistry:
    """Declared capability tags per tool name.

    Plugins declare their tools with ``register()``; a tool can only
    carry one tag. Reads and writes are guarded by a lock.
    """

    def __init__(self, declarations: dict[str, ToolCapability] | None = None):
        self._tags: dict[str, ToolCapability] = {}
        self._lock = threading.Lock()
        for tool, capability in (declarations or {}).items():
            self.register(tool, capability)

    @classmethod
    def default(cls) -> CapabilityRegistry:
        """Registry pre-populated with the built-in tool classifications."""
        registry = cls()
        for tool in _CORE_ORCHESTRATION:
            registry.register(tool, ToolCapability.ORCHESTRATION)
        for tool in _CORE_MUTATING:
            registry.register(tool, ToolCapability.MUTATING)
        for tool in READ_ONLY_TOOLS:
            registry.register(tool, ToolCapability.READ_ONLY)
        return registry

    def register(self, tool: str, capability: ToolCapability | str) -> None:
        capability = ToolCapability(capability)
        if capability is ToolCapability.UNKNOWN:
            raise ValueError(f"Cannot declare tool '{tool}' as unknown")
        with self._lock:
            previous = self._tags.get(tool)
            self._tags[tool] = capability
        if previous is not None and previous is not capability:
            logger.info("Capability of tool '%s' changed: %s -> %s", tool, previous.value, capability.value)

    def unregister(self, tool: str) -> None:
        with self._lock:
            self._tags.pop(tool, None)

    def declared(self, tool: str) -> Optional[ToolCapability]:
        with self._lock:
            return self._tags.get(tool)

    def __contains__(self, tool: str) -> bool:
        return self.declared(tool) is not None

    def classify(self, tool: str, args: Any) -> CapabilityDecision:
        """Classify one tool call. Total: never raises for odd input."""
        if not isinstance(args, dict):
            args = {}
        if not isinstance(tool, str):
            tool = ""

        deterministic = self._deterministic(tool, args)
        advisory = _advisory(tool, args, deterministic)

        if advisory is ToolCapability.UNKNOWN and deterministic is not ToolCapability.UNKNOWN:
            logger.debug("Capability of '%s' escalated %s -> unknown", tool, deterministic.value)
            return CapabilityDecision(
                deterministic=deterministic,
                advisory=advisory,
                final=ToolCapability.UNKNOWN,
                source=ADVISORY_ESCALATION,
            )

        return CapabilityDecision(
            deterministic=deterministic,
            advisory=advisory,
            final=deterministic,
            source=DETERMINISTIC_ONLY,
        )

    def _deterministic(self, tool: str, args: dict[str, Any]) -> ToolCapability:
        declared = self.declared(tool)

        if declared is ToolCapability.ORCHESTRATION:
            return ToolCapability.ORCHESTRATION

        if declared is ToolCapability.MUTATING or has_mutating_shape(args):
            return ToolCapability.MUTATING

        if declared is ToolCapability.READ_ONLY or has_read_only_shape(tool, args):
            return ToolCapability.READ_ONLY

        return ToolCapability.UNKNOWN


def has_mutating_shape(args: dict[str, Any]) -> bool:
    """Fallback: argument keys or an ``action`` value that imply a write."""
    if any(key in MUTATING_ARG_KEYS for key in args):
        return True
    action = args.get("action")
    return isinstance(action, str) and action.lower() in MUTATING_ACTIONS


def has_read_only_shape(tool: str, args: dict[str, Any]) -> bool:
    """Fallback: a read-ish tool name whose arguments are all lookup keys."""
    if not READ_ONLY_NAME_HINT.search(tool):
        return False
    if has_mutating_shape(args):
        return False
    return all(key in READ_ONLY_ARG_KEYS for key in args)


def _blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def _advisory(tool: str, args: dict[str, Any], deterministic: ToolCapability) -> Optional[ToolCapability]:
    if deterministic is ToolCapability.UNKNOWN:
        return None
    if tool == "bash" and _blank(args.get("command")):
        return ToolCapability.UNKNOWN
    if tool in ("write", "edit") and _blank(args.get("filePath", args.get("file_path"))):
        return ToolCapability.UNKNOWN
    return None


_default_registry = CapabilityRegistry.default()


def get_default_registry() -> CapabilityRegistry:
    return _default_registry


def classify_tool_capability(
    tool: str,
    args: Any,
    registry: CapabilityRegistry | None = None,
) -> CapabilityDecision:
    """Classify *tool* with *registry* (default: the built-in registry)."""
    return (registry or _default_registry).classify(tool, args)
