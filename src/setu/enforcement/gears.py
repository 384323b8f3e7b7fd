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
"""Workflow gears: scout -> architect -> builder.

The gear is never stored. It is derived on every call from two
artifacts in the private workflow directory:

    no RESEARCH.md              -> scout      (read and explore)
    RESEARCH.md, no PLAN.md     -> architect  (write to .setu/ only)
    RESEARCH.md and PLAN.md     -> builder    (everything)

Deleting RESEARCH.md mid-session drops the project back to scout.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from setu.constants import (
    PLAN_ARTIFACT,
    PRIVATE_DIR,
    RESEARCH_ARTIFACT,
    SCOUT_WORKFLOW_TOOLS,
    is_side_effect_tool,
    is_workflow_tool,
)
from setu.enforcement.capability import CapabilityRegistry, ToolCapability, classify_tool_capability
from setu.enforcement.commands import is_read_only_bash_command
from setu.security.path_validation import extract_path_arg, validate_private_dir_path

logger = logging.getLogger("setu.enforcement.gears")

SCOUT_BLOCKED = "scout_blocked"
ARCHITECT_BLOCKED = "architect_blocked"
UNKNOWN_GEAR = "unknown_gear"


class Gear(str, Enum):
    SCOUT = "scout"
    ARCHITECT = "architect"
    BUILDER = "builder"


@dataclass
class GearState:
    current: Gear
    research: bool
    plan: bool
    determined_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "current": self.current.value,
            "artifacts": {"research": self.research, "plan": self.plan},
            "determined_at": self.determined_at,
        }


@dataclass
class GearBlockResult:
    blocked: bool
    gear: Gear
    reason: Optional[str] = None
    details: Optional[str] = None

    def __bool__(self):
        return self.blocked

    def to_dict(self) -> dict[str, Any]:
        return {
            "blocked": self.blocked,
            "gear": self.gear.value,
            "reason": self.reason,
            "details": self.details,
        }


def determine_gear(project_root: Path | str) -> GearState:
    """Derive the gear from artifact existence. Not cached."""
    private = Path(project_root) / PRIVATE_DIR
    research = (private / RESEARCH_ARTIFACT).exists()
    plan = (private / PLAN_ARTIFACT).exists()

    if not research:
        current = Gear.SCOUT
    elif not plan:
        current = Gear.ARCHITECT
    else:
        current = Gear.BUILDER

    return GearState(current=current, research=research, plan=plan)


def parse_gear(value: Any) -> Optional[Gear]:
    """``Gear`` for a recognised value, None otherwise."""
    try:
        return Gear(value)
    except (ValueError, TypeError):
        return None


def _is_read_only_bash(tool: str, args: dict[str, Any]) -> bool:
    if tool != "bash":
        return False
    command = args.get("command")
    return isinstance(command, str) and is_read_only_bash_command(command)


def _scout_allows(tool: str, args: dict[str, Any], registry: CapabilityRegistry | None) -> bool:
    if tool in SCOUT_WORKFLOW_TOOLS:
        return True
    if classify_tool_capability(tool, args, registry).final is ToolCapability.READ_ONLY:
        return True
    return _is_read_only_bash(tool, args)


def should_block(
    gear: Any,
    tool: str,
    args: Any = None,
    registry: CapabilityRegistry | None = None,
    project_root: Path | str | None = None,
) -> GearBlockResult:
    """Check *tool* against the restrictions of *gear*.

    Args:
        gear: ``Gear`` or its string value. Anything else fails closed.
        tool: Tool name.
        args: Tool arguments.
        registry: Capability registry (default: built-in).
        project_root: When given, architect writes must land in this
            project's ``.setu/``.
    """
    if not isinstance(args, dict):
        args = {}

    current = parse_gear(gear)

    if current is Gear.SCOUT:
        if _scout_allows(tool, args, registry):
            return GearBlockResult(blocked=False, gear=current)
        return GearBlockResult(
            blocked=True,
            gear=current,
            reason=SCOUT_BLOCKED,
            details=f"Tool '{tool}' blocked in Scout gear. Create RESEARCH.md first.",
        )

    if current is Gear.ARCHITECT:
        if _scout_allows(tool, args, registry) or is_workflow_tool(tool):
            return GearBlockResult(blocked=False, gear=current)
        if is_side_effect_tool(tool):
            check = validate_private_dir_path(extract_path_arg(args), project_root=project_root)
            if check.valid:
                return GearBlockResult(blocked=False, gear=current)
            logger.debug("Architect write rejected: %s", check.error)
            return GearBlockResult(
                blocked=True,
                gear=current,
                reason=ARCHITECT_BLOCKED,
                details=f"Tool '{tool}' blocked in Architect gear. Only {PRIVATE_DIR}/ writes allowed until PLAN.md exists.",
            )
        return GearBlockResult(
            blocked=True,
            gear=current,
            reason=ARCHITECT_BLOCKED,
            details=f"Tool '{tool}' blocked in Architect gear. Only Setu or read-only tools are allowed.",
        )

    if current is Gear.BUILDER:
        return GearBlockResult(blocked=False, gear=current)

    logger.warning("Unknown gear %r; blocking by default", gear)
    return GearBlockResult(
        blocked=True,
        gear=Gear.SCOUT,
        reason=UNKNOWN_GEAR,
        details=f"Gear '{gear}' is not recognized. Blocking by default. [received_gear={gear}]",
    )


def create_gear_block_message(result: GearBlockResult) -> str:
    """Phase-appropriate guidance for a gear block."""
    if result.reason == UNKNOWN_GEAR:
        return "Wait: Return to Scout gear and re-establish workflow artifacts."
    if result.gear is Gear.SCOUT:
        return 'Wait: Call setu_research({ task: "...", summary: "..." }) first to document findings and advance.'
    if result.gear is Gear.ARCHITECT:
        return 'Wait: Call setu_plan({ objective: "...", steps: "..." }) first, then ask user "Ready?".'
    return ""
