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
"""Complexity policy engine.

Scores a tool call on five factors (0-5 each) and turns the weighted
sum into ``execute`` (score < 3) or ``ask``. Weights and thresholds are
fixed. A precomputed hard-safety decision always wins.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from setu.constants import PRIVATE_DIR
from setu.enforcement.commands import has_chaining
from setu.enforcement.gears import Gear, parse_gear
from setu.security.safety_classifier import SafetyDecision

EXECUTE = "execute"
ASK = "ask"
BLOCK = "block"

ASK_THRESHOLD = 3.0
SIMPLE_WRITE_DISCOUNT = 0.8

WEIGHTS = {
    "task_scope": 0.30,
    "repo_surface": 0.20,
    "risk_surface": 0.20,
    "uncertainty": 0.15,
    "blast_radius": 0.15,
}

_GIT_REPO_MUTATION = re.compile(r"\bgit\s{1,16}(?:commit|push|rebase|merge|reset|clean)\b", re.IGNORECASE)
_GIT_RISKY = re.compile(r"\bgit\s{1,16}(?:push|reset|clean)\b", re.IGNORECASE)
_GIT_PUSH = re.compile(r"\bgit\s{1,16}push\b", re.IGNORECASE)
_GIT_COMMIT = re.compile(r"\bgit\s{1,16}commit\b", re.IGNORECASE)
_BUILD_OR_TEST = re.compile(r"\b(?:build|test|lint|typecheck)\b", re.IGNORECASE)


@dataclass
class ComplexityFactors:
    task_scope: float
    repo_surface: float
    risk_surface: float
    uncertainty: float
    blast_radius: float

    @classmethod
    def uniform(cls, value: float) -> ComplexityFactors:
        return cls(value, value, value, value, value)

    def weighted_sum(self) -> float:
        return sum(getattr(self, name) * weight for name, weight in WEIGHTS.items())

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass
class PolicyDecision:
    """Final decision for one tool call.

    ``reason`` holds enumerated codes for gate blocks (``scout_blocked``,
    ``traversal`` ...) or the complexity/hard-safety messages;
    ``details`` is free text for humans.
    """

    score: float
    factors: ComplexityFactors
    hard_safety: bool
    action: str  # "execute" | "ask" | "block"
    reason: list[str] = field(default_factory=list)
    details: str = ""

    @property
    def allowed(self) -> bool:
        return self.action == EXECUTE

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "factors": self.factors.to_dict(),
            "hard_safety": self.hard_safety,
            "action": self.action,
            "reason": list(self.reason),
            "details": self.details,
        }


def _clamp(value: float) -> float:
    return max(0.0, min(5.0, value))


def _str_arg(args: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = args.get(key)
        if isinstance(value, str):
            return value
    return ""


def _file_path(args: dict[str, Any]) -> str:
    return _str_arg(args, "filePath", "file_path")


def _in_private_dir(file_path: str) -> bool:
    return file_path.startswith(PRIVATE_DIR + "/")


def is_simple_write(tool: str, args: dict[str, Any]) -> bool:
    if tool not in ("write", "edit"):
        return False
    file_path = _file_path(args)
    if not file_path or _in_private_dir(file_path):
        return True
    return "/" not in file_path


def estimate_task_scope(tool: str, args: dict[str, Any]) -> float:
    if tool == "write":
        length = len(_str_arg(args, "content"))
        if length <= 200:
            return 1.0
        if length <= 1500:
            return 2.0
        return 3.5
    if tool == "edit":
        return 2.5
    if tool == "bash":
        command = _str_arg(args, "command")
        tokens = len(command.split())
        if tokens <= 3:
            return 1.5
        if tokens <= 8:
            return 3.0 if has_chaining(command) else 2.5
        return 4.0
    return 1.0


def estimate_repo_surface(tool: str, args: dict[str, Any]) -> float:
    if tool in ("write", "edit"):
        file_path = _file_path(args)
        if not file_path or _in_private_dir(file_path):
            return 0.5
        if "/" in file_path:
            return 1.5
        return 1.0
    if tool == "bash":
        command = _str_arg(args, "command")
        if _GIT_REPO_MUTATION.search(command):
            return 4.0
        if _BUILD_OR_TEST.search(command):
            return 2.8 if has_chaining(command) else 2.0
        return 1.5
    return 1.0


def estimate_risk_surface(tool: str, args: dict[str, Any]) -> float:
    if tool == "bash":
        command = _str_arg(args, "command")
        if _GIT_RISKY.search(command):
            return 5.0
        if _BUILD_OR_TEST.search(command):
            return 3.0 if has_chaining(command) else 2.5
        return 2.0
    if tool == "edit":
        return 2.5
    if tool == "write":
        return 1.5
    return 1.0


def estimate_uncertainty(gear: Optional[Gear], has_active_task: bool) -> float:
    if gear is Gear.BUILDER and has_active_task:
        return 0.5
    if gear is Gear.ARCHITECT:
        return 1.5
    return 2.5


def estimate_blast_radius(tool: str, args: dict[str, Any]) -> float:
    if tool == "bash":
        command = _str_arg(args, "command")
        if _GIT_PUSH.search(command):
            return 5.0
        if _GIT_COMMIT.search(command):
            return 4.0
        if _BUILD_OR_TEST.search(command):
            return 3.0 if has_chaining(command) else 2.0
        return 2.5
    if tool == "edit":
        return 2.5
    if tool == "write":
        return 1.5
    return 1.0


def evaluate_policy_decision(
    tool: str,
    args: Any,
    gear: Any,
    has_active_task: bool = False,
    hard_safety: Optional[SafetyDecision] = None,
) -> PolicyDecision:
    """Score *tool* and decide ``execute`` or ``ask``.

    A *hard_safety* decision that triggered is returned as-is (its
    action and messages) with every factor saturated; this engine never
    relaxes hard safety.
    """
    if hard_safety is not None and hard_safety.hard_safety:
        return PolicyDecision(
            score=5.0,
            factors=ComplexityFactors.uniform(5.0),
            hard_safety=True,
            action=hard_safety.action or ASK,
            reason=hard_safety.messages,
        )

    if not isinstance(args, dict):
        args = {}
    current = parse_gear(gear)

    if current is Gear.BUILDER and has_active_task:
        return PolicyDecision(
            score=1.0,
            factors=ComplexityFactors.uniform(1.0),
            hard_safety=False,
            action=EXECUTE,
            reason=["Active builder execution context"],
        )

    factors = ComplexityFactors(
        task_scope=_clamp(estimate_task_scope(tool, args)),
        repo_surface=_clamp(estimate_repo_surface(tool, args)),
        risk_surface=_clamp(estimate_risk_surface(tool, args)),
        uncertainty=_clamp(estimate_uncertainty(current, has_active_task)),
        blast_radius=_clamp(estimate_blast_radius(tool, args)),
    )

    score = factors.weighted_sum()
    if is_simple_write(tool, args):
        score -= SIMPLE_WRITE_DISCOUNT
    score = _clamp(round(score, 2))

    if score < ASK_THRESHOLD:
        return PolicyDecision(score, factors, False, EXECUTE, ["Low complexity request"])
    return PolicyDecision(score, factors, False, ASK, ["Higher complexity request"])
