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
"""Hard-safety classification: phase-independent block/ask decisions.

Three fixed, ordered pattern lists:

- destructive  -> block   (irrecoverable: rm -rf, git reset --hard, mkfs ...)
- production   -> ask     (publish, apply, push)
- sensitive    -> ask     (credential and key files)

The action is derived from the structured category, never from the
message text. Every pattern uses bounded quantifiers: the input is
attacker-controlled and must not trigger catastrophic backtracking.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from setu.enforcement.commands import tokenize_shell
from setu.errors import PolicyTableError
from setu.security.path_validation import is_sensitive_file

logger = logging.getLogger("setu.security.safety_classifier")

DESTRUCTIVE = "destructive"
PRODUCTION = "production"
SENSITIVE = "sensitive"

ASK = "ask"
BLOCK = "block"

# Single source of truth for category -> action.
CATEGORY_ACTION: dict[str, str] = {
    DESTRUCTIVE: BLOCK,
    PRODUCTION: ASK,
    SENSITIVE: ASK,
}

CATEGORY_MESSAGE: dict[str, str] = {
    DESTRUCTIVE: "Destructive shell command detected",
    PRODUCTION: "Production-impacting command detected",
    SENSITIVE: "Sensitive file path detected",
}

_PREFIX_ARG = r"(?:-\S{1,32}|[A-Za-z_]\w{0,63}=(?:'[^']{0,256}'|\"[^\"]{0,256}\"|[^\s'\"]{0,256}))"

DESTRUCTIVE_BASH_PATTERNS: tuple[re.Pattern[str], ...] = (
    # rm with recursive/force flags, optionally behind sudo/env/su and
    # VAR=value assignments, or spelled \rm / command rm.
    re.compile(
        r"(?:\b(?:sudo|env|su)\b(?:\s+" + _PREFIX_ARG + r"){0,8}\s+)?"
        r"(?:\\?\brm|\bcommand\s+rm)\b[^\n]{0,500}?"
        r"(?<!\S)(?:-[A-Za-z]{0,16}[rf]|--recursive|--force|--no-preserve-root)",
        re.IGNORECASE,
    ),
    re.compile(r"\bgit\s+reset\s+--hard\b", re.IGNORECASE),
    re.compile(r"\bgit\s+clean\b[^\n]{0,200}?(?<!\S)-[A-Za-z]{0,16}[fdx]", re.IGNORECASE),
    re.compile(r"\bmkfs\b", re.IGNORECASE),
    re.compile(r"\bdd\b\s+if=", re.IGNORECASE),
    # Pipe-to-shell (remote code execution)
    re.compile(
        r"\b(?:curl|wget)\b[^\n]{0,500}\|[^\n]{0,500}\b(?:sudo\s+)?(?:ba|z|da)?sh\b",
        re.IGNORECASE,
    ),
    # Process substitution: sh <(curl ...)
    re.compile(r"\b(?:ba|z|da)?sh\b\s{1,16}<\(\s{0,16}(?:curl|wget)\b", re.IGNORECASE),
)

PRODUCTION_BASH_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bnpm\s+publish\b", re.IGNORECASE),
    re.compile(r"\bpnpm\s+publish\b", re.IGNORECASE),
    re.compile(r"\byarn\s+publish\b", re.IGNORECASE),
    re.compile(r"\bkubectl\s+apply\b", re.IGNORECASE),
    re.compile(r"\bterraform\s+apply\b", re.IGNORECASE),
    re.compile(r"\bdocker\s+push\b", re.IGNORECASE),
    re.compile(r"\bgit\s+push\b", re.IGNORECASE),
)

_TOKEN_SPLIT = re.compile(r"[<>|;&()=]+")
_PATH_PREFIXES = ("/", "./", "../", "~")


@dataclass
class SafetyReason:
    """One matched category and its display message."""

    category: str
    message: str


@dataclass
class SafetyDecision:
    """Result of hard-safety classification.

    ``action`` is only meaningful when ``hard_safety`` is True; it is
    None otherwise so it cannot be mistaken for an allow.
    """

    hard_safety: bool
    action: Optional[str] = None  # "ask" | "block"
    reasons: list[SafetyReason] = field(default_factory=list)

    @property
    def messages(self) -> list[str]:
        return [r.message for r in self.reasons]

    @property
    def categories(self) -> list[str]:
        return [r.category for r in self.reasons]

    def to_dict(self) -> dict[str, Any]:
        return {
            "hard_safety": self.hard_safety,
            "action": self.action,
            "reasons": [{"category": r.category, "message": r.message} for r in self.reasons],
        }


def action_for_category(category: str, strict: bool = False) -> str:
    """Look up the enforcement action for *category*.

    A missing entry is a programming error: fatal in strict mode,
    degraded to ``ask`` (never allow) otherwise.
    """
    action = CATEGORY_ACTION.get(category)
    if action is not None:
        return action
    if strict:
        raise PolicyTableError(category)
    logger.error("No action mapped for safety category '%s'; degrading to ask", category)
    return ASK


def _first_match(patterns: tuple[re.Pattern[str], ...], text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def extract_path_tokens(command: str) -> list[str]:
    """Path-like words from a shell command.

    A word counts if it is absolute, relative (``./``, ``../``), home
    based (``~``), contains a separator, or itself names a sensitive
    file. Words are also split on redirects, pipes and ``=`` so that
    ``cat>.env`` and ``--config=~/.aws/credentials`` are seen.
    """
    paths: list[str] = []
    for token in tokenize_shell(command):
        for piece in _TOKEN_SPLIT.split(token):
            piece = piece.strip()
            if not piece:
                continue
            if piece.startswith(_PATH_PREFIXES) or "/" in piece or "\\" in piece or is_sensitive_file(piece):
                paths.append(piece)
    return paths


def _file_path_arg(args: dict[str, Any]) -> str:
    for key in ("filePath", "file_path"):
        value = args.get(key)
        if isinstance(value, str):
            return value
    return ""


def classify_hard_safety(tool: str, args: Any, strict: bool = False) -> SafetyDecision:
    """Classify a tool call into destructive / production / sensitive.

    Args:
        tool: Tool name (``bash``, ``write``, ``edit`` are inspected).
        args: Tool arguments; anything that is not a dict is treated as empty.
        strict: Fail fast on a category with no mapped action.

    Returns:
        SafetyDecision. ``block`` if any destructive pattern matched,
        ``ask`` if anything else matched, otherwise ``hard_safety=False``.
    """
    if not isinstance(args, dict):
        args = {}

    matched: list[SafetyReason] = []

    if tool == "bash":
        command = args.get("command")
        if not isinstance(command, str):
            command = ""

        if _first_match(DESTRUCTIVE_BASH_PATTERNS, command):
            matched.append(SafetyReason(DESTRUCTIVE, CATEGORY_MESSAGE[DESTRUCTIVE]))

        if _first_match(PRODUCTION_BASH_PATTERNS, command):
            matched.append(SafetyReason(PRODUCTION, CATEGORY_MESSAGE[PRODUCTION]))

        if any(is_sensitive_file(token) for token in extract_path_tokens(command)):
            matched.append(SafetyReason(SENSITIVE, CATEGORY_MESSAGE[SENSITIVE]))

    elif tool in ("write", "edit"):
        if is_sensitive_file(_file_path_arg(args)):
            matched.append(SafetyReason(SENSITIVE, CATEGORY_MESSAGE[SENSITIVE]))

    if not matched:
        return SafetyDecision(hard_safety=False)

    actions = [action_for_category(reason.category, strict=strict) for reason in matched]
    action = BLOCK if BLOCK in actions else ASK

    logger.debug("Hard safety matched for %s: %s -> %s", tool, [r.category for r in matched], action)
    return SafetyDecision(hard_safety=True, action=action, reasons=matched)
