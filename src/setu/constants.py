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
"""Tool classifications and fixed workflow constants.

Every gate imports its tool sets from here so the classifications
cannot drift between the hydration gate, the gearbox and the
capability registry.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Private workflow directory and its artifacts
# ---------------------------------------------------------------------------

PRIVATE_DIR = ".setu"
RESEARCH_ARTIFACT = "RESEARCH.md"
PLAN_ARTIFACT = "PLAN.md"

# ---------------------------------------------------------------------------
# Tool classifications
# ---------------------------------------------------------------------------

# Setu's own tools.
WORKFLOW_TOOLS: frozenset[str] = frozenset({
    "setu_research",
    "setu_plan",
    "setu_task",
    "setu_verify",
    "setu_context",
    "setu_reset",
    "setu_feedback",
    "setu_doctor",
})

# Workflow-authoring tools usable before RESEARCH.md exists.
SCOUT_WORKFLOW_TOOLS: frozenset[str] = frozenset({
    "setu_research",
    "setu_task",
    "setu_context",
    "setu_doctor",
    "setu_feedback",
})

# "Look but don't touch."
READ_ONLY_TOOLS: frozenset[str] = frozenset({"read", "glob", "grep", "webfetch", "todoread"})

# Tools that write files or state directly.
SIDE_EFFECT_TOOLS: frozenset[str] = frozenset({
    "write",
    "edit",
    "todowrite",
    "apply_patch",
    "patch",
    "multiedit",
})

# Non-mutating tools allowed before context is confirmed. ``task`` spawns a
# subagent which goes through its own hydration gate.
KNOWN_SAFE_TOOLS: frozenset[str] = frozenset({"task", "question", "skill", "lsp", "todoread"})

# ---------------------------------------------------------------------------
# Shell command classifications
# ---------------------------------------------------------------------------

READ_ONLY_BASH_COMMANDS: frozenset[str] = frozenset({
    "glob", "ls", "cat", "head", "tail", "grep", "rg", "find",
    "pwd", "echo", "which", "env", "printenv",
    "git status", "git log", "git diff", "git branch", "git show",
    "file", "stat", "wc", "tree", "less", "more",
})

GIT_WRITE_COMMANDS: tuple[str, ...] = (
    "git add", "git commit", "git push", "git pull", "git merge",
    "git rebase", "git reset", "git checkout -b", "git stash",
    "git cherry-pick", "git revert", "git tag", "git branch -d",
    "git branch -D", "git remote add", "git remote remove",
)

# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

# TTL for cached artifact-existence checks
FILE_CACHE_TTL_SECONDS = 5.0


def is_workflow_tool(tool: str) -> bool:
    return tool in WORKFLOW_TOOLS


def is_read_only_tool(tool: str) -> bool:
    return tool in READ_ONLY_TOOLS


def is_side_effect_tool(tool: str) -> bool:
    return tool in SIDE_EFFECT_TOOLS


def is_known_safe_tool(tool: str) -> bool:
    return tool in KNOWN_SAFE_TOOLS
