# Setu
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Tests for the hydration gate."""

from __future__ import annotations

import pytest

from setu.enforcement.hydration import (
    BASH_BLOCKED,
    SIDE_EFFECT_BLOCKED,
    UNKNOWN_TOOL,
    HydrationGate,
    HydrationState,
    create_hydration_block_message,
    should_block_during_hydration,
)
from setu.enforcement.session import SessionRegistry


class TestShouldBlock:
    @pytest.mark.parametrize(
        "tool",
        ["setu_context", "setu_research", "setu_plan", "read", "glob", "grep", "webfetch", "task", "question", "lsp"],
    )
    def test_allowed_tools(self, tool: str):
        assert should_block_during_hydration(tool, {}).blocked is False

    @pytest.mark.parametrize("command", ["ls -la", "git status", "cat README.md"])
    def test_read_only_bash_allowed(self, command: str):
        assert not should_block_during_hydration("bash", {"command": command})

    def test_mutating_bash_blocked(self):
        result = should_block_during_hydration("bash", {"command": "npm install"})
        assert result.blocked
        assert result.reason == BASH_BLOCKED
        assert result.details == "npm install"

    def test_bash_details_truncated(self):
        command = "touch " + "x" * 100
        result = should_block_during_hydration("bash", {"command": command})
        assert result.details == command[:50]

    @pytest.mark.parametrize("command", [None, 42, ["ls"]])
    def test_bash_invalid_command(self, command):
        result = should_block_during_hydration("bash", {"command": command})
        assert result.reason == BASH_BLOCKED
        assert result.details.startswith("Invalid command type:")

    def test_bash_missing_args(self):
        assert should_block_during_hydration("bash", None).details == "Invalid command type: NoneType"

    @pytest.mark.parametrize("tool", ["write", "edit", "todowrite", "apply_patch", "patch", "multiedit"])
    def test_side_effect_blocked(self, tool: str):
        result = should_block_during_hydration(tool, {"filePath": "a.txt"})
        assert result.reason == SIDE_EFFECT_BLOCKED
        assert result.details == tool

    @pytest.mark.parametrize("tool", ["mcp_deploy", "totally_new_tool", ""])
    def test_unknown_tools_fail_closed(self, tool: str):
        result = should_block_during_hydration(tool, {})
        assert result.blocked
        assert result.reason == UNKNOWN_TOOL
        assert "not recognized" in result.details

    def test_to_dict(self):
        assert should_block_during_hydration("write", {}).to_dict() == {
            "blocked": True,
            "reason": "side_effect_blocked",
            "details": "write",
        }


class TestMessages:
    def test_bash_message(self):
        message = create_hydration_block_message(BASH_BLOCKED)
        assert "setu_context" in message
        assert message.endswith("then explore with read/search.")

    @pytest.mark.parametrize("reason", [SIDE_EFFECT_BLOCKED, UNKNOWN_TOOL, None])
    def test_default_message(self, reason):
        assert create_hydration_block_message(reason).endswith("first to confirm understanding.")


class TestHydrationState:
    def test_confirm_once(self):
        state = HydrationState(session_id="s1")
        assert state.confirmed_at is None
        assert state.confirm() is True
        assert state.context_confirmed
        first = state.confirmed_at
        assert state.confirm() is False
        assert state.confirmed_at == first


class TestHydrationGate:
    def test_blocks_until_confirmed(self):
        gate = HydrationGate(SessionRegistry())
        assert gate.check("s1", "write", {"filePath": "a.txt"}).blocked
        assert gate.confirm("s1") is True
        assert gate.is_confirmed("s1")
        assert not gate.check("s1", "write", {"filePath": "a.txt"})
        assert not gate.check("s1", "mystery_tool", {})

    def test_confirm_is_idempotent(self):
        gate = HydrationGate(SessionRegistry())
        assert gate.confirm("s1") is True
        assert gate.confirm("s1") is False

    def test_sessions_are_isolated(self):
        gate = HydrationGate(SessionRegistry())
        gate.confirm("s1")
        assert gate.check("s2", "edit", {}).blocked

    def test_reset_clears_confirmation(self):
        registry = SessionRegistry()
        gate = HydrationGate(registry)
        gate.confirm("s1")
        registry.reset("s1")
        assert not gate.is_confirmed("s1")
        assert gate.check("s1", "edit", {}).blocked
