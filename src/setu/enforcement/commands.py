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
"""Shell command classification.

This is a bounded heuristic, not a shell parser. Callers depend on the
``CommandClassifier`` interface so that a structured (AST-based)
classifier can replace ``HeuristicCommandClassifier`` later.

A command is read-only only when it is a single simple command whose
first one or two words are on a fixed allowlist. Any chaining,
substitution, redirection or newline makes it non-read-only regardless
of what the sub-commands are.
"""

from __future__ import annotations

import logging
import re
import shlex
from abc import ABC, abstractmethod
from typing import Any

from setu.constants import GIT_WRITE_COMMANDS, READ_ONLY_BASH_COMMANDS

logger = logging.getLogger("setu.enforcement.commands")

MAX_READ_ONLY_COMMAND_LENGTH = 2000
MAX_TOKENS = 512

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_SHELL_METACHARACTERS = re.compile(r"(;|&&|\|\||\||`|\$\(|>|<|&|\(|\)|\n|\r)")
_CHAINING = re.compile(r"&&|\|\||;")
_FIND_ACTIONS = frozenset({"-delete", "-exec", "-execdir", "-ok", "-okdir", "-fprint", "-fprintf", "-fls"})
# Run their arguments as a command; read-only only when bare.
_COMMAND_WRAPPERS = frozenset({"env"})
# Options that make an otherwise read-only command write a file.
_WRITING_FLAGS: dict[str, tuple[str, ...]] = {
    "tree": ("-o",),
    "git diff": ("--output",),
    "git log": ("--output",),
    "git show": ("--output",),
}
# `git branch` with anything else creates, renames or deletes a branch.
_GIT_BRANCH_LIST_FLAGS = frozenset({
    "-a", "--all", "-r", "--remotes", "-v", "-vv", "--verbose",
    "--list", "-l", "--show-current",
})


def tokenize_shell(command: Any) -> list[str]:
    """Split a command into words, honouring quotes and backslash escapes.

    Variables are not expanded. Unbalanced quotes fall back to plain
    whitespace splitting; this never raises.
    """
    if not isinstance(command, str) or not command:
        return []
    lexer = shlex.shlex(command, posix=True)
    lexer.whitespace_split = True
    lexer.commenters = ""
    tokens: list[str] = []
    try:
        for token in lexer:
            tokens.append(token)
            if len(tokens) >= MAX_TOKENS:
                break
    except ValueError:
        # No closing quotation / escaped EOF
        tokens = command.split()[:MAX_TOKENS]
    return tokens


def has_chaining(command: str) -> bool:
    return bool(_CHAINING.search(command))


class CommandClassifier(ABC):
    """Decides whether a shell command is free of side effects."""

    @abstractmethod
    def is_read_only(self, command: Any) -> bool:
        """True only if *command* is certainly read-only."""

    def tokenize(self, command: Any) -> list[str]:
        return tokenize_shell(command)


class HeuristicCommandClassifier(CommandClassifier):
    """Allowlist + metacharacter heuristic."""

    def __init__(
        self,
        read_only_commands: frozenset[str] = READ_ONLY_BASH_COMMANDS,
        git_write_commands: tuple[str, ...] = GIT_WRITE_COMMANDS,
    ):
        self._read_only = read_only_commands
        self._git_write = git_write_commands

    def is_read_only(self, command: Any) -> bool:
        if not isinstance(command, str):
            return False

        trimmed = command.strip()
        if not trimmed or len(trimmed) > MAX_READ_ONLY_COMMAND_LENGTH:
            return False

        if _CONTROL_CHARS.search(trimmed):
            return False

        if _SHELL_METACHARACTERS.search(trimmed):
            return False

        words = trimmed.split()
        for git_cmd in self._git_write:
            git_words = git_cmd.split()
            if words[:len(git_words)] == git_words:
                return False

        first = words[0]
        if first == "find" and any(word in _FIND_ACTIONS for word in words[1:]):
            return False

        if first in _COMMAND_WRAPPERS and len(words) > 1:
            return False

        key = " ".join(words[:2]) if first == "git" else first
        flags = _WRITING_FLAGS.get(key, ())
        if any(word.startswith(flag) for word in words[1:] for flag in flags):
            return False

        if key == "git branch" and not all(word in _GIT_BRANCH_LIST_FLAGS for word in words[2:]):
            return False

        if first in self._read_only:
            return True

        return key in self._read_only


_default_classifier: CommandClassifier = HeuristicCommandClassifier()


def get_command_classifier() -> CommandClassifier:
    return _default_classifier


def is_read_only_bash_command(command: Any) -> bool:
    """Module-level shortcut using the default classifier."""
    try:
        return _default_classifier.is_read_only(command)
    except Exception:
        logger.warning("Command classifier failed; treating command as mutating", exc_info=True)
        return False
