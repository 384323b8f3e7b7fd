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
"""Exceptions raised for configuration and programming errors.

Classification outcomes are never exceptions; gates return result
records. These are reserved for states that should not exist.
"""

from __future__ import annotations


class SetuError(Exception):
    """Base class for Setu errors."""


class PolicyTableError(SetuError, RuntimeError):
    """Raised in strict mode when a safety category has no mapped action."""

    def __init__(self, category: str):
        self.category = category
        super().__init__(f"No action mapped for safety category: {category}")
