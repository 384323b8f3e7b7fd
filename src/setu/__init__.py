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
"""
Setu: policy and safety enforcement for autonomous coding agents.

Every proposed tool call passes through one pipeline
(hard safety → hydration → gear → path and secret checks → complexity)
and comes back as an ``execute`` / ``ask`` / ``block`` decision with
machine-checkable reasons.
"""

__version__ = "1.2.0"
__author__ = "Setu Team"
