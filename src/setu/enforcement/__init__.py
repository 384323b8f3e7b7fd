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
Setu -- enforcement gates.

Usage:
    from setu.enforcement.pipeline import PolicyPipeline, ToolInvocation

    pipeline = PolicyPipeline(project_root)
    decision = pipeline.evaluate(ToolInvocation("bash", {"command": "ls"}, session_id="s1"))
"""
