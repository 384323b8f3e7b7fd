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
"""Redaction of credentials in text bound for logs and the audit trail."""

from __future__ import annotations

import re
from typing import Any

# Order matters: specific token formats first, then generic long tokens.
REDACTION_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bsk-ant-[A-Za-z0-9-]{40,256}\b"), "[REDACTED_ANTHROPIC_KEY]"),
    (re.compile(r"\bsk-[A-Za-z0-9]{32,256}\b"), "[REDACTED_OPENAI_KEY]"),
    (re.compile(r"\bghp_[A-Za-z0-9]{36}\b"), "[REDACTED_GITHUB_TOKEN]"),
    (re.compile(r"\bgho_[A-Za-z0-9]{36}\b"), "[REDACTED_GITHUB_OAUTH]"),
    (re.compile(r"\bAKIA[A-Z0-9]{16}\b"), "[REDACTED_AWS_KEY]"),
    (re.compile(r"\bnpm_[A-Za-z0-9]{36}\b"), "[REDACTED_NPM_TOKEN]"),
    (re.compile(r"\beyJ[A-Za-z0-9_-]{10,4096}\.[A-Za-z0-9_-]{10,4096}\.[A-Za-z0-9_-]{10,4096}\b"), "[REDACTED_JWT]"),
    (re.compile(r"\b[A-Za-z0-9]{40,1024}\b"), "[REDACTED_LONG_TOKEN]"),
    (re.compile(r"password\s{0,8}[=:]\s{0,8}['\"]?[^\s'\"]{1,256}['\"]?", re.IGNORECASE), "password=[REDACTED]"),
    (re.compile(r"passwd\s{0,8}[=:]\s{0,8}['\"]?[^\s'\"]{1,256}['\"]?", re.IGNORECASE), "passwd=[REDACTED]"),
    (re.compile(r"secret\s{0,8}[=:]\s{0,8}['\"]?[^\s'\"]{1,256}['\"]?", re.IGNORECASE), "secret=[REDACTED]"),
    (re.compile(r"api[_-]?key\s{0,8}[=:]\s{0,8}['\"]?[^\s'\"]{1,256}['\"]?", re.IGNORECASE), "apikey=[REDACTED]"),
    (re.compile(r"authorization\s{0,8}:\s{0,8}bearer\s{1,8}[A-Za-z0-9._-]{1,4096}", re.IGNORECASE), "Authorization: Bearer [REDACTED]"),
    (re.compile(r"authorization\s{0,8}:\s{0,8}basic\s{1,8}[A-Za-z0-9+/=]{1,4096}", re.IGNORECASE), "Authorization: Basic [REDACTED]"),
    (re.compile(r"-----BEGIN[A-Z ]{1,32}PRIVATE KEY-----"), "[REDACTED_PRIVATE_KEY]"),
)


def redact_sensitive(message: Any) -> str:
    """Return *message* with credentials replaced by placeholders.

    Always returns a string; non-string input yields ``""``.
    """
    if not isinstance(message, str) or not message:
        return ""
    redacted = message
    for pattern, replacement in REDACTION_PATTERNS:
        redacted = pattern.sub(replacement, redacted)
    return redacted
