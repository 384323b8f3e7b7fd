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
"""Secret scanner: blocks writes and edits that carry hardcoded credentials.

Runs on the ``content`` / ``newString`` payload of every file-tool call
before it reaches the disk. Regex pattern matching with severities; a
user-managed allowlist suppresses false positives.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("setu.security.secret_scanner")

CRITICAL = "critical"
HIGH = "high"
MEDIUM = "medium"
LOW = "low"

# Findings at these severities stop a write.
BLOCKING_SEVERITIES = frozenset({CRITICAL, HIGH})

CONTEXT_WINDOW = 50
_CONTEXT_KEYWORDS = ("aws", "secret")

_BINARY_EXTENSIONS = frozenset({
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp",
    ".woff", ".woff2", ".ttf", ".eot", ".otf",
    ".zip", ".tar", ".gz", ".bz2", ".7z",
    ".pdf", ".pyc", ".so", ".dll", ".exe", ".bin",
    ".sqlite", ".db",
})


@dataclass(frozen=True)
class SecretPattern:
    """A named detection rule.

    ``requires_context`` patterns are broad; a match only counts if a
    context keyword appears within ``CONTEXT_WINDOW`` characters.
    """

    name: str
    regex: re.Pattern
    severity: str
    requires_context: bool = False


@dataclass
class SecretFinding:
    """A single secret detection result."""

    pattern_name: str
    severity: str
    line_number: int
    matched_text: str
    redacted_text: str
    file_path: str = ""

    @property
    def blocking(self) -> bool:
        return self.severity in BLOCKING_SEVERITIES

    def to_dict(self) -> dict[str, Any]:
        # matched_text never leaves the process
        return {
            "file": self.file_path,
            "line": self.line_number,
            "type": self.pattern_name,
            "severity": self.severity,
            "redacted": self.redacted_text,
        }


@dataclass
class ScanResult:
    """Result of scanning content or a set of files."""

    findings: list[SecretFinding] = field(default_factory=list)
    files_scanned: int = 0

    @property
    def clean(self) -> bool:
        return len(self.findings) == 0

    @property
    def blocked(self) -> bool:
        return any(f.blocking for f in self.findings)

    def summary(self) -> str:
        if self.clean:
            return f"Secret scan clean ({self.files_scanned} files scanned)"
        names = sorted({f.pattern_name for f in self.findings})
        return f"{len(self.findings)} secret finding(s): {', '.join(names)}"


class SecretScanner:
    """Regex-based secret scanner for file-tool payloads.

    Detects API keys, tokens, private keys and hardcoded passwords.
    Supports an allowlist of ``{"pattern": substring}`` and
    ``{"file": glob}`` entries.
    """

    PATTERNS: tuple[SecretPattern, ...] = (
        # API keys
        SecretPattern("OpenAI API Key", re.compile(r"\bsk-[A-Za-z0-9]{32,256}\b"), CRITICAL),
        SecretPattern("Anthropic API Key", re.compile(r"\bsk-ant-[A-Za-z0-9-]{90,256}\b"), CRITICAL),
        SecretPattern("Google API Key", re.compile(r"\bAIza[A-Za-z0-9_-]{35}\b"), HIGH),
        # AWS
        SecretPattern("AWS Access Key ID", re.compile(r"\bAKIA[A-Z0-9]{16}\b"), CRITICAL),
        SecretPattern(
            "AWS Secret Key (possible)",
            re.compile(r"(?<![A-Za-z0-9/+])[A-Za-z0-9/+]{40}(?![A-Za-z0-9/+=])"),
            MEDIUM,
            requires_context=True,
        ),
        # GitHub
        SecretPattern("GitHub Personal Access Token", re.compile(r"\bghp_[A-Za-z0-9]{36}\b"), CRITICAL),
        SecretPattern("GitHub OAuth Token", re.compile(r"\bgho_[A-Za-z0-9]{36}\b"), CRITICAL),
        SecretPattern("GitHub User-to-Server Token", re.compile(r"\bghu_[A-Za-z0-9]{36}\b"), CRITICAL),
        SecretPattern("GitHub Server-to-Server Token", re.compile(r"\bghs_[A-Za-z0-9]{36}\b"), CRITICAL),
        SecretPattern("GitHub Refresh Token", re.compile(r"\bghr_[A-Za-z0-9]{36}\b"), CRITICAL),
        # Stripe
        SecretPattern("Stripe Live Secret Key", re.compile(r"\bsk_live_[A-Za-z0-9]{24,256}\b"), CRITICAL),
        SecretPattern("Stripe Test Secret Key", re.compile(r"\bsk_test_[A-Za-z0-9]{24,256}\b"), MEDIUM),
        SecretPattern("Stripe Restricted Key", re.compile(r"\brk_live_[A-Za-z0-9]{24,256}\b"), CRITICAL),
        # Slack / npm
        SecretPattern("Slack Token", re.compile(r"\bxox[baprs]-[0-9]{10,32}-[A-Za-z0-9-]{24,256}\b"), HIGH),
        SecretPattern("NPM Access Token", re.compile(r"\bnpm_[A-Za-z0-9]{36}\b"), HIGH),
        # Private keys
        SecretPattern("Private Key Header", re.compile(r"-----BEGIN\s{1,4}(?:RSA\s{1,4}|EC\s{1,4}|DSA\s{1,4})?PRIVATE\s{1,4}KEY-----"), CRITICAL),
        SecretPattern("OpenSSH Private Key", re.compile(r"-----BEGIN\s{1,4}OPENSSH\s{1,4}PRIVATE\s{1,4}KEY-----"), CRITICAL),
        # JWT
        SecretPattern(
            "JWT Token",
            re.compile(r"\beyJ[A-Za-z0-9_-]{10,4096}\.[A-Za-z0-9_-]{10,4096}\.[A-Za-z0-9_-]{10,4096}\b"),
            MEDIUM,
        ),
        # Generic assignments
        SecretPattern(
            "Hardcoded Password",
            re.compile(r"password\s{0,8}[=:]\s{0,8}['\"]?[A-Za-z0-9!@#$%^&*]{8,256}['\"]?", re.IGNORECASE),
            HIGH,
        ),
        SecretPattern(
            "Generic API Key",
            re.compile(r"api[_-]?key\s{0,8}[=:]\s{0,8}['\"]?[A-Za-z0-9_-]{16,256}['\"]?", re.IGNORECASE),
            MEDIUM,
        ),
        SecretPattern(
            "Generic Secret",
            re.compile(r"secret\s{0,8}[=:]\s{0,8}['\"]?[A-Za-z0-9!@#$%^&*_-]{16,256}['\"]?", re.IGNORECASE),
            MEDIUM,
        ),
    )

    def __init__(self, allowlist: list[dict[str, str]] | None = None):
        self._allowlist_patterns: list[str] = []
        self._allowlist_files: list[str] = []
        if allowlist:
            for entry in allowlist:
                if "pattern" in entry:
                    self._allowlist_patterns.append(entry["pattern"])
                if "file" in entry:
                    self._allowlist_files.append(entry["file"])

    @classmethod
    def load_allowlist(cls, allowlist_path: Path) -> list[dict[str, str]]:
        """Load allowlist entries from the ``allowlist:`` key of a YAML file."""
        if not allowlist_path.exists():
            return []
        try:
            with open(allowlist_path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Failed to load secrets allowlist: %s", e)
            return []
        if not isinstance(data, dict):
            return []
        entries = data.get("allowlist", [])
        return [e for e in entries if isinstance(e, dict)] if isinstance(entries, list) else []

    def _is_allowlisted_file(self, file_path: str) -> bool:
        return any(fnmatch(file_path, pattern) for pattern in self._allowlist_files)

    def _is_allowlisted_text(self, matched_text: str) -> bool:
        return any(pattern in matched_text for pattern in self._allowlist_patterns)

    @staticmethod
    def _redact(text: str) -> str:
        """Keep the first 8 characters as a hint, drop the rest."""
        if len(text) <= 8:
            return "***REDACTED***"
        return f"{text[:8]}...[REDACTED]"

    @staticmethod
    def _passes_context_check(pattern: SecretPattern, content: str, start: int, end: int) -> bool:
        if not pattern.requires_context:
            return True
        window = content[max(0, start - CONTEXT_WINDOW): end + CONTEXT_WINDOW].lower()
        return any(keyword in window for keyword in _CONTEXT_KEYWORDS)

    def scan_content(self, content: Any, file_path: str = "") -> list[SecretFinding]:
        """Scan a string payload. Non-strings yield no findings."""
        if not isinstance(content, str) or not content:
            return []
        if file_path and self._is_allowlisted_file(file_path):
            return []

        findings: list[SecretFinding] = []
        for pattern in self.PATTERNS:
            for match in pattern.regex.finditer(content):
                if not self._passes_context_check(pattern, content, match.start(), match.end()):
                    continue
                matched = match.group(0)
                if self._is_allowlisted_text(matched):
                    continue
                findings.append(
                    SecretFinding(
                        pattern_name=pattern.name,
                        severity=pattern.severity,
                        line_number=content.count("\n", 0, match.start()) + 1,
                        matched_text=matched,
                        redacted_text=self._redact(matched),
                        file_path=file_path,
                    )
                )
        return findings

    def contains_secrets(self, content: Any) -> bool:
        return bool(self.scan_content(content))

    @staticmethod
    def _is_binary(file_path: Path) -> bool:
        return file_path.suffix.lower() in _BINARY_EXTENSIONS

    def scan_file(self, file_path: Path, relative_to: Path | None = None) -> list[SecretFinding]:
        """Scan a single file on disk."""
        if self._is_binary(file_path):
            return []

        rel_path = str(file_path.relative_to(relative_to)) if relative_to else str(file_path)
        try:
            text = file_path.read_text(encoding="utf-8", errors="ignore")
        except OSError as e:
            logger.debug("Skipping unreadable file %s: %s", file_path, e)
            return []
        return self.scan_content(text, file_path=rel_path)

    def scan_files(self, files: list[Path], relative_to: Path | None = None) -> ScanResult:
        """Scan a specific list of files."""
        result = ScanResult()
        for file_path in files:
            if not file_path.is_file():
                continue
            result.files_scanned += 1
            result.findings.extend(self.scan_file(file_path, relative_to=relative_to))

        if result.blocked:
            logger.warning(result.summary())
        else:
            logger.info(result.summary())
        return result


_default_scanner = SecretScanner()


def detect_secrets(content: Any) -> list[SecretFinding]:
    """Scan *content* with the default (empty allowlist) scanner."""
    return _default_scanner.scan_content(content)


def contains_secrets(content: Any) -> bool:
    return _default_scanner.contains_secrets(content)
