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
"""Tamper-evident security audit log with HMAC hash chain.

Every block, sanitisation and detected secret is appended to an
append-only JSONL file (``.setu/security.jsonl``). Each entry carries
the SHA-256 hash of the previous entry and an HMAC-SHA256 signature.

Details are sanitised before they are written: control characters
stripped, line breaks collapsed to single spaces, credentials
redacted, then truncated to a byte budget. A forged newline in a tool
argument therefore cannot produce a fake entry.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import platform
import re
import time
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from setu.constants import PRIVATE_DIR
from setu.security.redaction import redact_sensitive

logger = logging.getLogger("setu.security.audit_log")

AUDIT_FILENAME = "security.jsonl"
DEFAULT_MAX_DETAIL_BYTES = 1000
TRUNCATION_SUFFIX = "...(truncated)"

# Sentinel for the first entry in the chain
GENESIS_HASH = "0" * 64

# C0 (except CR/LF, normalised separately) and C1 controls
_CONTROL_CHARS = re.compile(r"[\x00-\x09\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_LINE_BREAKS = re.compile(r"\r\n|\r|\n")
_WHITESPACE_RUN = re.compile(r"\s+")


class SecurityEventType(str, Enum):
    # Blocking events
    PATH_TRAVERSAL_BLOCKED = "PATH_TRAVERSAL_BLOCKED"
    SENSITIVE_FILE_BLOCKED = "SENSITIVE_FILE_BLOCKED"
    HYDRATION_BLOCKED = "HYDRATION_BLOCKED"
    GEAR_BLOCKED = "GEAR_BLOCKED"
    SAFETY_BLOCKED = "SAFETY_BLOCKED"
    # Warning events
    BYPASS_ATTEMPT_DETECTED = "BYPASS_ATTEMPT_DETECTED"
    SECRETS_DETECTED = "SECRETS_DETECTED"
    # Info events
    RATE_LIMIT_TRIGGERED = "RATE_LIMIT_TRIGGERED"
    CONSTRAINT_ENFORCED = "CONSTRAINT_ENFORCED"


EVENT_SEVERITY: dict[SecurityEventType, str] = {
    SecurityEventType.PATH_TRAVERSAL_BLOCKED: "high",
    SecurityEventType.SENSITIVE_FILE_BLOCKED: "medium",
    SecurityEventType.HYDRATION_BLOCKED: "low",
    SecurityEventType.GEAR_BLOCKED: "medium",
    SecurityEventType.SAFETY_BLOCKED: "high",
    SecurityEventType.BYPASS_ATTEMPT_DETECTED: "high",
    SecurityEventType.SECRETS_DETECTED: "critical",
    SecurityEventType.RATE_LIMIT_TRIGGERED: "low",
    SecurityEventType.CONSTRAINT_ENFORCED: "info",
}


def _derive_hmac_key(project_root: Path | None = None) -> bytes:
    """Derive a machine-specific HMAC key from hostname and project path."""
    raw = f"setu-audit-{platform.node()}-{project_root or ''}".encode()
    return hashlib.sha256(raw).digest()


def sanitize_details(details: Any) -> str:
    """Strip control characters and collapse line breaks and whitespace."""
    if not isinstance(details, str):
        details = "" if details is None else str(details)
    cleaned = _CONTROL_CHARS.sub("", details)
    cleaned = _LINE_BREAKS.sub(" ", cleaned)
    return _WHITESPACE_RUN.sub(" ", cleaned).strip()


def truncate_bytes(text: str, max_bytes: int = DEFAULT_MAX_DETAIL_BYTES) -> str:
    """Cut *text* to at most *max_bytes* UTF-8 bytes, suffix included."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    budget = max(0, max_bytes - len(TRUNCATION_SUFFIX.encode("utf-8")))
    # errors="ignore" drops a multi-byte character split at the boundary
    return encoded[:budget].decode("utf-8", errors="ignore") + TRUNCATION_SUFFIX


def prepare_details(details: Any, max_bytes: int = DEFAULT_MAX_DETAIL_BYTES) -> str:
    """Sanitise, redact and truncate, in that order."""
    return truncate_bytes(redact_sensitive(sanitize_details(details)), max_bytes)


@dataclass
class AuditEntry:
    """A single tamper-evident audit log entry."""

    timestamp: float
    severity: str
    event_type: str
    session_id: str = ""
    tool: str = ""
    details: str = ""
    prev_hash: str = GENESIS_HASH
    entry_hash: str = ""
    hmac_sig: str = ""

    def _payload(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "severity": self.severity,
            "event_type": self.event_type,
            "session_id": self.session_id,
            "tool": self.tool,
            "details": self.details,
            "prev_hash": self.prev_hash,
        }

    def compute_hash(self) -> str:
        """SHA-256 over every field except entry_hash and hmac_sig."""
        raw = json.dumps(self._payload(), sort_keys=True, separators=(",", ":")).encode()
        return hashlib.sha256(raw).hexdigest()

    def compute_hmac(self, key: bytes) -> str:
        payload = self._payload()
        payload["entry_hash"] = self.entry_hash
        raw = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()
        return hmac.new(key, raw, hashlib.sha256).hexdigest()


class AuditLog:
    """Append-only, tamper-evident security log.

    Usage::

        log = AuditLog.for_project(project_root)
        log.log_security_event(
            SecurityEventType.GEAR_BLOCKED,
            "scout_blocked: write",
            session_id="abc123",
            tool="write",
        )
        valid, checked = log.verify_chain()

    Write failures are logged and swallowed: auditing never changes a
    policy decision.
    """

    def __init__(
        self,
        path: Path,
        hmac_key: bytes | None = None,
        max_detail_bytes: int = DEFAULT_MAX_DETAIL_BYTES,
        enabled: bool = True,
    ):
        self._path = Path(path)
        self._hmac_key = hmac_key or _derive_hmac_key(self._path.parent)
        self._max_detail_bytes = max_detail_bytes
        self._enabled = enabled
        self._last_hash: str = GENESIS_HASH

        if self._path.exists():
            self._load_last_hash()

    @classmethod
    def for_project(cls, project_root: Path | str, **kwargs: Any) -> AuditLog:
        """Audit log at ``<project_root>/.setu/security.jsonl``."""
        return cls(Path(project_root) / PRIVATE_DIR / AUDIT_FILENAME, **kwargs)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _load_last_hash(self) -> None:
        """Read the last entry's hash to continue the chain."""
        try:
            last_line = ""
            with open(self._path, encoding="utf-8") as f:
                for line in f:
                    stripped = line.strip()
                    if stripped:
                        last_line = stripped
            if last_line:
                self._last_hash = json.loads(last_line).get("entry_hash", GENESIS_HASH)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read last audit hash: %s", e)
            self._last_hash = GENESIS_HASH

    def append(self, entry: AuditEntry) -> AuditEntry:
        """Chain, sign and write *entry*. Returns it even if the write fails."""
        entry.prev_hash = self._last_hash
        entry.entry_hash = entry.compute_hash()
        entry.hmac_sig = entry.compute_hmac(self._hmac_key)

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "a", encoding="utf-8") as f:
                f.write(json.dumps(asdict(entry), sort_keys=True, separators=(",", ":")) + "\n")
        except OSError as e:
            logger.warning("Security audit log write failed: %s", e)
            return entry

        self._last_hash = entry.entry_hash
        logger.debug("Audit: %s [%s] %s", entry.event_type, entry.severity, entry.session_id)
        return entry

    def log_security_event(
        self,
        event_type: SecurityEventType,
        details: Any = "",
        session_id: str = "",
        tool: str = "",
    ) -> Optional[AuditEntry]:
        """Sanitise *details* and append an entry. None when disabled."""
        if not self._enabled:
            return None
        event_type = SecurityEventType(event_type)
        entry = AuditEntry(
            timestamp=time.time(),
            severity=EVENT_SEVERITY[event_type],
            event_type=event_type.value,
            session_id=session_id or "",
            tool=tool or "",
            details=prepare_details(details, self._max_detail_bytes),
        )
        return self.append(entry)

    def verify_chain(self) -> tuple[bool, int]:
        """Verify the integrity of the whole log.

        Returns (all_valid, entries_checked).
        """
        if not self._path.exists():
            return True, 0

        entries_checked = 0
        prev_hash = GENESIS_HASH

        with open(self._path, encoding="utf-8") as f:
            for i, line in enumerate(f):
                stripped = line.strip()
                if not stripped:
                    continue
                try:
                    entry = AuditEntry(**json.loads(stripped))
                except (json.JSONDecodeError, TypeError):
                    logger.error("Audit chain broken: invalid entry at line %d", i + 1)
                    return False, entries_checked

                if entry.prev_hash != prev_hash:
                    logger.error(
                        "Audit chain broken at line %d: prev_hash mismatch (expected %s, got %s)",
                        i + 1,
                        prev_hash[:16],
                        entry.prev_hash[:16],
                    )
                    return False, entries_checked

                if entry.entry_hash != entry.compute_hash():
                    logger.error("Audit tampered at line %d: entry_hash mismatch", i + 1)
                    return False, entries_checked

                if not hmac.compare_digest(entry.hmac_sig, entry.compute_hmac(self._hmac_key)):
                    logger.error("Audit tampered at line %d: HMAC mismatch", i + 1)
                    return False, entries_checked

                prev_hash = entry.entry_hash
                entries_checked += 1

        return True, entries_checked

    def get_entries(
        self,
        session_id: str | None = None,
        event_type: SecurityEventType | str | None = None,
        limit: int | None = None,
    ) -> list[AuditEntry]:
        """Retrieve entries, optionally filtered by session and/or event type."""
        if not self._path.exists():
            return []

        wanted_type = SecurityEventType(event_type).value if event_type else None
        entries: list[AuditEntry] = []
        with open(self._path, encoding="utf-8") as f:
            for line in f:
                stripped = line.strip()
                if not stripped:
                    continue
                try:
                    entry = AuditEntry(**json.loads(stripped))
                except (json.JSONDecodeError, TypeError):
                    continue
                if session_id and entry.session_id != session_id:
                    continue
                if wanted_type and entry.event_type != wanted_type:
                    continue
                entries.append(entry)

        if limit:
            entries = entries[-limit:]
        return entries
