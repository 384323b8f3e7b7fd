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
"""The enforcement pipeline: one decision per tool call.

Stages run in a fixed order and the first block wins:

    1. hard safety       destructive -> block
    2. hydration         unconfirmed context -> block
    3. gear              phase restrictions -> block
    4. path security     write/edit target escapes the project -> block
    5. secrets           credentials in write/edit payload -> block
    6. rate limit        too many calls this minute -> ask (off by default)
    7. confirmation      hard-safety ask: approved once -> execute,
                         retried while pending or denied -> block
    8. complexity        hard-safety ask passes through, else score

The host's pre-execution hook must refuse the call unless the returned
action is ``execute``. Every block is written to the audit log.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from setu.config import GuardSettings
from setu.enforcement.capability import CapabilityRegistry, get_default_registry
from setu.enforcement.complexity import (
    ASK,
    BLOCK,
    EXECUTE,
    ComplexityFactors,
    PolicyDecision,
    evaluate_policy_decision,
)
from setu.enforcement.gears import GearState, create_gear_block_message, determine_gear, should_block
from setu.enforcement.hydration import HydrationGate, create_hydration_block_message
from setu.enforcement.session import (
    ConfirmationStatus,
    ExistenceCache,
    SessionRegistry,
    SessionState,
    action_fingerprint,
)
from setu.security.audit_log import AuditLog, SecurityEventType
from setu.security.path_validation import validate_file_path
from setu.security.safety_classifier import DESTRUCTIVE, SafetyDecision, classify_hard_safety
from setu.security.secret_scanner import SecretScanner

logger = logging.getLogger("setu.enforcement.pipeline")

SECRETS_DETECTED = "secrets_detected"
RATE_LIMITED = "rate_limited"
CONFIRMATION_PENDING_BLOCKED = "confirmation_pending"
CONFIRMATION_DENIED_BLOCKED = "confirmation_denied"

_FILE_TOOLS = ("write", "edit")

_PATH_EVENTS = {
    "sensitive": SecurityEventType.SENSITIVE_FILE_BLOCKED,
}


@dataclass
class ToolInvocation:
    """A proposed tool call as received from the host."""

    tool: str
    args: dict[str, Any] = field(default_factory=dict)
    session_id: str = ""
    call_id: str = ""

    def __post_init__(self):
        if not isinstance(self.args, dict):
            self.args = {}
        if not isinstance(self.tool, str):
            self.tool = ""


def _blocked(reason: str, details: str = "", hard_safety: bool = False) -> PolicyDecision:
    return PolicyDecision(
        score=5.0,
        factors=ComplexityFactors.uniform(5.0),
        hard_safety=hard_safety,
        action=BLOCK,
        reason=[reason],
        details=details,
    )


def _file_path(args: dict[str, Any]) -> Any:
    if "filePath" in args:
        return args["filePath"]
    return args.get("file_path")


def _payload(tool: str, args: dict[str, Any]) -> str:
    keys = ("content",) if tool == "write" else ("newString", "content")
    for key in keys:
        value = args.get(key)
        if isinstance(value, str):
            return value
    return ""


class PolicyPipeline:
    """Evaluates tool calls for one project.

    Usage::

        pipeline = PolicyPipeline(project_root)
        decision = pipeline.evaluate(ToolInvocation("write", {...}, session_id="s1"))
        if decision.action != "execute":
            ...  # refuse; decision.details explains why

    Args:
        project_root: Root of the project the agent works in.
        sessions: Session registry; a private one is created if omitted.
        settings: Operational settings (strict mode, cache TTL, audit, limits).
        audit_log: Audit log; defaults to ``<project>/.setu/security.jsonl``
            when auditing is enabled.
        capabilities: Capability registry; defaults to the built-in one.
        scanner: Secret scanner; defaults to one using the settings' allowlist.
    """

    def __init__(
        self,
        project_root: Path | str,
        sessions: SessionRegistry | None = None,
        settings: GuardSettings | None = None,
        audit_log: AuditLog | None = None,
        capabilities: CapabilityRegistry | None = None,
        scanner: SecretScanner | None = None,
    ):
        self.project_root = Path(project_root)
        self.settings = settings if settings is not None else GuardSettings()
        # SessionRegistry defines __len__, so an empty one is falsy.
        self.sessions = (
            sessions if sessions is not None else SessionRegistry(max_attempts=self.settings.max_attempts)
        )
        self.capabilities = capabilities if capabilities is not None else get_default_registry()
        self.scanner = scanner if scanner is not None else SecretScanner(self.settings.secrets_allowlist)
        if audit_log is None and self.settings.audit_enabled:
            audit_log = AuditLog.for_project(
                self.project_root, max_detail_bytes=self.settings.audit_max_detail_bytes
            )
        self.audit_log = audit_log
        self.hydration = HydrationGate(self.sessions)
        self._gear_cache: ExistenceCache[GearState] = ExistenceCache(self.settings.gear_cache_ttl_seconds)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(self, session_id: str) -> SessionState:
        return self.sessions.reset(session_id)

    def end_session(self, session_id: str) -> None:
        self.sessions.delete(session_id)

    def confirm_context(self, session_id: str) -> bool:
        return self.hydration.confirm(session_id)

    def approve_action(self, session_id: str, tool: str, args: Any) -> bool:
        """Let the pending hard-safety ask for this exact call run once."""
        return self.sessions.approve_confirmation(session_id, action_fingerprint(tool, args))

    def deny_action(self, session_id: str, tool: str, args: Any) -> bool:
        return self.sessions.deny_confirmation(session_id, action_fingerprint(tool, args))

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    def record_attempt(self, session_id: str, task_id: str, approach: str, succeeded: bool = False) -> int:
        """Record one approach at *task_id*; returns the attempt count."""
        return self.sessions.get_or_create(session_id).attempts.record_attempt(task_id, approach, succeeded)

    def should_suggest_gear_shift(self, session_id: str, task_id: str) -> bool:
        return self.sessions.get_or_create(session_id).attempts.should_suggest_gear_shift(task_id)

    def gear_shift_message(self, session_id: str, task_id: str) -> str:
        return self.sessions.get_or_create(session_id).attempts.gear_shift_message(task_id)

    # ------------------------------------------------------------------
    # Gear
    # ------------------------------------------------------------------

    def current_gear(self) -> GearState:
        """Gear of the project, cached for ``gear_cache_ttl_seconds``."""
        return self._gear_cache.get(str(self.project_root), lambda: determine_gear(self.project_root))

    def invalidate_gear_cache(self) -> None:
        """Call after writing RESEARCH.md or PLAN.md."""
        self._gear_cache.invalidate()

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(
        self,
        invocation: ToolInvocation,
        gear: Any = None,
        has_active_task: bool = False,
        hard_safety: Optional[SafetyDecision] = None,
    ) -> PolicyDecision:
        """Run every stage for *invocation* and return the decision."""
        tool, args, session_id = invocation.tool, invocation.args, invocation.session_id
        session = self.sessions.get_or_create(session_id)
        calls_this_minute = session.rate_counter.add()

        # 1. Hard safety
        safety = hard_safety if hard_safety is not None else classify_hard_safety(
            tool, args, strict=self.settings.strict
        )
        if safety.hard_safety and safety.action == BLOCK:
            details = "; ".join(safety.messages)
            self._audit(SecurityEventType.SAFETY_BLOCKED, f"{tool}: {details}", invocation)
            logger.warning("Hard safety blocked %s: %s", tool, safety.categories)
            return PolicyDecision(
                score=5.0,
                factors=ComplexityFactors.uniform(5.0),
                hard_safety=True,
                action=BLOCK,
                reason=safety.messages or [DESTRUCTIVE],
                details=details,
            )

        # 2. Hydration
        hydration = self.hydration.check(session_id, tool, args)
        if hydration.blocked:
            self._audit(SecurityEventType.HYDRATION_BLOCKED, f"{hydration.reason}: {hydration.details}", invocation)
            return _blocked(hydration.reason, create_hydration_block_message(hydration.reason))

        # 3. Gear
        if gear is None:
            gear = self.current_gear().current
        gear_result = should_block(gear, tool, args, registry=self.capabilities, project_root=self.project_root)
        if gear_result.blocked:
            self._audit(SecurityEventType.GEAR_BLOCKED, f"{gear_result.reason}: {gear_result.details}", invocation)
            logger.warning("Gear %s blocked %s: %s", gear_result.gear.value, tool, gear_result.reason)
            return _blocked(
                gear_result.reason,
                f"{gear_result.details} {create_gear_block_message(gear_result)}".strip(),
            )

        if tool in _FILE_TOOLS:
            # 4. Path security. Sensitive names were already routed to ask.
            path_check = validate_file_path(self.project_root, _file_path(args), allow_sensitive=True)
            if not path_check.valid:
                event = _PATH_EVENTS.get(path_check.reason, SecurityEventType.PATH_TRAVERSAL_BLOCKED)
                self._audit(event, path_check.error, invocation)
                logger.warning("Path rejected for %s: %s", tool, path_check.reason)
                return _blocked(path_check.reason, path_check.error or "")

            # 5. Secrets
            findings = [
                f for f in self.scanner.scan_content(_payload(tool, args), file_path=str(_file_path(args)))
                if f.blocking
            ]
            if findings:
                summary = ", ".join(f"{f.pattern_name} (line {f.line_number})" for f in findings)
                self._audit(SecurityEventType.SECRETS_DETECTED, summary, invocation)
                logger.warning("Secrets detected in %s payload: %d finding(s)", tool, len(findings))
                return _blocked(SECRETS_DETECTED, f"Secrets detected: {summary}")

        # 6. Rate limit
        limit = self.settings.max_calls_per_minute
        if limit and calls_this_minute > limit:
            self._audit(
                SecurityEventType.RATE_LIMIT_TRIGGERED,
                f"{calls_this_minute}/{limit} calls per minute",
                invocation,
            )
            return PolicyDecision(
                score=5.0,
                factors=ComplexityFactors.uniform(5.0),
                hard_safety=False,
                action=ASK,
                reason=[RATE_LIMITED],
                details=f"Rate limit exceeded ({calls_this_minute}/{limit} calls per minute)",
            )

        # 7. One-time confirmation of hard-safety asks
        if safety.hard_safety:
            fingerprint = action_fingerprint(tool, args)
            status = self.sessions.consume_confirmation(session_id, fingerprint)
            if status is ConfirmationStatus.APPROVED:
                self._audit(SecurityEventType.CONSTRAINT_ENFORCED, f"Approved once: {tool}", invocation)
                logger.info("Running approved %s for session %s", tool, session_id)
                decision = evaluate_policy_decision(tool, args, gear, has_active_task)
                decision.action = EXECUTE
                decision.details = "Approved once by user"
                return decision
            if status is not None:
                denied = status is ConfirmationStatus.DENIED
                self._audit(
                    SecurityEventType.BYPASS_ATTEMPT_DETECTED,
                    f"{tool} retried while confirmation {status.value}: {'; '.join(safety.messages)}",
                    invocation,
                )
                logger.warning("Retry of %s %s action in session %s", status.value, tool, session_id)
                return _blocked(
                    CONFIRMATION_DENIED_BLOCKED if denied else CONFIRMATION_PENDING_BLOCKED,
                    "User denied this action. Choose a safer alternative." if denied
                    else "Waiting for the user to approve or deny this action.",
                    hard_safety=True,
                )
            self.sessions.request_confirmation(session_id, fingerprint, safety.messages)
            self._audit(
                SecurityEventType.CONSTRAINT_ENFORCED,
                f"Safety confirmation required for {tool}: {'; '.join(safety.messages)}",
                invocation,
            )

        # 8. Complexity
        decision = evaluate_policy_decision(tool, args, gear, has_active_task, hard_safety=safety)
        logger.debug("Decision for %s: %s (score %.2f)", tool, decision.action, decision.score)
        return decision

    def _audit(self, event_type: SecurityEventType, details: Any, invocation: ToolInvocation) -> None:
        if self.audit_log is None:
            return
        self.audit_log.log_security_event(
            event_type,
            details,
            session_id=invocation.session_id,
            tool=invocation.tool,
        )
