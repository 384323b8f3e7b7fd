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
Path security validation.

Two boundaries are enforced:

- The project boundary, for direct file-tool arguments
  (``validate_file_path``).
- The private workflow directory (``.setu/``), used by the Architect
  gear to admit writes only to workflow artifacts
  (``validate_private_dir_path``).

Hardened against:
  1. ``..`` traversal, raw and after normalisation
  2. Percent-encoded traversal, including double encoding (%252e)
  3. Control characters and null bytes
  4. String-prefix false positives (/proj/.setu vs /proj/.setu-evil)
  5. Sensitive credential files
"""

from __future__ import annotations

import logging
import os
import posixpath
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
from urllib.parse import unquote

from setu.constants import PRIVATE_DIR

logger = logging.getLogger("setu.security.path_validation")

MAX_DECODE_ITERATIONS = 5

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_ENCODED_TRAVERSAL = re.compile(r"%(?:2e|2f|5c)", re.IGNORECASE)
_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:/")

# Matched against the forward-slash form of a path. Every quantifier is
# bounded; these run against attacker-controlled shell tokens.
SENSITIVE_PATH_PATTERNS: tuple[re.Pattern[str], ...] = (
    # Environment files: .env, .env.local, .envrc
    re.compile(r"(?:^|/)\.env[^/]{0,64}$", re.IGNORECASE),
    # Key material
    re.compile(r"(?:^|/)[^/]{0,255}\.(?:pem|key|p12|pfx)$", re.IGNORECASE),
    re.compile(r"(?:^|/)id_(?:rsa|ed25519|ecdsa|dsa)$", re.IGNORECASE),
    # Credential / secret stores
    re.compile(r"(?:^|/)(?:credentials|secrets?)\.[^/]{1,16}$", re.IGNORECASE),
    re.compile(r"(?:^|/)\.secrets$", re.IGNORECASE),
    # Package manager and VCS auth
    re.compile(r"(?:^|/)\.(?:npmrc|netrc|pypirc|git-credentials)$", re.IGNORECASE),
    # SSH trust files
    re.compile(r"(?:^|/)(?:known_hosts|authorized_keys)$", re.IGNORECASE),
    # Cloud credentials
    re.compile(r"(?:^|/)\.aws/(?:credentials|config)$", re.IGNORECASE),
    re.compile(r"(?:^|/)\.config/gcloud(?:/|$)", re.IGNORECASE),
    re.compile(r"(?:^|/)\.azure(?:/|$)", re.IGNORECASE),
    re.compile(r"(?:^|/)\.kube/config$", re.IGNORECASE),
    re.compile(r"(?:^|/)kubeconfig$", re.IGNORECASE),
    re.compile(r"(?:^|/)\.docker/config\.json$", re.IGNORECASE),
)


@dataclass
class PathValidationResult:
    """Outcome of a path check. ``reason`` is set only when invalid."""

    valid: bool
    error: Optional[str] = None
    reason: Optional[str] = None  # "traversal" | "sensitive" | "absolute" | "outside_project"

    def __bool__(self):
        return self.valid

    @classmethod
    def ok(cls) -> PathValidationResult:
        return cls(valid=True)

    @classmethod
    def reject(cls, reason: str, error: str) -> PathValidationResult:
        return cls(valid=False, error=error, reason=reason)


def to_forward_slashes(path: str) -> str:
    return path.replace("\\", "/")


def has_control_chars(value: str) -> bool:
    return bool(_CONTROL_CHARS.search(value))


def decode_repeatedly(value: str, max_iterations: int = MAX_DECODE_ITERATIONS) -> str:
    """Percent-decode until the string stops changing (bounded)."""
    decoded = value
    for _ in range(max_iterations):
        next_decoded = unquote(decoded)
        if next_decoded == decoded:
            break
        decoded = next_decoded
    return decoded


def has_traversal(path: str) -> bool:
    """True if *path* contains ``..`` segments, raw or percent-decoded,
    or encoded dot/separator tokens that could decode into them."""
    raw = to_forward_slashes(path)
    if any(segment == ".." for segment in raw.split("/")):
        return True
    if _ENCODED_TRAVERSAL.search(raw):
        return True
    decoded = to_forward_slashes(decode_repeatedly(raw))
    return any(segment == ".." for segment in decoded.split("/"))


def _is_absolute(path: str) -> bool:
    return path.startswith("/") or bool(_WINDOWS_DRIVE.match(path)) or os.path.isabs(path)


def _within(boundary: str, target: str) -> bool:
    """Prefix containment with a trailing separator (no /a vs /a-evil confusion)."""
    boundary = os.path.normcase(boundary)
    target = os.path.normcase(target)
    prefix = boundary if boundary.endswith(os.sep) else boundary + os.sep
    return target == boundary or target.startswith(prefix)


def is_path_within_project(project_root: str | Path, file_path: str) -> bool:
    """True if *file_path* resolves strictly inside *project_root*."""
    try:
        root = os.path.realpath(str(project_root))
        target = os.path.realpath(os.path.join(root, file_path))
    except (OSError, ValueError, TypeError):
        return False
    if target == root:
        return False
    return _within(root, target)


def is_sensitive_file(file_path: str) -> bool:
    """True if any trailing suffix of *file_path* names a sensitive file."""
    if not isinstance(file_path, str) or not file_path:
        return False
    normalized = to_forward_slashes(file_path)
    parts = [p for p in normalized.split("/") if p]
    candidates = {normalized}
    for i in range(len(parts)):
        candidates.add("/".join(parts[i:]))
    return any(pattern.search(candidate) for pattern in SENSITIVE_PATH_PATTERNS for candidate in candidates)


def validate_file_path(
    project_root: str | Path,
    file_path: Any,
    allow_sensitive: bool = False,
    allow_absolute_within_project: bool = True,
) -> PathValidationResult:
    """Validate a direct file-tool argument against the project boundary.

    Checks, in order: type and control characters, raw/encoded traversal,
    absolute paths outside the project, resolved escape, sensitive names.
    """
    if not isinstance(file_path, str) or not file_path.strip():
        return PathValidationResult.reject("traversal", "Missing or invalid file path")

    if has_control_chars(file_path):
        return PathValidationResult.reject(
            "traversal", "Path contains control characters"
        )

    if has_traversal(file_path):
        return PathValidationResult.reject(
            "traversal", f"Path traversal attempt blocked: {file_path}"
        )

    if _is_absolute(file_path):
        if not is_path_within_project(project_root, file_path):
            return PathValidationResult.reject(
                "outside_project", f"Path '{file_path}' is outside the project directory"
            )
        if not allow_absolute_within_project:
            return PathValidationResult.reject(
                "absolute", f"Absolute paths not allowed: {file_path}"
            )

    if not is_path_within_project(project_root, file_path):
        return PathValidationResult.reject(
            "traversal", f"Path traversal attempt blocked: {file_path}"
        )

    if not allow_sensitive and is_sensitive_file(file_path):
        return PathValidationResult.reject(
            "sensitive", f"Access to sensitive file blocked: {posixpath.basename(to_forward_slashes(file_path))}"
        )

    return PathValidationResult.ok()


def validate_private_dir_path(
    path: Any,
    project_root: str | Path | None = None,
    private_dir: str = PRIVATE_DIR,
) -> PathValidationResult:
    """Check that *path* lies inside the private workflow directory.

    Absolute paths must carry the ``/<private_dir>`` marker; everything
    after it is inspected raw and decoded, then the resolved path is
    compared against the resolved boundary. Relative paths are
    normalised and must start with the private directory.
    """
    if not isinstance(path, str) or not path:
        return PathValidationResult.reject("outside_project", "Missing or invalid path")

    if has_control_chars(path):
        return PathValidationResult.reject("traversal", "Path contains control characters")

    normalized = to_forward_slashes(path)

    if _is_absolute(path):
        marker = "/" + private_dir
        index = normalized.find(marker)
        if index == -1:
            return PathValidationResult.reject(
                "outside_project", f"Path '{path}' is outside {private_dir}/"
            )

        remainder = normalized[index + len(marker):]
        if remainder and not remainder.startswith("/"):
            # e.g. /proj/.setu-evil/x
            return PathValidationResult.reject(
                "outside_project", f"Path '{path}' is outside {private_dir}/"
            )

        if has_traversal(remainder.lstrip("/")):
            return PathValidationResult.reject(
                "traversal", f"Path traversal attempt blocked: {path}"
            )

        boundary = os.path.realpath(normalized[: index + len(marker)])
        try:
            resolved = os.path.realpath(path)
        except (OSError, ValueError):
            return PathValidationResult.reject("traversal", f"Unresolvable path: {path}")
        if not _within(boundary, resolved):
            return PathValidationResult.reject(
                "traversal", f"Path '{path}' resolves outside {private_dir}/"
            )

        if project_root is not None:
            project_boundary = os.path.realpath(os.path.join(str(project_root), private_dir))
            if not _within(project_boundary, resolved):
                return PathValidationResult.reject(
                    "outside_project", f"Path '{path}' is outside this project's {private_dir}/"
                )

        return PathValidationResult.ok()

    if has_traversal(normalized):
        return PathValidationResult.reject(
            "traversal", f"Path traversal attempt blocked: {path}"
        )

    collapsed = posixpath.normpath(normalized)
    if collapsed.startswith(".."):
        return PathValidationResult.reject(
            "traversal", f"Path traversal attempt blocked: {path}"
        )

    if collapsed == private_dir or collapsed.startswith(private_dir + "/"):
        return PathValidationResult.ok()

    return PathValidationResult.reject(
        "outside_project", f"Path '{path}' is outside {private_dir}/"
    )


def extract_path_arg(args: Any) -> Any:
    """Return the first path-like argument (``path``, ``filePath``, ``file_path``)."""
    if not isinstance(args, dict):
        return None
    for key in ("path", "filePath", "file_path"):
        value = args.get(key)
        if value:
            return value
    return None


def is_private_dir_path(args: Any, project_root: str | Path | None = None) -> bool:
    """True if the tool arguments target a path inside ``.setu/``."""
    result = validate_private_dir_path(extract_path_arg(args), project_root=project_root)
    if not result.valid:
        logger.debug("Private-dir check failed: %s", result.error)
    return result.valid
