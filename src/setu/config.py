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
"""Guard settings.

Settings are read from YAML. Two locations are supported:

- User-wide: ``$SETU_HOME/config.yaml`` (default ``~/.setu/config.yaml``)
- Project-local: ``<project>/.setu/config.yaml``

Categories, weights and thresholds of the pipeline are fixed and are
NOT configurable here. Settings only tune operational knobs (strict
mode, cache TTL, audit budget, rate limit, retry budget).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from setu.constants import FILE_CACHE_TTL_SECONDS, PRIVATE_DIR

logger = logging.getLogger("setu.config")

_SETU_HOME = Path(os.environ.get("SETU_HOME", Path.home() / ".setu"))
DEFAULT_CONFIG_PATH = _SETU_HOME / "config.yaml"
CONFIG_FILENAME = "config.yaml"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass
class GuardSettings:
    """Resolved operational settings for the enforcement pipeline."""

    strict: bool = False
    gear_cache_ttl_seconds: float = FILE_CACHE_TTL_SECONDS
    audit_enabled: bool = True
    audit_max_detail_bytes: int = 1000
    max_calls_per_minute: int = 0  # 0 = unlimited
    max_attempts: int = 3
    secrets_allowlist: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "strict": self.strict,
            "gear_cache_ttl_seconds": self.gear_cache_ttl_seconds,
            "audit": {
                "enabled": self.audit_enabled,
                "max_detail_bytes": self.audit_max_detail_bytes,
            },
            "max_calls_per_minute": self.max_calls_per_minute,
            "max_attempts": self.max_attempts,
            "secrets_allowlist": self.secrets_allowlist,
        }


def load_settings(path: Path | str | None = None) -> GuardSettings:
    """Load guard settings from a YAML file.

    A missing or invalid file yields the defaults. ``SETU_STRICT`` in the
    environment overrides the file's ``strict`` value.
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH

    settings = GuardSettings()
    if config_path.exists():
        try:
            raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
            if isinstance(raw, dict):
                settings = _parse_settings(raw)
            elif raw is not None:
                logger.warning("Invalid guard config at %s (not a mapping) -- using defaults", config_path)
        except (OSError, yaml.YAMLError) as exc:
            logger.error("Failed to load guard config %s: %s -- using defaults", config_path, exc)
    else:
        logger.debug("No guard config at %s -- using defaults", config_path)

    env_strict = os.environ.get("SETU_STRICT")
    if env_strict is not None:
        settings.strict = _bool(env_strict, settings.strict)

    return settings


def load_project_settings(project_root: Path | str) -> GuardSettings:
    """Load settings from ``<project>/.setu/config.yaml``."""
    return load_settings(Path(project_root) / PRIVATE_DIR / CONFIG_FILENAME)


def save_settings(settings: GuardSettings, path: Path | str | None = None) -> None:
    """Write settings to YAML."""
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(
        yaml.safe_dump(settings.to_dict(), default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    logger.info("Saved guard config to %s", config_path)


def _parse_settings(raw: dict) -> GuardSettings:
    """Parse a raw YAML mapping, dropping values of the wrong shape."""
    defaults = GuardSettings()

    audit = raw.get("audit", {})
    if not isinstance(audit, dict):
        audit = {}

    allowlist_raw = raw.get("secrets_allowlist", [])
    allowlist: list[dict[str, str]] = []
    if isinstance(allowlist_raw, list):
        for entry in allowlist_raw:
            if isinstance(entry, dict):
                allowlist.append({k: str(v) for k, v in entry.items() if k in ("pattern", "file")})

    return GuardSettings(
        strict=_bool(raw.get("strict"), defaults.strict),
        gear_cache_ttl_seconds=_non_negative_float(
            raw.get("gear_cache_ttl_seconds"), defaults.gear_cache_ttl_seconds
        ),
        audit_enabled=_bool(audit.get("enabled"), defaults.audit_enabled),
        audit_max_detail_bytes=_positive_int(
            audit.get("max_detail_bytes"), defaults.audit_max_detail_bytes
        ),
        max_calls_per_minute=_non_negative_int(
            raw.get("max_calls_per_minute"), defaults.max_calls_per_minute
        ),
        max_attempts=_positive_int(raw.get("max_attempts"), defaults.max_attempts),
        secrets_allowlist=[e for e in allowlist if e],
    )


def _bool(value: Any, default: bool) -> bool:
    """YAML booleans, 0/1 and quoted words like "false"; anything else is *default*."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUTHY:
            return True
        if word in _FALSY:
            return False
    return default

def _non_negative_float(value: Any, default: float) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if result >= 0 else default


def _non_negative_int(value: Any, default: int) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        return default
    return result if result >= 0 else default


def _positive_int(value: Any, default: int) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        return default
    return result if result > 0 else default
