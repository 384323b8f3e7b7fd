# Setu
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Pytest configuration for Setu tests."""

import sys
from pathlib import Path

import pytest

# Ensure src/setu is importable
src_path = str(Path(__file__).parent.parent / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """An empty project root (scout gear)."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def private_dir(project: Path) -> Path:
    path = project / ".setu"
    path.mkdir()
    return path


@pytest.fixture
def architect_project(project: Path, private_dir: Path) -> Path:
    (private_dir / "RESEARCH.md").write_text("# Research\n")
    return project


@pytest.fixture
def builder_project(architect_project: Path) -> Path:
    (architect_project / ".setu" / "PLAN.md").write_text("# Plan\n")
    return architect_project
