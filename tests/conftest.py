"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src directory to Python path
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# Scripted child used by process tests
CHILD_SCRIPT = Path(__file__).parent / "fixtures" / "child.py"


@pytest.fixture
def child_script() -> Path:
    """Path to the scripted child process."""
    return CHILD_SCRIPT


@pytest.fixture
def fast_config():
    """Config with short termination timeouts for testing."""
    from managed_process.config import Config

    return Config(term_timeout=0.5, kill_timeout=0.3)
