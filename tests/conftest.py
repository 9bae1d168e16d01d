"""
Pytest configuration and shared fixtures for the shielded ledger tests.

This conftest.py:
1. Adds project root to sys.path for imports
2. Provides commonly-used fixtures via pytest's autodiscovery
"""

import sys
from pathlib import Path

import pytest

# =============================================================================
# Path Setup - Must happen before any local imports
# =============================================================================

# Get the project root (parent of tests/)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_TESTS_ROOT = Path(__file__).resolve().parent

# Add both project root and tests root to sys.path
for _path in [str(_PROJECT_ROOT), str(_TESTS_ROOT)]:
    if _path not in sys.path:
        sys.path.insert(0, _path)

# =============================================================================
# Import fixtures using importlib (more robust for pytest loading)
# =============================================================================

import importlib

_common = importlib.import_module("fixtures.common")

make_config = _common.make_config
make_commitment_payloads = _common.make_commitment_payloads
make_owned_notes = _common.make_owned_notes
expected_root = _common.expected_root


# =============================================================================
# Pytest Fixtures (autodiscovered by pytest)
# =============================================================================

@pytest.fixture
def config():
    """Small-tree runtime config with instant retries."""
    return make_config()


@pytest.fixture
def owned_notes():
    """Three owner notes with secret material (amounts 50, 30, 20)."""
    return make_owned_notes([50, 30, 20])


@pytest.fixture
def sleeps():
    """Records backoff delays instead of sleeping."""
    recorded: list[float] = []
    return recorded


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep SHIELDED_* variables from the developer's shell out of tests."""
    import os
    for key in list(os.environ):
        if key.startswith("SHIELDED_"):
            monkeypatch.delenv(key, raising=False)
