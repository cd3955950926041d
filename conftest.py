"""Repository-wide pytest configuration.

Pins the repository root on ``sys.path`` so ``delegation`` and ``routes``
resolve without an install, and clears process-wide singletons between
tests so environment overrides take effect.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent

# Make repository modules importable regardless of the invocation directory.
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("PYTHONPATH", str(ROOT))


@pytest.fixture(autouse=True)
def _reset_delegation_state():
    """Drop cached settings and the shared engine before and after each test."""

    from delegation.config import get_settings
    from delegation.service import reset_engine

    get_settings.cache_clear()
    reset_engine()
    yield
    get_settings.cache_clear()
    reset_engine()
