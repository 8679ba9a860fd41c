"""Repository-wide pytest configuration.

The repository root is pinned on ``sys.path`` so the service, route and
backend packages resolve regardless of the invocation directory.  Settings
are reset around every test because several suites override environment
variables that the cached settings snapshot would otherwise keep.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Importing the service module builds an application; keep it in memory.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LEDGER_MODE", "local")


@pytest.fixture(autouse=True)
def _reset_settings():
    from veiledcasts.config import reset_settings

    reset_settings()
    yield
    reset_settings()
