"""Fixtures wiring an in-memory store and a local ledger for each test."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Iterator

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from backend.database import Database, open_database
from veiledcasts.ledger.addresses import AddressDeriver
from veiledcasts.ledger.simulator import LocalLedger

VOTING_PROGRAM_ID = "FHuabcvigE645KXLy4KCFCLkLx1jLxi1nwFYs8ajWyYd"
ARCIUM_PROGRAM_ID = "BKck65TgoKRokMjQM3datB9oRwJ8rAj2jxPXvHXUvcL6"


@pytest.fixture
def database() -> Iterator[Database]:
    db = open_database("sqlite:///:memory:")
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def deriver() -> AddressDeriver:
    return AddressDeriver(
        VOTING_PROGRAM_ID,
        ARCIUM_PROGRAM_ID,
        fee_pool="7MGSS4iKNM4sVib7bDZDJhVqB6EcchPwVnTKenCY1jt3",
        clock="FHriyvoZotYiFnbUzKFjzRSb2NiaC8RPWY7jtKuKhg65",
        cluster_offset=1078779259,
    )


@pytest.fixture
def ledger() -> LocalLedger:
    return LocalLedger()
