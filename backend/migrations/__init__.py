"""Ordered schema migrations for the relational metadata store."""

from __future__ import annotations

from backend.migrations.polls.migration_0001_initial import Migration0001Initial

MIGRATIONS = [Migration0001Initial()]

__all__ = ["MIGRATIONS"]
