"""Append-only points ledger; balances are always summed, never stored."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from backend.database import Database

POLL_CREATED = "poll_created"
SELECTION_MADE = "selection_made"
VOTE_CAST = "dao_vote_cast"
POLL_PROMOTED = "poll_promoted"


@dataclass(slots=True)
class PointEntry:
    id: int
    member_wallet: str
    amount: int
    reason: str
    reference_id: Optional[str]
    created_at: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PointsLedger:
    def __init__(self, database: Database) -> None:
        self._db = database

    def award(
        self,
        wallet: str,
        amount: int,
        reason: str,
        reference_id: Optional[str] = None,
        *,
        now: Optional[float] = None,
    ) -> None:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO point_transactions (member_wallet, amount, reason, reference_id, created_at)
                VALUES ({p}, {p}, {p}, {p}, {p})
                """,
                (wallet, int(amount), reason, reference_id, now if now is not None else time.time()),
            )

    def has_entry(self, wallet: str, reason: str, reference_id: str) -> bool:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"""
                SELECT 1 FROM point_transactions
                WHERE member_wallet = {p} AND reason = {p} AND reference_id = {p}
                LIMIT 1
                """,
                (wallet, reason, reference_id),
            )
            return cur.fetchone() is not None

    def award_once(self, wallet: str, amount: int, reason: str, reference_id: str, *, now: Optional[float] = None) -> bool:
        """Award unless an entry with the same reason and reference already exists."""

        if self.has_entry(wallet, reason, reference_id):
            return False
        self.award(wallet, amount, reason, reference_id, now=now)
        return True

    def balance(self, wallet: str) -> int:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"SELECT COALESCE(SUM(amount), 0) FROM point_transactions WHERE member_wallet = {p}",
                (wallet,),
            )
            row = cur.fetchone()
        return int(row[0]) if row else 0

    def history(self, wallet: str, *, limit: int = 50) -> List[PointEntry]:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"""
                SELECT id, member_wallet, amount, reason, reference_id, created_at
                FROM point_transactions WHERE member_wallet = {p}
                ORDER BY created_at DESC, id DESC LIMIT {p}
                """,
                (wallet, int(limit)),
            )
            rows = cur.fetchall()
        return [
            PointEntry(
                id=int(row[0]),
                member_wallet=row[1],
                amount=int(row[2]),
                reason=row[3],
                reference_id=row[4],
                created_at=float(row[5]),
            )
            for row in rows or []
        ]


__all__ = [
    "POLL_CREATED",
    "POLL_PROMOTED",
    "PointEntry",
    "PointsLedger",
    "SELECTION_MADE",
    "VOTE_CAST",
]
