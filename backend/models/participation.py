"""Vote participation records: who voted on which ledger poll, never how."""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple

from backend.database import Database
from veiledcasts.errors import DuplicateError

_COLUMNS = "id, poll_id, voter_wallet, transaction_signature, voted_at"


@dataclass(slots=True)
class VoteRecord:
    id: str
    poll_id: int
    voter_wallet: str
    transaction_signature: str
    voted_at: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _row_to_record(row) -> VoteRecord:
    return VoteRecord(
        id=str(row[0]),
        poll_id=int(row[1]),
        voter_wallet=row[2],
        transaction_signature=row[3],
        voted_at=float(row[4]),
    )


class VoteRecordRepository:
    """``vote_records`` is unique per (poll, wallet); that constraint is the vote mutex."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def get(self, poll_id: int, wallet: str) -> Optional[VoteRecord]:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM vote_records WHERE poll_id = {p} AND voter_wallet = {p}",
                (poll_id, wallet),
            )
            row = cur.fetchone()
        return _row_to_record(row) if row else None

    def has_voted(self, poll_id: int, wallet: str) -> bool:
        return self.get(poll_id, wallet) is not None

    def add(self, poll_id: int, wallet: str, signature: str, *, voted_at: Optional[float] = None) -> VoteRecord:
        record = VoteRecord(
            id=uuid.uuid4().hex,
            poll_id=int(poll_id),
            voter_wallet=wallet,
            transaction_signature=signature,
            voted_at=voted_at if voted_at is not None else time.time(),
        )
        p = self._db.placeholder()
        try:
            with self._db.transaction() as cur:
                cur.execute(
                    f"INSERT INTO vote_records ({_COLUMNS}) VALUES ({p}, {p}, {p}, {p}, {p})",
                    (record.id, record.poll_id, record.voter_wallet, record.transaction_signature, record.voted_at),
                )
        except self._db.integrity_errors as exc:
            raise DuplicateError("You have already voted on this poll") from exc
        return record

    def ensure(
        self, poll_id: int, wallet: str, signature: str, *, voted_at: Optional[float] = None
    ) -> Tuple[VoteRecord, bool]:
        """Idempotent write keyed by (poll, wallet); returns the record and whether it is new."""

        try:
            return self.add(poll_id, wallet, signature, voted_at=voted_at), True
        except DuplicateError:
            existing = self.get(poll_id, wallet)
            if existing is None:
                raise
            return existing, False


__all__ = ["VoteRecord", "VoteRecordRepository"]
