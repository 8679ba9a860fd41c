"""Relational projection of polls and the weekly nomination selections."""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

from backend.database import Database
from veiledcasts.errors import CapacityError, DuplicateError

LOGGER = logging.getLogger(__name__)

NOMINATION = "nomination"
VOTING = "voting"
COMPLETED = "completed"
ARCHIVED = "archived"
STATUSES = (NOMINATION, VOTING, COMPLETED, ARCHIVED)

_POLL_COLUMNS = (
    "id, onchain_id, chain_address, chain_authority, creator_wallet, question, options, status, "
    "section, week_id, selection_count, deadline, promoted_at, revealed_at, archived_at, "
    "vote_counts, winner, create_tx_signature, reveal_tx_signature, created_at, updated_at"
)
_SELECTION_COLUMNS = "id, poll_id, wallet, week_id, created_at"


def _now() -> float:
    return time.time()


def _decode_list(payload: Any) -> Optional[List[Any]]:
    if payload in (None, "", b""):
        return None
    if isinstance(payload, list):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
    try:
        value = json.loads(payload)
    except ValueError:
        LOGGER.warning("Failed to decode JSON column", exc_info=True)
        return None
    return value if isinstance(value, list) else None


def _optional_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


@dataclass(slots=True)
class DaoPoll:
    id: str
    onchain_id: Optional[int]
    chain_address: Optional[str]
    chain_authority: Optional[str]
    creator_wallet: str
    question: str
    options: List[str]
    status: str
    section: str
    week_id: str
    selection_count: int
    deadline: Optional[float]
    promoted_at: Optional[float]
    revealed_at: Optional[float]
    archived_at: Optional[float]
    vote_counts: Optional[List[int]]
    winner: Optional[int]
    create_tx_signature: Optional[str]
    reveal_tx_signature: Optional[str]
    created_at: float
    updated_at: float

    @property
    def is_revealed(self) -> bool:
        return self.revealed_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class Selection:
    id: str
    poll_id: str
    wallet: str
    week_id: str
    created_at: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _row_to_poll(row) -> DaoPoll:
    return DaoPoll(
        id=str(row[0]),
        onchain_id=int(row[1]) if row[1] is not None else None,
        chain_address=row[2],
        chain_authority=row[3],
        creator_wallet=row[4],
        question=row[5],
        options=[str(option) for option in _decode_list(row[6]) or []],
        status=row[7],
        section=row[8],
        week_id=row[9],
        selection_count=int(row[10] or 0),
        deadline=_optional_float(row[11]),
        promoted_at=_optional_float(row[12]),
        revealed_at=_optional_float(row[13]),
        archived_at=_optional_float(row[14]),
        vote_counts=[int(count) for count in _decode_list(row[15]) or []] if row[15] is not None else None,
        winner=int(row[16]) if row[16] is not None else None,
        create_tx_signature=row[17],
        reveal_tx_signature=row[18],
        created_at=float(row[19]),
        updated_at=float(row[20]),
    )


def _row_to_selection(row) -> Selection:
    return Selection(
        id=str(row[0]),
        poll_id=str(row[1]),
        wallet=row[2],
        week_id=row[3],
        created_at=float(row[4]),
    )


class PollRepository:
    """Queries and lifecycle transitions for the ``dao_polls`` table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def create(
        self,
        *,
        creator_wallet: str,
        question: str,
        options: Sequence[str],
        week_id: str,
        now: Optional[float] = None,
    ) -> DaoPoll:
        poll_id = uuid.uuid4().hex
        timestamp = now if now is not None else _now()
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO dao_polls (id, creator_wallet, question, options, status, section, week_id,
                                       selection_count, created_at, updated_at)
                VALUES ({p}, {p}, {p}, {p}, {p}, {p}, {p}, 0, {p}, {p})
                """,
                (poll_id, creator_wallet, question, json.dumps(list(options)), NOMINATION, NOMINATION, week_id,
                 timestamp, timestamp),
            )
            cur.execute(f"SELECT {_POLL_COLUMNS} FROM dao_polls WHERE id = {p}", (poll_id,))
            row = cur.fetchone()
        return _row_to_poll(row)

    def record_ledger_poll(
        self,
        *,
        onchain_id: int,
        creator_wallet: str,
        question: str,
        options: Sequence[str],
        week_id: str,
        chain_address: str,
        chain_authority: str,
        tx_signature: Optional[str],
        deadline: Optional[float] = None,
        now: Optional[float] = None,
    ) -> DaoPoll:
        """Insert or refresh the projection of a poll created directly on the ledger."""

        timestamp = now if now is not None else _now()
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO dao_polls (id, onchain_id, chain_address, chain_authority, creator_wallet, question,
                                       options, status, section, week_id, selection_count, deadline,
                                       promoted_at, create_tx_signature, created_at, updated_at)
                VALUES ({p}, {p}, {p}, {p}, {p}, {p}, {p}, {p}, {p}, {p}, 0, {p}, {p}, {p}, {p}, {p})
                ON CONFLICT(onchain_id) DO UPDATE SET
                    chain_address = excluded.chain_address,
                    chain_authority = excluded.chain_authority,
                    create_tx_signature = COALESCE(dao_polls.create_tx_signature, excluded.create_tx_signature),
                    updated_at = excluded.updated_at
                """,
                (uuid.uuid4().hex, onchain_id, chain_address, chain_authority, creator_wallet, question,
                 json.dumps(list(options)), VOTING, VOTING, week_id, deadline, timestamp, tx_signature,
                 timestamp, timestamp),
            )
            cur.execute(f"SELECT {_POLL_COLUMNS} FROM dao_polls WHERE onchain_id = {p}", (onchain_id,))
            row = cur.fetchone()
        return _row_to_poll(row)

    def get(self, poll_id: str) -> Optional[DaoPoll]:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(f"SELECT {_POLL_COLUMNS} FROM dao_polls WHERE id = {p}", (poll_id,))
            row = cur.fetchone()
        return _row_to_poll(row) if row else None

    def get_by_onchain_id(self, onchain_id: int) -> Optional[DaoPoll]:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(f"SELECT {_POLL_COLUMNS} FROM dao_polls WHERE onchain_id = {p}", (onchain_id,))
            row = cur.fetchone()
        return _row_to_poll(row) if row else None

    def list(
        self,
        *,
        section: Optional[str] = None,
        week_id: Optional[str] = None,
        sort: str = "created",
        limit: int = 50,
        offset: int = 0,
    ) -> List[DaoPoll]:
        p = self._db.placeholder()
        clauses: List[str] = []
        params: List[Any] = []
        if section:
            clauses.append(f"section = {p}")
            params.append(section)
        if week_id:
            clauses.append(f"week_id = {p}")
            params.append(week_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        order = (
            "selection_count DESC, created_at ASC, id ASC"
            if sort == "selections"
            else "created_at DESC, id ASC"
        )
        params.extend([int(limit), int(offset)])
        with self._db.transaction() as cur:
            cur.execute(
                f"SELECT {_POLL_COLUMNS} FROM dao_polls {where} ORDER BY {order} LIMIT {p} OFFSET {p}",
                tuple(params),
            )
            rows = cur.fetchall()
        return [_row_to_poll(row) for row in rows or []]

    def top_nominees(self, week_id: str, limit: int) -> List[DaoPoll]:
        """Highest-selected unpromoted nominations of ``week_id``.

        Ties on ``selection_count`` go to the earlier proposal, then to the
        lower id.
        """

        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"""
                SELECT {_POLL_COLUMNS} FROM dao_polls
                WHERE status = {p} AND section = {p} AND week_id = {p} AND promoted_at IS NULL
                ORDER BY selection_count DESC, created_at ASC, id ASC
                LIMIT {p}
                """,
                (NOMINATION, NOMINATION, week_id, int(limit)),
            )
            rows = cur.fetchall()
        return [_row_to_poll(row) for row in rows or []]

    def stale_nominations(self, cutoff: float) -> List[DaoPoll]:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"""
                SELECT {_POLL_COLUMNS} FROM dao_polls
                WHERE status = {p} AND promoted_at IS NULL AND created_at < {p}
                ORDER BY created_at ASC, id ASC
                """,
                (NOMINATION, cutoff),
            )
            rows = cur.fetchall()
        return [_row_to_poll(row) for row in rows or []]

    def due_for_reveal(self, now: float) -> List[DaoPoll]:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"""
                SELECT {_POLL_COLUMNS} FROM dao_polls
                WHERE status = {p} AND deadline IS NOT NULL AND deadline < {p} AND revealed_at IS NULL
                ORDER BY deadline ASC, id ASC
                """,
                (VOTING, now),
            )
            rows = cur.fetchall()
        return [_row_to_poll(row) for row in rows or []]

    def next_onchain_id(self) -> int:
        with self._db.transaction() as cur:
            cur.execute("SELECT MAX(onchain_id) FROM dao_polls")
            row = cur.fetchone()
        return int(row[0]) + 1 if row and row[0] is not None else 0

    def set_ledger_mapping(
        self,
        poll_id: str,
        *,
        onchain_id: int,
        chain_address: str,
        chain_authority: str,
        tx_signature: Optional[str],
        now: Optional[float] = None,
    ) -> None:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"""
                UPDATE dao_polls SET onchain_id = {p}, chain_address = {p}, chain_authority = {p},
                    create_tx_signature = {p}, updated_at = {p}
                WHERE id = {p}
                """,
                (onchain_id, chain_address, chain_authority, tx_signature, now if now is not None else _now(),
                 poll_id),
            )

    def mark_voting(self, poll_id: str, *, deadline: float, promoted_at: float) -> bool:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"""
                UPDATE dao_polls SET status = {p}, section = {p}, deadline = {p}, promoted_at = {p}, updated_at = {p}
                WHERE id = {p} AND status = {p} AND promoted_at IS NULL
                """,
                (VOTING, VOTING, deadline, promoted_at, promoted_at, poll_id, NOMINATION),
            )
            return cur.rowcount > 0

    def mark_completed(
        self,
        poll_id: str,
        *,
        vote_counts: Sequence[int],
        winner: Optional[int],
        revealed_at: float,
        tx_signature: Optional[str],
    ) -> None:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"""
                UPDATE dao_polls SET status = {p}, section = {p}, vote_counts = {p}, winner = {p},
                    revealed_at = COALESCE(revealed_at, {p}), reveal_tx_signature = {p}, updated_at = {p}
                WHERE id = {p}
                """,
                (COMPLETED, COMPLETED, json.dumps([int(count) for count in vote_counts]), winner, revealed_at,
                 tx_signature, revealed_at, poll_id),
            )

    def mark_archived(self, poll_id: str, *, archived_at: float) -> bool:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"""
                UPDATE dao_polls SET status = {p}, section = {p}, archived_at = {p}, updated_at = {p}
                WHERE id = {p} AND status = {p} AND promoted_at IS NULL
                """,
                (ARCHIVED, ARCHIVED, archived_at, archived_at, poll_id, NOMINATION),
            )
            return cur.rowcount > 0


class SelectionRepository:
    """Weekly nominations. The cap and the poll counter live in store triggers."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def add(self, *, poll_id: str, wallet: str, week_id: str, now: Optional[float] = None) -> Selection:
        selection_id = uuid.uuid4().hex
        timestamp = now if now is not None else _now()
        p = self._db.placeholder()
        try:
            with self._db.transaction() as cur:
                cur.execute(
                    f"""
                    INSERT INTO selections (id, poll_id, wallet, week_id, created_at)
                    VALUES ({p}, {p}, {p}, {p}, {p})
                    """,
                    (selection_id, poll_id, wallet, week_id, timestamp),
                )
        except self._db.integrity_errors as exc:
            if "selection limit reached" in str(exc).lower():
                raise CapacityError("Selection limit reached") from exc
            raise DuplicateError("You have already selected this poll") from exc
        return Selection(id=selection_id, poll_id=poll_id, wallet=wallet, week_id=week_id, created_at=timestamp)

    def get(self, selection_id: str) -> Optional[Selection]:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(f"SELECT {_SELECTION_COLUMNS} FROM selections WHERE id = {p}", (selection_id,))
            row = cur.fetchone()
        return _row_to_selection(row) if row else None

    def find(self, *, poll_id: str, wallet: str, week_id: str) -> Optional[Selection]:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"SELECT {_SELECTION_COLUMNS} FROM selections WHERE poll_id = {p} AND wallet = {p} AND week_id = {p}",
                (poll_id, wallet, week_id),
            )
            row = cur.fetchone()
        return _row_to_selection(row) if row else None

    def remove(self, selection_id: str) -> Optional[Selection]:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(f"SELECT {_SELECTION_COLUMNS} FROM selections WHERE id = {p}", (selection_id,))
            row = cur.fetchone()
            if row is None:
                return None
            cur.execute(f"DELETE FROM selections WHERE id = {p}", (selection_id,))
        return _row_to_selection(row)

    def delete_for_poll(self, poll_id: str) -> int:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(f"DELETE FROM selections WHERE poll_id = {p}", (poll_id,))
            return max(cur.rowcount, 0)

    def count_for_wallet(self, wallet: str, week_id: str) -> int:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"SELECT COUNT(*) FROM selections WHERE wallet = {p} AND week_id = {p}",
                (wallet, week_id),
            )
            row = cur.fetchone()
        return int(row[0]) if row else 0

    def count_for_poll(self, poll_id: str) -> int:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(f"SELECT COUNT(*) FROM selections WHERE poll_id = {p}", (poll_id,))
            row = cur.fetchone()
        return int(row[0]) if row else 0

    def list_for_wallet(self, wallet: str, week_id: str) -> List[Selection]:
        p = self._db.placeholder()
        with self._db.transaction() as cur:
            cur.execute(
                f"""
                SELECT {_SELECTION_COLUMNS} FROM selections
                WHERE wallet = {p} AND week_id = {p}
                ORDER BY created_at DESC, id ASC
                """,
                (wallet, week_id),
            )
            rows = cur.fetchall()
        return [_row_to_selection(row) for row in rows or []]


__all__ = [
    "ARCHIVED",
    "COMPLETED",
    "DaoPoll",
    "NOMINATION",
    "PollRepository",
    "STATUSES",
    "Selection",
    "SelectionRepository",
    "VOTING",
]
