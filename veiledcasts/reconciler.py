"""Projection of durable ledger facts into the relational store.

A ledger action that succeeded is final.  Every relational write that follows
one goes through :meth:`DualStoreReconciler.project`: it is keyed by a natural
key so it can be replayed, and a failure is logged and kept for out-of-band
reconciliation instead of unwinding the ledger action.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Any, Callable, Deque, List, Optional, Sequence, TypeVar

from backend.database import Database
from backend.models.dao import DaoPoll, PollRepository
from backend.models.participation import VoteRecord, VoteRecordRepository
from backend.models.points import VOTE_CAST, PointsLedger

from .errors import ReconciliationError
from .ledger.events import RevealOutcome
from .metrics import PROJECTION_FAILURES

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class DualStoreReconciler:
    def __init__(self, database: Database, *, vote_points: int = 3, max_failures: int = 256) -> None:
        self.polls = PollRepository(database)
        self.votes = VoteRecordRepository(database)
        self.points = PointsLedger(database)
        self._vote_points = vote_points
        self._failures: Deque[ReconciliationError] = deque(maxlen=max_failures)

    @property
    def failures(self) -> List[ReconciliationError]:
        """Projection failures awaiting replay, oldest first."""

        return list(self._failures)

    def project(self, operation: str, key: Any, write: Callable[[], T]) -> Optional[T]:
        try:
            return write()
        except Exception as exc:
            error = ReconciliationError(f"{operation} projection failed: {exc}", operation=operation, key=key)
            self._failures.append(error)
            PROJECTION_FAILURES.labels(operation=operation).inc()
            LOGGER.warning(
                "Relational projection failed after ledger success",
                extra={"operation": operation, "key": key},
                exc_info=True,
            )
            return None

    # ------------------------------------------------------------------
    # Projections
    def record_vote(self, poll_id: int, wallet: str, signature: str, *, now: Optional[float] = None) -> Optional[VoteRecord]:
        def write() -> VoteRecord:
            record, created = self.votes.ensure(poll_id, wallet, signature, voted_at=now)
            if created and self._vote_points:
                self.points.award_once(wallet, self._vote_points, VOTE_CAST, f"{poll_id}:{wallet}", now=now)
            return record

        return self.project("record_vote", (poll_id, wallet), write)

    def record_reveal(
        self,
        poll: DaoPoll,
        outcome: RevealOutcome,
        signature: Optional[str],
        *,
        now: Optional[float] = None,
    ) -> Optional[DaoPoll]:
        revealed_at = now if now is not None else time.time()

        def write() -> Optional[DaoPoll]:
            self.polls.mark_completed(
                poll.id,
                vote_counts=outcome.vote_counts,
                winner=outcome.winner,
                revealed_at=revealed_at,
                tx_signature=signature,
            )
            return self.polls.get(poll.id)

        return self.project("record_reveal", poll.onchain_id, write)

    def record_created_poll(
        self,
        *,
        onchain_id: int,
        creator_wallet: str,
        question: str,
        options: Sequence[str],
        week_id: str,
        chain_address: str,
        signature: Optional[str],
        deadline: Optional[float] = None,
        now: Optional[float] = None,
    ) -> Optional[DaoPoll]:
        return self.project(
            "record_created_poll",
            onchain_id,
            lambda: self.polls.record_ledger_poll(
                onchain_id=onchain_id,
                creator_wallet=creator_wallet,
                question=question,
                options=options,
                week_id=week_id,
                chain_address=chain_address,
                chain_authority=creator_wallet,
                tx_signature=signature,
                deadline=deadline,
                now=now,
            ),
        )

    def record_ledger_mapping(
        self,
        poll: DaoPoll,
        *,
        onchain_id: int,
        chain_address: str,
        chain_authority: str,
        signature: Optional[str],
    ) -> bool:
        result = self.project(
            "record_ledger_mapping",
            poll.id,
            lambda: self.polls.set_ledger_mapping(
                poll.id,
                onchain_id=onchain_id,
                chain_address=chain_address,
                chain_authority=chain_authority,
                tx_signature=signature,
            )
            or True,
        )
        return bool(result)


__all__ = ["DualStoreReconciler"]
