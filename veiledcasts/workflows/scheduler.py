"""Weekly lifecycle tasks: archive, promote and auto-reveal."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from backend.database import Database
from backend.models.dao import DaoPoll, PollRepository, SelectionRepository
from backend.models.points import POLL_PROMOTED, PointsLedger

from ..errors import PollError
from ..ledger.accounts import decode_poll_account
from ..reveal import RevealCoordinator
from ..submission import VoteSubmissionPipeline
from ..weeks import week_id

LOGGER = logging.getLogger(__name__)

DAY = 24 * 60 * 60
_MAX_ID_PROBES = 64


class TaskAlreadyRunning(RuntimeError):
    """Raised when a lifecycle task is triggered while a run is in flight."""


class LifecycleScheduler:
    """Runs the three periodic tasks; each one can be re-triggered safely.

    ``pipeline`` and ``reveal`` must sign with the authority wallet that owns
    promoted polls on the ledger.
    """

    def __init__(
        self,
        database: Database,
        pipeline: VoteSubmissionPipeline,
        reveal: RevealCoordinator,
        *,
        promotion_count: int = 5,
        voting_window_days: int = 7,
        staleness_days: int = 30,
        promotion_points: int = 10,
        reveal_timeout: float = 120.0,
    ) -> None:
        self.polls = PollRepository(database)
        self.selections = SelectionRepository(database)
        self.points = PointsLedger(database)
        self.pipeline = pipeline
        self.reveal = reveal
        self.promotion_count = promotion_count
        self.voting_window = voting_window_days * DAY
        self.staleness_window = staleness_days * DAY
        self.promotion_points = promotion_points
        self.reveal_timeout = reveal_timeout
        self._inflight: set[str] = set()

    def _claim(self, task: str) -> None:
        if task in self._inflight:
            raise TaskAlreadyRunning(f"{task} is already running")
        self._inflight.add(task)

    # ------------------------------------------------------------------
    # Archive
    async def archive_nominations(self, now: Optional[float] = None) -> Dict[str, Any]:
        self._claim("archive-nominations")
        try:
            now = now if now is not None else time.time()
            cutoff = now - self.staleness_window
            archived: List[Dict[str, Any]] = []
            for poll in self.polls.stale_nominations(cutoff):
                if not self.polls.mark_archived(poll.id, archived_at=now):
                    continue
                removed = self.selections.delete_for_poll(poll.id)
                archived.append({"id": poll.id, "question": poll.question, "selectionsRemoved": removed})
            LOGGER.info("Archived %d stale nominations", len(archived), extra={"cutoff": cutoff})
            return {"success": True, "archived": len(archived), "polls": archived, "cutoff": cutoff}
        finally:
            self._inflight.discard("archive-nominations")

    # ------------------------------------------------------------------
    # Promote
    async def _place_on_ledger(self, poll: DaoPoll, candidate: int) -> Tuple[int, str, Optional[str]]:
        """Create ``poll`` on the ledger at the first free id from ``candidate``.

        An existing account holding the same question is adopted instead of
        creating a second one.
        """

        deriver = self.pipeline.builder.deriver
        for onchain_id in range(candidate, candidate + _MAX_ID_PROBES):
            address = deriver.poll(onchain_id, multi_option=True)
            data = await self.pipeline.ledger.get_account(address)
            if data is not None:
                try:
                    existing = decode_poll_account(data)
                except ValueError:
                    continue
                if existing.question == poll.question:
                    LOGGER.info("Adopting existing ledger poll %s for %s", onchain_id, poll.id)
                    return onchain_id, str(address), None
                continue
            if self.polls.get_by_onchain_id(onchain_id) is not None:
                continue
            result = await self.pipeline.create_poll(
                onchain_id, poll.question, poll.options, wait=False, project=False
            )
            return onchain_id, result.poll_address, result.signature
        raise PollError(f"No free ledger id found from {candidate}")

    async def promote_polls(self, now: Optional[float] = None) -> Dict[str, Any]:
        self._claim("promote-polls")
        try:
            return await self._promote(now if now is not None else time.time())
        finally:
            self._inflight.discard("promote-polls")

    async def _promote(self, now: float) -> Dict[str, Any]:
        week = week_id(now)
        deadline = now + self.voting_window
        candidates = self.polls.top_nominees(week, self.promotion_count)
        if not candidates:
            LOGGER.info("No polls to promote", extra={"week_id": week})
            return {"success": True, "message": "No polls to promote", "promoted": 0, "weekId": week, "polls": []}

        authority = str(self.pipeline.ledger.payer)
        next_id = self.polls.next_onchain_id()
        promoted: List[Dict[str, Any]] = []
        points_awarded: Dict[str, int] = {}
        errors: List[Dict[str, Any]] = []
        for poll in candidates:
            try:
                onchain_id = poll.onchain_id
                if onchain_id is None:
                    onchain_id, address, signature = await self._place_on_ledger(poll, next_id)
                    mapped = self.pipeline.reconciler.record_ledger_mapping(
                        poll,
                        onchain_id=onchain_id,
                        chain_address=address,
                        chain_authority=authority,
                        signature=signature,
                    )
                    next_id = max(next_id, onchain_id + 1)
                    if not mapped:
                        errors.append({"pollId": poll.id, "error": "Ledger mapping could not be stored"})
                        continue
                if not self.polls.mark_voting(poll.id, deadline=deadline, promoted_at=now):
                    continue
            except Exception as exc:
                LOGGER.warning("Failed to promote %s: %s", poll.id, exc, extra={"week_id": week}, exc_info=True)
                errors.append({"pollId": poll.id, "error": str(exc)})
                continue

            if self.points.award_once(poll.creator_wallet, self.promotion_points, POLL_PROMOTED, poll.id, now=now):
                points_awarded[poll.creator_wallet] = (
                    points_awarded.get(poll.creator_wallet, 0) + self.promotion_points
                )
            promoted.append(
                {
                    "id": poll.id,
                    "onchainId": onchain_id,
                    "question": poll.question,
                    "selections": poll.selection_count,
                    "creator": poll.creator_wallet,
                }
            )

        LOGGER.info("Promoted %d polls", len(promoted), extra={"week_id": week, "errors": len(errors)})
        summary: Dict[str, Any] = {
            "success": True,
            "weekId": week,
            "promoted": len(promoted),
            "polls": promoted,
            "pointsAwarded": points_awarded,
            "deadline": deadline,
        }
        if errors:
            summary["errors"] = errors
        return summary

    # ------------------------------------------------------------------
    # Auto-reveal
    async def auto_reveal(self, now: Optional[float] = None) -> Dict[str, Any]:
        self._claim("auto-reveal")
        try:
            now = now if now is not None else time.time()
            due = self.polls.due_for_reveal(now)
            revealed: List[Dict[str, Any]] = []
            errors: List[Dict[str, Any]] = []
            for poll in due:
                if poll.onchain_id is None:
                    LOGGER.warning("Poll %s has no ledger id, skipping", poll.id)
                    errors.append({"pollId": poll.id, "error": "No onchain_id"})
                    continue
                try:
                    result = await self.reveal.reveal(poll.onchain_id, poll=poll, timeout=self.reveal_timeout)
                except Exception as exc:
                    LOGGER.warning("Auto-reveal of %s failed: %s", poll.id, exc, exc_info=True)
                    errors.append({"pollId": poll.id, "onchainId": poll.onchain_id, "error": str(exc)})
                    continue
                revealed.append(
                    {
                        "id": poll.id,
                        "onchainId": poll.onchain_id,
                        "question": poll.question,
                        "voteCounts": list(result.outcome.vote_counts),
                        "winner": result.outcome.winner,
                        "signature": result.signature,
                    }
                )
            LOGGER.info("Auto-revealed %d of %d due polls", len(revealed), len(due))
            summary: Dict[str, Any] = {"success": True, "revealed": len(revealed), "polls": revealed}
            if errors:
                summary["errors"] = errors
            return summary
        finally:
            self._inflight.discard("auto-reveal")


__all__ = ["LifecycleScheduler", "TaskAlreadyRunning"]
