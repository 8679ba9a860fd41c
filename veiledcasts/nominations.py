"""Poll proposals and the weekly selection cap."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from backend.database import Database
from backend.migrations.polls.migration_0001_initial import SELECTION_CAP
from backend.models.dao import NOMINATION, DaoPoll, PollRepository, Selection, SelectionRepository
from backend.models.points import POLL_CREATED, SELECTION_MADE, PointsLedger

from .errors import CapacityError, DuplicateError, NotFoundError, ValidationError
from .weeks import week_id as current_week_id

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProposalRules:
    min_question_length: int = 10
    max_question_length: int = 100
    max_option_length: int = 50
    min_options: int = 2
    max_options: int = 4
    points: int = 5

    @classmethod
    def from_settings(cls, settings) -> "ProposalRules":
        return cls(
            min_question_length=settings.min_question_length,
            max_question_length=settings.max_question_length,
            max_option_length=settings.max_option_length,
            min_options=settings.min_options,
            max_options=settings.max_options,
            points=settings.points_poll_created,
        )


def propose_poll(
    database: Database,
    *,
    creator_wallet: str,
    question: str,
    options: Sequence[str],
    rules: ProposalRules = ProposalRules(),
    now: Optional[float] = None,
) -> DaoPoll:
    """Create a nomination for the current week and credit its creator."""

    question = (question or "").strip()
    cleaned = [str(option).strip() for option in options or []]
    if not creator_wallet:
        raise ValidationError("creator_wallet is required")
    if len(question) < rules.min_question_length:
        raise ValidationError(f"Question must be at least {rules.min_question_length} characters")
    if len(question) > rules.max_question_length:
        raise ValidationError(f"Question must be at most {rules.max_question_length} characters")
    if not rules.min_options <= len(cleaned) <= rules.max_options:
        raise ValidationError(f"Options must be an array with {rules.min_options}-{rules.max_options} items")
    if any(not option or len(option) > rules.max_option_length for option in cleaned):
        raise ValidationError(f"Each option needs 1-{rules.max_option_length} characters")

    timestamp = now if now is not None else time.time()
    poll = PollRepository(database).create(
        creator_wallet=creator_wallet,
        question=question,
        options=cleaned,
        week_id=current_week_id(timestamp),
        now=timestamp,
    )
    try:
        PointsLedger(database).award(creator_wallet, rules.points, POLL_CREATED, poll.id, now=timestamp)
    except Exception:
        LOGGER.warning("Failed to award proposal points", extra={"poll_id": poll.id}, exc_info=True)
    return poll


@dataclass(slots=True)
class SelectionOutcome:
    selection: Optional[Selection]
    remaining: int
    points_awarded: int = 0


class SelectionLedger:
    """Weekly nominations, at most :data:`SELECTION_CAP` per wallet.

    The count check here only gives a friendly early error.  The store trigger
    rejects the insert that would exceed the cap, and the poll counter is kept
    by triggers as well.
    """

    cap = SELECTION_CAP

    def __init__(self, database: Database, *, points: int = 1) -> None:
        self.polls = PollRepository(database)
        self.selections = SelectionRepository(database)
        self.points = PointsLedger(database)
        self._points = points

    def select(self, poll_id: str, wallet: str, *, now: Optional[float] = None) -> SelectionOutcome:
        if not poll_id or not wallet:
            raise ValidationError("Missing required fields: poll_id, wallet")
        timestamp = now if now is not None else time.time()
        week = current_week_id(timestamp)
        poll = self.polls.get(poll_id)
        if poll is None:
            raise NotFoundError("Poll not found")
        if poll.status != NOMINATION or poll.section != NOMINATION:
            raise ValidationError("Can only select polls in nomination section")
        if self.selections.find(poll_id=poll_id, wallet=wallet, week_id=week) is not None:
            raise DuplicateError("You have already selected this poll")
        held = self.selections.count_for_wallet(wallet, week)
        if held >= self.cap:
            raise CapacityError(f"Selection limit reached ({self.cap} per week). Deselect another poll first.")

        selection = self.selections.add(poll_id=poll_id, wallet=wallet, week_id=week, now=timestamp)
        awarded = 0
        try:
            self.points.award(wallet, self._points, SELECTION_MADE, selection.id, now=timestamp)
            awarded = self._points
        except Exception:
            LOGGER.warning("Failed to award selection points", extra={"selection_id": selection.id}, exc_info=True)
        remaining = max(self.cap - self.selections.count_for_wallet(wallet, week), 0)
        return SelectionOutcome(selection=selection, remaining=remaining, points_awarded=awarded)

    def deselect(self, selection_id: str, *, wallet: Optional[str] = None) -> SelectionOutcome:
        existing = self.selections.get(selection_id)
        if existing is None:
            raise NotFoundError("Selection not found")
        if wallet is not None and existing.wallet != wallet:
            raise NotFoundError("Selection not found")
        self.selections.remove(selection_id)
        remaining = max(self.cap - self.selections.count_for_wallet(existing.wallet, existing.week_id), 0)
        return SelectionOutcome(selection=existing, remaining=remaining)

    def current(self, wallet: str, *, now: Optional[float] = None) -> List[Selection]:
        return self.selections.list_for_wallet(wallet, current_week_id(now))


__all__ = ["ProposalRules", "SelectionLedger", "SelectionOutcome", "propose_poll"]
