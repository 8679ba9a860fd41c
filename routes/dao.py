"""Nomination board: proposals, weekly selections, participation and points."""

from __future__ import annotations

import time
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from backend.models.dao import STATUSES, VOTING
from backend.models.points import VOTE_CAST
from veiledcasts.errors import PollError
from veiledcasts.nominations import propose_poll
from veiledcasts.runtime import Runtime

from .common import get_runtime, http_error

router = APIRouter(prefix="/api", tags=["dao"])


class ProposalRequest(BaseModel):
    question: str = Field(..., description="Question shown to voters")
    options: List[str] = Field(..., description="Two to four answer labels")
    creator_wallet: str = Field(..., min_length=1)


class SelectionRequest(BaseModel):
    poll_id: str = Field(..., min_length=1)
    wallet: str = Field(..., min_length=1)


class VotingRecordRequest(BaseModel):
    poll_id: str = Field(..., min_length=1)
    wallet: str = Field(..., min_length=1)
    tx_signature: str = Field(..., min_length=1)


@router.post("/dao/polls")
def create_proposal(payload: ProposalRequest, runtime: Runtime = Depends(get_runtime)) -> Dict[str, Any]:
    try:
        poll = propose_poll(
            runtime.database,
            creator_wallet=payload.creator_wallet,
            question=payload.question,
            options=payload.options,
            rules=runtime.proposal_rules,
        )
    except PollError as exc:
        raise http_error(exc) from exc
    return {
        "success": True,
        "poll": poll.to_dict(),
        "pointsAwarded": runtime.proposal_rules.points,
        "message": "Poll created successfully in nomination section",
    }


@router.get("/dao/polls")
def list_polls(
    section: str = Query("nomination"),
    sort: Literal["newest", "popular"] = Query("newest"),
    week_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    runtime: Runtime = Depends(get_runtime),
) -> Dict[str, Any]:
    if section not in STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown section {section}")
    polls = runtime.reconciler.polls.list(
        section=section,
        week_id=week_id,
        sort="selections" if sort == "popular" else "created",
        limit=limit,
        offset=offset,
    )
    return {"polls": [poll.to_dict() for poll in polls], "count": len(polls)}


@router.post("/dao/selections")
def select_poll(payload: SelectionRequest, runtime: Runtime = Depends(get_runtime)) -> Dict[str, Any]:
    try:
        outcome = runtime.selections.select(payload.poll_id, payload.wallet)
    except PollError as exc:
        raise http_error(exc) from exc
    return {
        "success": True,
        "selection": outcome.selection.to_dict() if outcome.selection else None,
        "pointsAwarded": outcome.points_awarded,
        "remainingSelections": outcome.remaining,
        "message": f"Poll selected! {outcome.remaining} selections remaining this week.",
    }


@router.get("/dao/selections")
def list_selections(wallet: str = Query(..., min_length=1), runtime: Runtime = Depends(get_runtime)) -> Dict[str, Any]:
    selections = runtime.selections.current(wallet)
    items = []
    for selection in selections:
        poll = runtime.reconciler.polls.get(selection.poll_id)
        entry = selection.to_dict()
        entry["poll"] = poll.to_dict() if poll else None
        items.append(entry)
    return {
        "selections": items,
        "count": len(items),
        "remainingSelections": max(runtime.selections.cap - len(items), 0),
    }


@router.delete("/dao/selections/{selection_id}")
def deselect_poll(
    selection_id: str,
    wallet: Optional[str] = Query(None),
    runtime: Runtime = Depends(get_runtime),
) -> Dict[str, Any]:
    try:
        outcome = runtime.selections.deselect(selection_id, wallet=wallet)
    except PollError as exc:
        raise http_error(exc) from exc
    return {
        "success": True,
        "remainingSelections": outcome.remaining,
        "message": "Selection removed successfully",
    }


@router.post("/dao/voting-records")
def record_participation(payload: VotingRecordRequest, runtime: Runtime = Depends(get_runtime)) -> Dict[str, Any]:
    poll = runtime.reconciler.polls.get(payload.poll_id)
    if poll is None:
        raise HTTPException(status_code=404, detail="Poll not found")
    if poll.section != VOTING:
        raise HTTPException(status_code=400, detail="Can only vote on polls in voting section")
    if poll.deadline is not None and poll.deadline < time.time():
        raise HTTPException(status_code=400, detail="Voting period has ended for this poll")
    if poll.onchain_id is None:
        raise HTTPException(status_code=400, detail="Poll is not on the ledger yet")
    try:
        record = runtime.reconciler.votes.add(poll.onchain_id, payload.wallet, payload.tx_signature)
    except PollError as exc:
        raise http_error(exc) from exc
    points = runtime.settings.points_vote_cast
    runtime.reconciler.project(
        "award_vote_points",
        (poll.onchain_id, payload.wallet),
        lambda: runtime.reconciler.points.award_once(
            payload.wallet, points, VOTE_CAST, f"{poll.onchain_id}:{payload.wallet}"
        ),
    )
    return {"success": True, "record": record.to_dict(), "pointsAwarded": points}


@router.get("/members/{wallet}/points")
def member_points(wallet: str, limit: int = Query(50, ge=1, le=500), runtime: Runtime = Depends(get_runtime)) -> Dict[str, Any]:
    ledger = runtime.reconciler.points
    return {
        "wallet": wallet,
        "balance": ledger.balance(wallet),
        "history": [entry.to_dict() for entry in ledger.history(wallet, limit=limit)],
    }


__all__ = ["router"]
