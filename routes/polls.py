"""Read-only views of ledger polls: participation and reveal state."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query

from veiledcasts.runtime import Runtime

from .common import get_runtime

router = APIRouter(prefix="/api/polls", tags=["polls"])


@router.get("/{onchain_id}/vote")
def has_voted(
    onchain_id: int,
    wallet: str = Query(..., min_length=1),
    runtime: Runtime = Depends(get_runtime),
) -> Dict[str, Any]:
    record = runtime.reconciler.votes.get(onchain_id, wallet)
    return {
        "pollId": onchain_id,
        "wallet": wallet,
        "hasVoted": record is not None,
        "transactionSignature": record.transaction_signature if record else None,
        "votedAt": record.voted_at if record else None,
    }


@router.get("/{onchain_id}/reveal")
def reveal_state(onchain_id: int, runtime: Runtime = Depends(get_runtime)) -> Dict[str, Any]:
    poll = runtime.reconciler.polls.get_by_onchain_id(onchain_id)
    if poll is None:
        raise HTTPException(status_code=404, detail="Poll not found")
    return {
        "pollId": onchain_id,
        "question": poll.question,
        "options": poll.options,
        "status": poll.status,
        "revealed": poll.is_revealed,
        "voteCounts": poll.vote_counts,
        "winner": poll.winner,
        "revealedAt": poll.revealed_at,
        "revealSignature": poll.reveal_tx_signature,
    }


__all__ = ["router"]
