from __future__ import annotations

import asyncio

import httpx
import pytest

from backend.models.dao import ARCHIVED, COMPLETED, NOMINATION, VOTING
from backend.models.points import POLL_PROMOTED
from veiledcasts.errors import CapacityError, DuplicateError, ValidationError
from veiledcasts.ledger.accounts import encode_poll_account
from veiledcasts.ledger.instructions import CREATE_POLL, REVEAL
from veiledcasts.ledger.simulator import LocalLedger
from veiledcasts.nominations import propose_poll
from veiledcasts.weeks import week_id
from veiledcasts.workflows.scheduler import DAY, TaskAlreadyRunning

NOW = 1_792_000_000.0  # Wednesday, 2026-10-14 UTC


def _propose(runtime, question: str, *, wallet: str = "creator", now: float = NOW):
    return propose_poll(
        runtime.database,
        creator_wallet=wallet,
        question=question,
        options=["Alpha", "Beta"],
        rules=runtime.proposal_rules,
        now=now,
    )


def _select(runtime, poll, count: int, *, now: float = NOW) -> None:
    for index in range(count):
        runtime.selections.select(poll.id, f"{poll.id}-wallet-{index}", now=now)


def test_proposal_validation_and_points(make_runtime) -> None:
    runtime = make_runtime()
    with pytest.raises(ValidationError):
        _propose(runtime, "Too short")
    with pytest.raises(ValidationError):
        propose_poll(
            runtime.database,
            creator_wallet="creator",
            question="Enough characters here",
            options=["A", "B", "C", "D", "E"],
            rules=runtime.proposal_rules,
        )
    poll = _propose(runtime, "Should we fund the hackathon?")
    assert poll.status == NOMINATION
    assert poll.week_id == week_id(NOW)
    assert runtime.reconciler.points.balance("creator") == 5


def test_selection_cap_and_deselect(make_runtime) -> None:
    runtime = make_runtime()
    polls = [_propose(runtime, f"Nomination number {index}") for index in range(6)]
    outcomes = [runtime.selections.select(poll.id, "alice", now=NOW) for poll in polls[:5]]
    assert [outcome.remaining for outcome in outcomes] == [4, 3, 2, 1, 0]
    with pytest.raises(CapacityError):
        runtime.selections.select(polls[5].id, "alice", now=NOW)
    with pytest.raises(DuplicateError):
        runtime.selections.select(polls[0].id, "alice", now=NOW)

    outcome = runtime.selections.deselect(outcomes[0].selection.id, wallet="alice")
    assert outcome.remaining == 1
    assert runtime.reconciler.polls.get(polls[0].id).selection_count == 0
    runtime.selections.select(polls[5].id, "alice", now=NOW)
    assert runtime.reconciler.polls.get(polls[5].id).selection_count == 1
    # One point per selection made; deselecting does not take points back.
    assert runtime.reconciler.points.balance("alice") == 6


def test_archive_moves_only_stale_unpromoted_nominations(make_runtime) -> None:
    runtime = make_runtime()
    stale = _propose(runtime, "Forgotten nomination", now=NOW - 40 * DAY)
    fresh = _propose(runtime, "Recent nomination here", now=NOW - DAY)
    promoted = _propose(runtime, "Old but promoted poll", now=NOW - 40 * DAY)
    runtime.selections.select(stale.id, "alice", now=NOW - 40 * DAY)
    runtime.reconciler.polls.mark_voting(promoted.id, deadline=NOW + DAY, promoted_at=NOW - 35 * DAY)

    summary = asyncio.run(runtime.scheduler.archive_nominations(NOW))
    assert summary["success"] is True
    assert summary["archived"] == 1
    assert summary["polls"][0]["id"] == stale.id
    assert summary["polls"][0]["selectionsRemoved"] == 1
    assert runtime.reconciler.polls.get(stale.id).status == ARCHIVED
    assert runtime.reconciler.polls.get(fresh.id).status == NOMINATION
    assert runtime.reconciler.polls.get(promoted.id).status == VOTING

    again = asyncio.run(runtime.scheduler.archive_nominations(NOW))
    assert again["archived"] == 0


def test_promote_takes_top_five_with_deterministic_ties(make_runtime) -> None:
    runtime = make_runtime()
    polls = [_propose(runtime, f"Weekly candidate {index}", now=NOW + index) for index in range(7)]
    for poll, count in zip(polls, (1, 4, 2, 2, 3, 2, 0)):
        _select(runtime, poll, count)

    summary = asyncio.run(runtime.scheduler.promote_polls(NOW + 3600))
    assert summary["promoted"] == 5
    assert summary["weekId"] == week_id(NOW)
    # Counts 4, 3, then three tied at 2 of which the two oldest fit.
    assert [item["id"] for item in summary["polls"]] == [polls[i].id for i in (1, 4, 2, 3, 5)]
    assert [item["onchainId"] for item in summary["polls"]] == [0, 1, 2, 3, 4]
    assert summary["deadline"] == NOW + 3600 + 7 * DAY
    assert summary["pointsAwarded"] == {"creator": 50}

    for item in summary["polls"]:
        poll = runtime.reconciler.polls.get(item["id"])
        assert poll.status == VOTING
        assert poll.chain_authority == str(runtime.ledger.payer)
    assert runtime.reconciler.polls.get(polls[0].id).status == NOMINATION
    assert len([item for item in runtime.ledger.submissions if item.action == CREATE_POLL]) == 5


def test_promote_rerun_does_not_recreate_ledger_polls(make_runtime) -> None:
    runtime = make_runtime()
    polls = [_propose(runtime, f"Only candidate {index}") for index in range(2)]
    for poll in polls:
        _select(runtime, poll, 1)

    first = asyncio.run(runtime.scheduler.promote_polls(NOW))
    second = asyncio.run(runtime.scheduler.promote_polls(NOW + 60))
    assert first["promoted"] == 2
    assert second["promoted"] == 0
    assert len(runtime.ledger.submissions) == 2
    history = runtime.reconciler.points.history("creator")
    assert len([entry for entry in history if entry.reason == POLL_PROMOTED]) == 2


def test_promote_finishes_partially_promoted_poll(make_runtime) -> None:
    runtime = make_runtime()
    poll = _propose(runtime, "Mapped but never promoted")
    _select(runtime, poll, 1)
    runtime.reconciler.polls.set_ledger_mapping(
        poll.id, onchain_id=12, chain_address="addr", chain_authority=str(runtime.ledger.payer), tx_signature="s"
    )

    summary = asyncio.run(runtime.scheduler.promote_polls(NOW))
    assert summary["promoted"] == 1
    assert summary["polls"][0]["onchainId"] == 12
    assert runtime.ledger.submissions == []


def test_promote_adopts_existing_ledger_poll(make_runtime) -> None:
    runtime = make_runtime()
    poll = _propose(runtime, "Created before the crash")
    _select(runtime, poll, 1)
    address = runtime.deriver.poll(0)
    runtime.ledger._state.accounts[address] = encode_poll_account(
        poll_id=0,
        authority=runtime.ledger.payer,
        nonce=1,
        question=poll.question,
        vote_state=[],
        options=poll.options,
    )

    summary = asyncio.run(runtime.scheduler.promote_polls(NOW))
    assert summary["promoted"] == 1
    assert runtime.ledger.submissions == []
    assert runtime.reconciler.polls.get(poll.id).chain_address == str(address)


def test_promote_with_no_nominees(make_runtime) -> None:
    runtime = make_runtime()
    summary = asyncio.run(runtime.scheduler.promote_polls(NOW))
    assert summary == {"success": True, "message": "No polls to promote", "promoted": 0, "weekId": week_id(NOW), "polls": []}


def test_concurrent_trigger_is_rejected(make_runtime) -> None:
    runtime = make_runtime()
    runtime.scheduler._inflight.add("auto-reveal")
    with pytest.raises(TaskAlreadyRunning):
        asyncio.run(runtime.scheduler.auto_reveal(NOW))


def test_full_week_promote_vote_auto_reveal(make_runtime, voter) -> None:
    runtime = make_runtime()
    poll = _propose(runtime, "Which venue for the meetup?")
    _select(runtime, poll, 2)

    async def scenario():
        promoted = await runtime.scheduler.promote_polls(NOW)
        onchain_id = promoted["polls"][0]["onchainId"]
        for choice in (0, 1, 0):
            pipeline = voter(runtime)
            await pipeline.cast_vote(await pipeline.resolve_target(onchain_id), choice, wait=True)
        early = await runtime.scheduler.auto_reveal(NOW + DAY)
        assert early["revealed"] == 0
        return await runtime.scheduler.auto_reveal(NOW + 7 * DAY + 2 * 3600)

    summary = asyncio.run(scenario())
    assert summary["revealed"] == 1
    assert summary["polls"][0]["voteCounts"] == [2, 1]
    assert summary["polls"][0]["winner"] == 0
    stored = runtime.reconciler.polls.get(poll.id)
    assert stored.status == COMPLETED
    assert stored.vote_counts == [2, 1]

    rerun = asyncio.run(runtime.scheduler.auto_reveal(NOW + 8 * DAY))
    assert rerun["revealed"] == 0


def test_auto_reveal_continues_after_failure(make_runtime) -> None:
    runtime = make_runtime()
    orphan = _propose(runtime, "Never reached the ledger")
    runtime.reconciler.polls.mark_voting(orphan.id, deadline=NOW - 10, promoted_at=NOW - 7 * DAY)

    summary = asyncio.run(runtime.scheduler.auto_reveal(NOW))
    assert summary["revealed"] == 0
    assert summary["errors"] == [{"pollId": orphan.id, "error": "No onchain_id"}]


class UnreachableRevealLedger(LocalLedger):
    """Loses the connection whenever poll ``unreachable`` is revealed."""

    unreachable = 0

    async def submit(self, instruction):
        if instruction.action == REVEAL and instruction.poll_id == self.unreachable:
            raise httpx.ConnectError("rpc unreachable")
        return await super().submit(instruction)


def test_auto_reveal_continues_after_transport_error(make_runtime) -> None:
    ledger = UnreachableRevealLedger()
    runtime = make_runtime(ledger)
    first = _propose(runtime, "First poll on the ledger")
    second = _propose(runtime, "Second poll on the ledger")
    _select(runtime, first, 2)
    _select(runtime, second, 1)

    async def scenario():
        promoted = await runtime.scheduler.promote_polls(NOW)
        assert [item["onchainId"] for item in promoted["polls"]] == [0, 1]
        return await runtime.scheduler.auto_reveal(NOW + 7 * DAY + 3600)

    summary = asyncio.run(scenario())
    assert summary["revealed"] == 1
    assert summary["polls"][0]["onchainId"] == 1
    [error] = summary["errors"]
    assert error["pollId"] == first.id
    assert "rpc unreachable" in error["error"]
    assert runtime.reconciler.polls.get(first.id).status == VOTING
    assert runtime.reconciler.polls.get(second.id).status == COMPLETED
    assert ledger._listeners == {}


class FirstCreateUnreachableLedger(LocalLedger):
    """Loses the connection on the first poll creation only."""

    create_failed = False

    async def submit(self, instruction):
        if instruction.action == CREATE_POLL and not self.create_failed:
            self.create_failed = True
            raise httpx.ConnectError("rpc unreachable")
        return await super().submit(instruction)


def test_promotion_continues_after_transport_error(make_runtime) -> None:
    runtime = make_runtime(FirstCreateUnreachableLedger())
    first = _propose(runtime, "Most selected this week")
    second = _propose(runtime, "Runner-up this week")
    _select(runtime, first, 3)
    _select(runtime, second, 1)

    summary = asyncio.run(runtime.scheduler.promote_polls(NOW))
    assert [item["id"] for item in summary["polls"]] == [second.id]
    assert summary["errors"][0]["pollId"] == first.id
    assert runtime.reconciler.polls.get(first.id).status == NOMINATION

    retried = asyncio.run(runtime.scheduler.promote_polls(NOW + 60))
    assert [item["id"] for item in retried["polls"]] == [first.id]
    assert runtime.reconciler.polls.get(first.id).status == VOTING
