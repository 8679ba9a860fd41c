from __future__ import annotations

import asyncio

import pytest
from solders.pubkey import Pubkey

from veiledcasts.errors import (
    AuthorizationError,
    ComputationTimeoutError,
    DuplicateError,
    EncryptionSetupError,
    ValidationError,
)
from veiledcasts.ledger.instructions import REVEAL
from veiledcasts.ledger.simulator import LocalLedger
from veiledcasts.reveal import RevealCoordinator
from veiledcasts.submission import SubmissionStatus


def test_three_voters_reveal_aggregate(make_runtime, voter) -> None:
    runtime = make_runtime()

    async def scenario():
        created = await runtime.pipeline.create_poll(0, "Which feature next?", ["Alpha", "Beta", "Gamma"])
        assert created.state.status is SubmissionStatus.CONFIRMED
        assert created.completion.callback == "InitMultiOptionVoteStatsCallback"
        for choice in (0, 1, 0):
            pipeline = voter(runtime)
            target = await pipeline.resolve_target(0)
            result = await pipeline.cast_vote(target, choice, wait=True)
            assert result.state.history == [
                SubmissionStatus.IDLE,
                SubmissionStatus.ENCRYPTING,
                SubmissionStatus.QUEUED,
                SubmissionStatus.PROCESSING,
                SubmissionStatus.CONFIRMED,
            ]
        return await runtime.reveal.reveal(0)

    result = asyncio.run(scenario())
    assert list(result.outcome.vote_counts) == [2, 1, 0]
    assert result.outcome.winner == 0
    assert result.persisted
    poll = runtime.reconciler.polls.get_by_onchain_id(0)
    assert poll.status == "completed"
    assert poll.vote_counts == [2, 1, 0]
    assert poll.winner == 0


def test_binary_poll_reports_winner_only(make_runtime, voter) -> None:
    runtime = make_runtime()

    async def scenario():
        await runtime.pipeline.create_poll(1, "Adopt the new logo?")
        for choice in (0, 0, 1):
            pipeline = voter(runtime)
            target = await pipeline.resolve_target(1)
            assert not target.multi_option
            await pipeline.cast_vote(target, choice, wait=True)
        return await runtime.reveal.reveal(1)

    result = asyncio.run(scenario())
    assert result.outcome.winner == 0
    assert result.outcome.vote_counts == ()


def test_ledger_never_sees_plaintext_choice(make_runtime, voter) -> None:
    runtime = make_runtime()

    async def scenario():
        await runtime.pipeline.create_poll(2, "Pick a colour", ["Red", "Blue"])
        pipeline = voter(runtime)
        await pipeline.cast_vote(await pipeline.resolve_target(2), 1, wait=True)

    asyncio.run(scenario())
    vote = runtime.ledger.submissions[-1]
    assert vote.ciphertext != (1).to_bytes(32, "little")
    assert len(vote.public_key) == 32


def test_duplicate_vote_rejected_before_submission(make_runtime, voter) -> None:
    runtime = make_runtime()

    async def scenario():
        await runtime.pipeline.create_poll(3, "Keep the weekly call?", ["Yes", "No"])
        pipeline = voter(runtime)
        target = await pipeline.resolve_target(3)
        await pipeline.cast_vote(target, 0)
        submitted = len(runtime.ledger.submissions)
        with pytest.raises(DuplicateError):
            await pipeline.cast_vote(target, 1)
        assert len(runtime.ledger.submissions) == submitted
        return pipeline.wallet

    wallet = asyncio.run(scenario())
    assert runtime.reconciler.votes.has_voted(3, wallet)
    assert runtime.reconciler.points.balance(wallet) == 3


def test_invalid_choice_and_question(make_runtime, voter) -> None:
    runtime = make_runtime()

    async def scenario():
        with pytest.raises(ValidationError):
            await runtime.pipeline.create_poll(4, "x" * 51)
        with pytest.raises(ValidationError):
            await runtime.pipeline.create_poll(4, "Too few options?", ["Only"])
        await runtime.pipeline.create_poll(4, "Pick one of two", ["A", "B"])
        with pytest.raises(DuplicateError):
            await runtime.pipeline.create_poll(4, "Pick one of two", ["A", "B"])
        pipeline = voter(runtime)
        with pytest.raises(ValidationError):
            await pipeline.cast_vote(await pipeline.resolve_target(4), 2)

    asyncio.run(scenario())


def test_reveal_requires_creator(make_runtime) -> None:
    runtime = make_runtime()

    async def scenario():
        await runtime.pipeline.create_poll(5, "Creator only reveal", ["A", "B"])
        submitted = len(runtime.ledger.submissions)
        outsider = runtime.ledger.for_wallet(Pubkey.new_unique())
        coordinator = RevealCoordinator(outsider, runtime.builder, runtime.reconciler)
        with pytest.raises(AuthorizationError):
            await coordinator.reveal(5)
        with pytest.raises(AuthorizationError):
            await runtime.reveal.reveal(5, caller="someone-else")
        assert len(runtime.ledger.submissions) == submitted

    asyncio.run(scenario())


def test_second_reveal_returns_stored_result(make_runtime, voter) -> None:
    runtime = make_runtime()

    async def scenario():
        await runtime.pipeline.create_poll(6, "Reveal twice?", ["A", "B"])
        pipeline = voter(runtime)
        await pipeline.cast_vote(await pipeline.resolve_target(6), 1, wait=True)
        first = await runtime.reveal.reveal(6)
        reveals = [item for item in runtime.ledger.submissions if item.action == REVEAL]
        second = await runtime.reveal.reveal(6)
        assert [item for item in runtime.ledger.submissions if item.action == REVEAL] == reveals
        return first, second

    first, second = asyncio.run(scenario())
    assert second.already_revealed
    assert second.outcome.vote_counts == (0, 1)
    assert second.outcome.winner == first.outcome.winner == 1
    assert second.signature == first.signature


def test_callback_landing_inside_submit_is_not_missed(make_runtime, voter) -> None:
    runtime = make_runtime(LocalLedger(inline_callbacks=True))

    async def scenario():
        created = await runtime.pipeline.create_poll(7, "Fast network?", ["A", "B"])
        assert created.completion is not None
        pipeline = voter(runtime)
        await pipeline.cast_vote(await pipeline.resolve_target(7), 0, wait=True)
        return await runtime.reveal.reveal(7, timeout=0.2)

    result = asyncio.run(scenario())
    assert result.outcome.vote_counts == (1, 0)


def test_missed_signal_recovered_from_ledger_state(make_runtime, voter) -> None:
    runtime = make_runtime(LocalLedger(deliver_signals=False), create_poll_timeout=0.05)

    async def scenario():
        created = await runtime.pipeline.create_poll(8, "Quiet network?", ["A", "B"])
        assert created.completion is not None
        assert not created.pending
        return await runtime.reveal.reveal(8, timeout=0.05)

    result = asyncio.run(scenario())
    assert result.outcome.vote_counts == (0, 0)
    assert result.outcome.winner == 0


def test_stalled_network_reports_pending_then_times_out(make_runtime) -> None:
    runtime = make_runtime(LocalLedger(callback_delay=None), create_poll_timeout=0.05)

    async def scenario():
        created = await runtime.pipeline.create_poll(9, "Stalled network?", ["A", "B"])
        assert created.pending
        with pytest.raises(ComputationTimeoutError):
            await runtime.reveal.reveal(9, timeout=0.05)

    asyncio.run(scenario())
    assert runtime.reconciler.polls.get_by_onchain_id(9).revealed_at is None


def test_key_published_late_is_retried(make_runtime, voter) -> None:
    runtime = make_runtime(LocalLedger(mxe_key_unavailable_for=2))

    async def scenario():
        await runtime.pipeline.create_poll(10, "Key arrives late", ["A", "B"])
        pipeline = voter(runtime)
        await pipeline.cast_vote(await pipeline.resolve_target(10), 0)

    asyncio.run(scenario())
    assert runtime.ledger._state.key_fetches == 3


def test_missing_key_fails_encryption_setup(make_runtime, voter) -> None:
    runtime = make_runtime(LocalLedger(mxe_key_unavailable_for=100))

    async def scenario():
        await runtime.pipeline.create_poll(11, "Key never arrives", ["A", "B"])
        pipeline = voter(runtime)
        states = []
        pipeline._on_status = lambda state: states.append(state.status)
        with pytest.raises(EncryptionSetupError):
            await pipeline.cast_vote(await pipeline.resolve_target(11), 0)
        return states

    assert asyncio.run(scenario())[-1] is SubmissionStatus.ERROR
