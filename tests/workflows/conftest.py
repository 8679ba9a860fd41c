"""Runtime factories for lifecycle tests against the local ledger."""

from __future__ import annotations

from dataclasses import replace
from typing import Callable

import pytest
from solders.pubkey import Pubkey

from veiledcasts.config import load_settings
from veiledcasts.ledger.simulator import LocalLedger
from veiledcasts.mpc.session import EncryptionSession
from veiledcasts.runtime import Runtime, build_runtime
from veiledcasts.submission import VoteSubmissionPipeline


@pytest.fixture
def make_runtime(database) -> Callable[..., Runtime]:
    def factory(ledger: LocalLedger | None = None, **overrides) -> Runtime:
        defaults = dict(
            create_poll_timeout=1.0,
            reveal_timeout=1.0,
            auto_reveal_timeout=1.0,
            mxe_key_retry_delay=0.0,
        )
        settings = replace(load_settings({}), **{**defaults, **overrides})
        return build_runtime(settings, database=database, ledger=ledger or LocalLedger())

    return factory


@pytest.fixture
def voter() -> Callable[..., VoteSubmissionPipeline]:
    """A pipeline signing as a fresh wallet against a runtime's ledger."""

    def factory(runtime: Runtime, wallet: Pubkey | None = None) -> VoteSubmissionPipeline:
        ledger = runtime.ledger.for_wallet(wallet or Pubkey.new_unique())
        session = EncryptionSession(ledger, attempts=3, delay=0.0)
        return VoteSubmissionPipeline(ledger, session, runtime.builder, runtime.reconciler, vote_timeout=1.0)

    return factory
