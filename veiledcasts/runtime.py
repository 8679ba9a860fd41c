"""Wiring of store, ledger and lifecycle components for one process."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from backend.database import Database, open_database

from .config import Settings, get_settings
from .ledger.addresses import AddressDeriver
from .ledger.client import LedgerClient
from .ledger.instructions import InstructionBuilder
from .ledger.simulator import LocalLedger
from .ledger.solana import SolanaLedgerClient, load_keypair
from .mpc.keys import MpcGatewayClient, MxeKeySource
from .mpc.session import EncryptionSession
from .nominations import ProposalRules, SelectionLedger
from .reconciler import DualStoreReconciler
from .reveal import RevealCoordinator
from .submission import PollLimits, VoteSubmissionPipeline
from .workflows.scheduler import LifecycleScheduler

LOGGER = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Raised when settings cannot produce a working runtime."""


@dataclass(slots=True)
class Runtime:
    settings: Settings
    database: Database
    ledger: LedgerClient
    deriver: AddressDeriver
    builder: InstructionBuilder
    reconciler: DualStoreReconciler
    session: EncryptionSession
    pipeline: VoteSubmissionPipeline
    reveal: RevealCoordinator
    selections: SelectionLedger
    scheduler: LifecycleScheduler
    proposal_rules: ProposalRules

    async def aclose(self) -> None:
        self.session.deactivate()
        await self.ledger.close()

    def close(self) -> None:
        self.database.close()


def build_ledger(settings: Settings, deriver: AddressDeriver) -> LedgerClient:
    if settings.ledger_mode == "local":
        return LocalLedger()
    if settings.ledger_mode == "solana":
        if not settings.authority_keypair:
            raise ConfigurationError("AUTHORITY_KEYPAIR is required when LEDGER_MODE=solana")
        try:
            keypair = load_keypair(settings.authority_keypair)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid authority keypair: {exc}") from exc
        return SolanaLedgerClient(
            settings.ledger_rpc_url,
            keypair=keypair,
            deriver=deriver,
            commitment=settings.commitment,
            compute_unit_limit=settings.compute_unit_limit,
            compute_unit_price=settings.compute_unit_price,
            poll_interval=settings.poll_interval,
        )
    raise ConfigurationError(f"Unknown LEDGER_MODE {settings.ledger_mode!r}")


def build_key_source(settings: Settings, ledger: LedgerClient) -> Optional[MxeKeySource]:
    if settings.mpc_gateway_url:
        return MpcGatewayClient(settings.mpc_gateway_url, program_id=settings.voting_program_id)
    if isinstance(ledger, LocalLedger):
        return ledger
    return None


def build_runtime(
    settings: Optional[Settings] = None,
    *,
    database: Optional[Database] = None,
    ledger: Optional[LedgerClient] = None,
    key_source: Optional[MxeKeySource] = None,
) -> Runtime:
    """Assemble every component around one store handle and one ledger client.

    The ledger client signs as the authority wallet that creates promoted polls
    and reveals them.
    """

    settings = settings or get_settings()
    database = database or open_database(settings.database_url)
    deriver = AddressDeriver.from_settings(settings)
    builder = InstructionBuilder(deriver)
    ledger = ledger or build_ledger(settings, deriver)
    key_source = key_source or build_key_source(settings, ledger)
    reconciler = DualStoreReconciler(database, vote_points=settings.points_vote_cast)
    session = EncryptionSession(
        key_source, attempts=settings.mxe_key_attempts, delay=settings.mxe_key_retry_delay
    )
    pipeline = VoteSubmissionPipeline(
        ledger,
        session,
        builder,
        reconciler,
        limits=PollLimits.from_settings(settings),
        create_timeout=settings.create_poll_timeout,
    )
    reveal = RevealCoordinator(ledger, builder, reconciler, timeout=settings.reveal_timeout)
    scheduler = LifecycleScheduler(
        database,
        pipeline,
        reveal,
        promotion_count=settings.promotion_count,
        voting_window_days=settings.voting_window_days,
        staleness_days=settings.staleness_days,
        promotion_points=settings.points_poll_promoted,
        reveal_timeout=settings.auto_reveal_timeout,
    )
    LOGGER.info(
        "Runtime ready",
        extra={"ledger_mode": settings.ledger_mode, "authority": str(ledger.payer), "driver": database.driver},
    )
    return Runtime(
        settings=settings,
        database=database,
        ledger=ledger,
        deriver=deriver,
        builder=builder,
        reconciler=reconciler,
        session=session,
        pipeline=pipeline,
        reveal=reveal,
        selections=SelectionLedger(database, points=settings.points_selection_made),
        scheduler=scheduler,
        proposal_rules=ProposalRules.from_settings(settings),
    )


__all__ = ["ConfigurationError", "Runtime", "build_ledger", "build_runtime"]
