"""Authority-gated reveal of a poll's decrypted aggregate."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from backend.models.dao import DaoPoll

from .errors import AuthorizationError, LedgerSubmissionError, NotFoundError, UnconfirmedSubmissionError
from .ledger.accounts import decode_poll_account
from .ledger.client import LedgerClient
from .ledger.events import RevealOutcome
from .ledger.handles import new_computation_handle
from .ledger.instructions import InstructionBuilder
from .reconciler import DualStoreReconciler

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RevealResult:
    onchain_id: int
    outcome: RevealOutcome
    signature: Optional[str]
    already_revealed: bool = False
    persisted: bool = False
    poll: Optional[DaoPoll] = None

    def to_dict(self) -> dict:
        payload = {
            "onchainId": self.onchain_id,
            "signature": self.signature,
            "alreadyRevealed": self.already_revealed,
            "persisted": self.persisted,
        }
        payload.update(self.outcome.to_dict())
        if self.poll is not None:
            payload["revealedAt"] = self.poll.revealed_at
        return payload


@dataclass(frozen=True, slots=True)
class _RevealTarget:
    onchain_id: int
    authority: str
    multi_option: bool
    poll: Optional[DaoPoll]


class RevealCoordinator:
    """Submit a reveal and wait for the decrypted tally.

    The completion listener is registered before the reveal is submitted; the
    MPC callback can land before the submitting call returns.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        builder: InstructionBuilder,
        reconciler: DualStoreReconciler,
        *,
        timeout: float = 30.0,
    ) -> None:
        self.ledger = ledger
        self.builder = builder
        self.reconciler = reconciler
        self.timeout = timeout

    async def _target(self, onchain_id: int, poll: Optional[DaoPoll]) -> _RevealTarget:
        if poll is None:
            poll = self.reconciler.polls.get_by_onchain_id(onchain_id)
        if poll is not None and poll.chain_authority:
            binary_address = self.builder.deriver.poll(onchain_id, creator=poll.chain_authority, multi_option=False)
            return _RevealTarget(
                onchain_id=onchain_id,
                authority=poll.chain_authority,
                multi_option=poll.chain_address != str(binary_address),
                poll=poll,
            )
        data = await self.ledger.get_account(self.builder.deriver.poll(onchain_id, multi_option=True))
        if data is None:
            raise NotFoundError(f"Poll {onchain_id} not found on the ledger")
        account = decode_poll_account(data)
        return _RevealTarget(
            onchain_id=onchain_id,
            authority=str(account.authority),
            multi_option=account.multi_option,
            poll=poll,
        )

    @staticmethod
    def _stored(target: _RevealTarget) -> Optional[RevealResult]:
        poll = target.poll
        if poll is None or not poll.is_revealed:
            return None
        counts = poll.vote_counts or []
        outcome = RevealOutcome(vote_counts=tuple(counts), winner=poll.winner)
        return RevealResult(
            onchain_id=target.onchain_id,
            outcome=outcome,
            signature=poll.reveal_tx_signature,
            already_revealed=True,
            persisted=True,
            poll=poll,
        )

    async def reveal(
        self,
        onchain_id: int,
        *,
        caller: Optional[str] = None,
        poll: Optional[DaoPoll] = None,
        timeout: Optional[float] = None,
    ) -> RevealResult:
        target = await self._target(onchain_id, poll)
        signer = str(self.ledger.payer)
        caller = caller or signer
        if caller != target.authority:
            raise AuthorizationError("Only the poll creator can reveal results")

        stored = self._stored(target)
        if stored is not None:
            LOGGER.info("Poll %s already revealed; returning stored result", onchain_id)
            return stored
        if signer != target.authority:
            raise AuthorizationError("Reveal must be signed by the poll creator")

        instruction = self.builder.reveal(
            handle=new_computation_handle(),
            poll_id=onchain_id,
            authority=target.authority,
            multi_option=target.multi_option,
        )
        listener = self.ledger.listen(instruction.handle, instruction.callback)
        try:
            signature = await self.ledger.send(instruction)
        except UnconfirmedSubmissionError as exc:
            LOGGER.warning("Reveal of poll %s sent but not confirmed; still waiting for the result", onchain_id)
            signature = exc.signature
        except Exception:
            listener.close()
            raise
        LOGGER.info("Reveal queued for poll %s", onchain_id, extra={"signature": signature})

        signal = await self.ledger.await_completion(listener, timeout if timeout is not None else self.timeout)
        if signal.outcome is None:
            raise LedgerSubmissionError(
                f"Reveal of poll {onchain_id} completed without a result event",
                logs=[f"callback signature: {signal.signature}"],
            )

        persisted_poll: Optional[DaoPoll] = None
        if target.poll is not None:
            persisted_poll = self.reconciler.record_reveal(target.poll, signal.outcome, signature)
        return RevealResult(
            onchain_id=onchain_id,
            outcome=signal.outcome,
            signature=signature,
            persisted=persisted_poll is not None,
            poll=persisted_poll,
        )


__all__ = ["RevealCoordinator", "RevealResult"]
