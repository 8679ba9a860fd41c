"""Encrypted poll creation and vote submission."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from solders.pubkey import Pubkey

from backend.models.participation import VoteRecordRepository

from .errors import (
    ComputationTimeoutError,
    DuplicateError,
    LedgerSubmissionError,
    NotFoundError,
    PollError,
    UnconfirmedSubmissionError,
    ValidationError,
)
from .ledger.accounts import decode_poll_account
from .ledger.addresses import U32_MAX, as_pubkey
from .ledger.client import CompletionListener, LedgerClient
from .ledger.events import CompletionSignal
from .ledger.handles import new_computation_handle, new_nonce
from .ledger.instructions import InstructionBuilder, PollInstruction
from .mpc.session import EncryptionSession
from .reconciler import DualStoreReconciler
from .weeks import week_id as current_week_id

LOGGER = logging.getLogger(__name__)

_RECHECK_MARKERS = ("already been processed", "blockhash not found")


class SubmissionStatus(str, Enum):
    IDLE = "idle"
    ENCRYPTING = "encrypting"
    QUEUED = "queued"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    ERROR = "error"


_TRANSITIONS = {
    SubmissionStatus.IDLE: {SubmissionStatus.ENCRYPTING, SubmissionStatus.QUEUED, SubmissionStatus.ERROR},
    SubmissionStatus.ENCRYPTING: {SubmissionStatus.QUEUED, SubmissionStatus.ERROR},
    SubmissionStatus.QUEUED: {SubmissionStatus.PROCESSING, SubmissionStatus.ERROR},
    SubmissionStatus.PROCESSING: {SubmissionStatus.CONFIRMED, SubmissionStatus.ERROR},
    SubmissionStatus.CONFIRMED: set(),
    SubmissionStatus.ERROR: set(),
}


@dataclass(slots=True)
class SubmissionState:
    """Progress of one create or vote operation."""

    operation: str
    poll_id: int
    status: SubmissionStatus = SubmissionStatus.IDLE
    signature: Optional[str] = None
    error: Optional[str] = None
    diagnostics: Optional[str] = None
    history: List[SubmissionStatus] = field(default_factory=lambda: [SubmissionStatus.IDLE])

    def advance(self, status: SubmissionStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise RuntimeError(f"Illegal transition {self.status.value} -> {status.value}")
        self.status = status
        self.history.append(status)

    def fail(self, exc: BaseException) -> None:
        self.error = str(exc)
        if isinstance(exc, LedgerSubmissionError):
            self.diagnostics = exc.diagnostics()
        if self.status is not SubmissionStatus.ERROR:
            self.advance(SubmissionStatus.ERROR)


@dataclass(slots=True)
class SubmissionResult:
    state: SubmissionState
    poll_address: str
    completion: Optional[CompletionSignal] = None
    pending: bool = False

    @property
    def signature(self) -> Optional[str]:
        return self.state.signature

    def to_dict(self) -> dict:
        return {
            "operation": self.state.operation,
            "pollId": self.state.poll_id,
            "status": self.state.status.value,
            "signature": self.state.signature,
            "pollAddress": self.poll_address,
            "pending": self.pending,
            "completionSignature": self.completion.signature if self.completion else None,
        }


@dataclass(frozen=True, slots=True)
class PollTarget:
    """What a voter needs to know about a poll before encrypting a choice."""

    onchain_id: int
    authority: str
    option_count: int
    multi_option: bool = True


@dataclass(frozen=True, slots=True)
class PollLimits:
    max_question_length: int = 100
    max_binary_question_length: int = 50
    max_option_length: int = 50
    min_options: int = 2
    max_options: int = 4

    @classmethod
    def from_settings(cls, settings) -> "PollLimits":
        return cls(
            max_question_length=settings.max_question_length,
            max_binary_question_length=settings.max_binary_question_length,
            max_option_length=settings.max_option_length,
            min_options=settings.min_options,
            max_options=settings.max_options,
        )

    def check(self, question: str, options: Optional[Sequence[str]]) -> None:
        if not question or not question.strip():
            raise ValidationError("Question is required")
        limit = self.max_binary_question_length if options is None else self.max_question_length
        if len(question) > limit:
            raise ValidationError(f"Question must be at most {limit} characters")
        if options is None:
            return
        if not self.min_options <= len(options) <= self.max_options:
            raise ValidationError(f"Polls need between {self.min_options} and {self.max_options} options")
        for option in options:
            if not option or not option.strip():
                raise ValidationError("Options cannot be empty")
            if len(option) > self.max_option_length:
                raise ValidationError(f"Options must be at most {self.max_option_length} characters")


def _check_poll_id(poll_id: int) -> None:
    if not 0 <= poll_id <= U32_MAX:
        raise ValidationError("Poll id must fit in an unsigned 32-bit integer")


class VoteSubmissionPipeline:
    """Drives ``idle -> encrypting -> queued -> processing -> confirmed | error``.

    The ledger is the authority for votes.  The participation record written
    after a successful queue is a best-effort projection, and the per-wallet
    pre-check here is advisory; the unique constraint on ``vote_records`` is
    the real guard.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        session: EncryptionSession,
        builder: InstructionBuilder,
        reconciler: DualStoreReconciler,
        *,
        votes: Optional[VoteRecordRepository] = None,
        limits: Optional[PollLimits] = None,
        create_timeout: float = 180.0,
        vote_timeout: float = 120.0,
        on_status: Optional[Callable[[SubmissionState], None]] = None,
    ) -> None:
        self.ledger = ledger
        self.session = session
        self.builder = builder
        self.reconciler = reconciler
        self.votes = votes or reconciler.votes
        self.limits = limits or PollLimits()
        self.create_timeout = create_timeout
        self.vote_timeout = vote_timeout
        self._on_status = on_status

    @property
    def wallet(self) -> str:
        return str(self.ledger.payer)

    def _advance(self, state: SubmissionState, status: SubmissionStatus) -> None:
        state.advance(status)
        LOGGER.debug(
            "%s %s -> %s", state.operation, state.poll_id, status.value, extra={"signature": state.signature}
        )
        if self._on_status is not None:
            self._on_status(state)

    def _fail(self, state: SubmissionState, exc: BaseException) -> None:
        state.fail(exc)
        LOGGER.warning(
            "%s failed for poll %s: %s",
            state.operation,
            state.poll_id,
            exc,
            extra={"diagnostics": state.diagnostics},
        )
        if self._on_status is not None:
            self._on_status(state)

    async def _send(
        self, instruction: PollInstruction, state: SubmissionState, listener: Optional[CompletionListener]
    ) -> Tuple[str, bool]:
        """Submit ``instruction``; the flag is set when it was sent but never confirmed."""

        try:
            signature = await self.ledger.send(instruction)
        except UnconfirmedSubmissionError as exc:
            LOGGER.warning(
                "%s for poll %s was sent but not confirmed; treating it as pending",
                state.operation,
                state.poll_id,
                extra={"signature": exc.signature},
            )
            state.signature = exc.signature
            return exc.signature, True
        except Exception as exc:
            if listener is not None:
                listener.close()
            self._fail(state, exc)
            raise
        state.signature = signature
        return signature, False

    # ------------------------------------------------------------------
    # Poll creation
    async def create_poll(
        self,
        poll_id: int,
        question: str,
        options: Optional[Sequence[str]] = None,
        *,
        wait: bool = True,
        project: bool = True,
        deadline: Optional[float] = None,
    ) -> SubmissionResult:
        """Create a poll owned by the ledger payer.

        With ``wait`` the call blocks until the MPC network has initialised the
        encrypted tallies.  If that wait times out but the poll account exists,
        the result is returned with ``pending=True``.
        """

        _check_poll_id(poll_id)
        self.limits.check(question, options)
        state = SubmissionState(operation="create_poll", poll_id=poll_id)
        authority = self.ledger.payer
        address = self.builder.deriver.poll(poll_id, creator=authority, multi_option=options is not None)
        if await self.ledger.get_account(address) is not None:
            exc = DuplicateError(f"Poll {poll_id} already exists at {address}")
            self._fail(state, exc)
            raise exc

        instruction = self.builder.create_poll(
            handle=new_computation_handle(),
            poll_id=poll_id,
            question=question,
            options=list(options) if options is not None else None,
            nonce=new_nonce(),
            authority=authority,
        )
        self._advance(state, SubmissionStatus.QUEUED)
        listener = self.ledger.listen(instruction.handle, instruction.callback) if wait else None
        try:
            state.signature = await self.ledger.send(instruction)
        except UnconfirmedSubmissionError as exc:
            if listener is not None:
                listener.close()
            state.signature = exc.signature
            if not await self._poll_matches(address, question):
                LOGGER.warning(
                    "Creation of poll %s is unconfirmed; re-check the ledger before retrying",
                    poll_id,
                    extra={"signature": exc.signature},
                )
                raise
            self._advance(state, SubmissionStatus.PROCESSING)
            return SubmissionResult(state=state, poll_address=str(address), pending=True)
        except LedgerSubmissionError as exc:
            if listener is not None:
                listener.close()
            ambiguous = any(marker in str(exc).lower() for marker in _RECHECK_MARKERS)
            if ambiguous and await self._poll_matches(address, question):
                LOGGER.info("Poll %s found on ledger after ambiguous submission error", poll_id)
                self._advance(state, SubmissionStatus.PROCESSING)
                return SubmissionResult(state=state, poll_address=str(address), pending=True)
            self._fail(state, exc)
            raise
        except Exception as exc:
            if listener is not None:
                listener.close()
            self._fail(state, exc)
            raise

        self._advance(state, SubmissionStatus.PROCESSING)
        if project:
            self.reconciler.record_created_poll(
                onchain_id=poll_id,
                creator_wallet=str(authority),
                question=question,
                options=list(options) if options is not None else ["Yes", "No"],
                week_id=current_week_id(),
                chain_address=str(address),
                signature=state.signature,
                deadline=deadline,
            )

        if listener is None:
            self._advance(state, SubmissionStatus.CONFIRMED)
            return SubmissionResult(state=state, poll_address=str(address))
        try:
            signal = await self.ledger.await_completion(listener, self.create_timeout)
        except ComputationTimeoutError:
            if await self.ledger.get_account(address) is None:
                raise
            LOGGER.warning(
                "Poll %s exists but tally initialisation was not observed within %ss",
                poll_id,
                self.create_timeout,
            )
            return SubmissionResult(state=state, poll_address=str(address), pending=True)
        self._advance(state, SubmissionStatus.CONFIRMED)
        return SubmissionResult(state=state, poll_address=str(address), completion=signal)

    async def _poll_matches(self, address: Pubkey, question: str) -> bool:
        data = await self.ledger.get_account(address)
        if data is None:
            return False
        try:
            return decode_poll_account(data).question == question
        except ValueError:
            return False

    # ------------------------------------------------------------------
    # Voting
    async def resolve_target(self, onchain_id: int) -> PollTarget:
        """Describe a ledger poll from its projection, or from the ledger if none exists."""

        poll = self.reconciler.polls.get_by_onchain_id(onchain_id)
        if poll is not None and poll.chain_authority:
            binary_address = self.builder.deriver.poll(onchain_id, creator=poll.chain_authority, multi_option=False)
            multi_option = poll.chain_address != str(binary_address)
            return PollTarget(
                onchain_id=onchain_id,
                authority=poll.chain_authority,
                option_count=len(poll.options),
                multi_option=multi_option,
            )
        data = await self.ledger.get_account(self.builder.deriver.poll(onchain_id, multi_option=True))
        if data is None:
            raise NotFoundError(f"Poll {onchain_id} not found")
        account = decode_poll_account(data)
        return PollTarget(
            onchain_id=onchain_id,
            authority=str(account.authority),
            option_count=account.num_options,
            multi_option=account.multi_option,
        )

    async def cast_vote(self, target: PollTarget, choice: int, *, wait: bool = False) -> SubmissionResult:
        """Encrypt ``choice`` and queue it.

        Returns as soon as the instruction is durable on the ledger; the
        ``confirmed`` state is then optimistic.  With ``wait`` the call also
        waits for the MPC callback that folds the vote into the tally.
        """

        _check_poll_id(target.onchain_id)
        if not 0 <= choice < target.option_count:
            raise ValidationError(f"Choice must be between 0 and {target.option_count - 1}")
        wallet = self.wallet
        state = SubmissionState(operation="cast_vote", poll_id=target.onchain_id)
        if self.votes.has_voted(target.onchain_id, wallet):
            exc = DuplicateError("You have already voted on this poll")
            self._fail(state, exc)
            raise exc

        self._advance(state, SubmissionStatus.ENCRYPTING)
        try:
            await self.session.ensure_wallet(wallet)
            nonce = new_nonce()
            plaintext = choice if target.multi_option else int(choice == 0)
            (ciphertext,) = self.session.encrypt([plaintext], nonce)
            instruction = self.builder.cast_vote(
                handle=new_computation_handle(),
                poll_id=target.onchain_id,
                ciphertext=ciphertext,
                public_key=self.session.public_key,
                nonce=nonce,
                authority=as_pubkey(target.authority),
                multi_option=target.multi_option,
            )
        except PollError as exc:
            self._fail(state, exc)
            raise

        self._advance(state, SubmissionStatus.QUEUED)
        listener = self.ledger.listen(instruction.handle, instruction.callback) if wait else None
        signature, unconfirmed = await self._send(instruction, state, listener)
        self._advance(state, SubmissionStatus.PROCESSING)
        self.reconciler.record_vote(target.onchain_id, wallet, signature)
        address = str(instruction.poll_address)

        if listener is None:
            if unconfirmed:
                return SubmissionResult(state=state, poll_address=address, pending=True)
            self._advance(state, SubmissionStatus.CONFIRMED)
            return SubmissionResult(state=state, poll_address=address)
        signal = await self.ledger.await_completion(listener, self.vote_timeout)
        self._advance(state, SubmissionStatus.CONFIRMED)
        return SubmissionResult(state=state, poll_address=address, completion=signal)


__all__ = [
    "PollLimits",
    "PollTarget",
    "SubmissionResult",
    "SubmissionState",
    "SubmissionStatus",
    "VoteSubmissionPipeline",
]
