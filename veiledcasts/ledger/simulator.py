"""In-process ledger that also plays the MPC network.

``LocalLedger`` keeps poll accounts in memory, decrypts each submitted vote
with its own X25519 key, keeps the tallies encrypted in the poll account and
emits callback completions asynchronously, the way the real cluster does.
Several wallets can share one ledger through :meth:`LocalLedger.for_wallet`.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import struct
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from solders.pubkey import Pubkey
from solders.signature import Signature

from ..errors import LedgerSubmissionError
from ..mpc.cipher import StreamCipher, public_bytes
from .accounts import MULTI_OPTION_SLOTS, ZERO_CIPHERTEXT, decode_poll_account, encode_poll_account
from .addresses import as_pubkey
from .client import LedgerClient
from .events import (
    REVEAL_MULTI_OPTION_RESULT_EVENT,
    REVEAL_RESULT_EVENT,
    VOTE_EVENT,
    CompletionSignal,
    RevealOutcome,
    encode_event_log,
)
from .instructions import CAST_VOTE, CREATE_POLL, REVEAL, PollInstruction

LOGGER = logging.getLogger(__name__)

INVALID_AUTHORITY = 6000
POLL_NOT_FOUND = 3012


@dataclass
class _Tally:
    counts: List[int]
    nonce: int


@dataclass
class _LocalState:
    mxe_key: X25519PrivateKey = field(default_factory=X25519PrivateKey.generate)
    storage_secret: bytes = field(default_factory=lambda: secrets.token_bytes(32))
    accounts: Dict[Pubkey, bytes] = field(default_factory=dict)
    tallies: Dict[Pubkey, _Tally] = field(default_factory=dict)
    completions: Dict[Tuple[int, str], CompletionSignal] = field(default_factory=dict)
    submissions: List[PollInstruction] = field(default_factory=list)
    clients: List["LocalLedger"] = field(default_factory=list)
    timers: List[asyncio.TimerHandle] = field(default_factory=list)
    key_fetches: int = 0


class LocalLedger(LedgerClient):
    """Ledger and MPC double.

    ``callback_delay`` is the time between submission and completion; ``None``
    stalls every computation. ``inline_callbacks`` completes the computation
    inside :meth:`submit`, before the caller gets control back.
    ``deliver_signals=False`` records completions without notifying listeners,
    so only a direct ledger read can find them.
    """

    def __init__(
        self,
        payer: Pubkey | str | None = None,
        *,
        callback_delay: Optional[float] = 0.0,
        inline_callbacks: bool = False,
        deliver_signals: bool = True,
        mxe_key_unavailable_for: int = 0,
        state: Optional[_LocalState] = None,
    ) -> None:
        super().__init__()
        self._payer = as_pubkey(payer) if payer is not None else Pubkey.new_unique()
        self.callback_delay = callback_delay
        self.inline_callbacks = inline_callbacks
        self.deliver_signals = deliver_signals
        self.mxe_key_unavailable_for = mxe_key_unavailable_for
        self._state = state or _LocalState()
        self._state.clients.append(self)
        self.poll_interval = 0.05

    @property
    def payer(self) -> Pubkey:
        return self._payer

    @property
    def submissions(self) -> List[PollInstruction]:
        return self._state.submissions

    def for_wallet(self, wallet: Pubkey | str) -> "LocalLedger":
        """A client signing as ``wallet`` against the same ledger state."""

        return LocalLedger(
            wallet,
            callback_delay=self.callback_delay,
            inline_callbacks=self.inline_callbacks,
            deliver_signals=self.deliver_signals,
            mxe_key_unavailable_for=self.mxe_key_unavailable_for,
            state=self._state,
        )

    # ------------------------------------------------------------------
    # MxeKeySource
    async def fetch_mxe_public_key(self) -> Optional[bytes]:
        self._state.key_fetches += 1
        if self._state.key_fetches <= self.mxe_key_unavailable_for:
            return None
        return public_bytes(self._state.mxe_key)

    # ------------------------------------------------------------------
    # LedgerClient
    def _start_watch(self, listener) -> None:
        return None

    async def get_account(self, address: Pubkey) -> Optional[bytes]:
        return self._state.accounts.get(address)

    async def find_completion(self, handle: int, callback: str) -> Optional[CompletionSignal]:
        return self._state.completions.get((handle, callback))

    async def submit(self, instruction: PollInstruction) -> str:
        if instruction.action == CREATE_POLL:
            self._create(instruction)
        elif instruction.action == CAST_VOTE:
            self._require_poll(instruction)
        elif instruction.action == REVEAL:
            account = decode_poll_account(self._require_poll(instruction))
            if account.authority != self._payer:
                raise LedgerSubmissionError(
                    "Invalid authority for reveal",
                    code=INVALID_AUTHORITY,
                    logs=[
                        f"Program {instruction.name} invoke [1]",
                        "Program log: AnchorError occurred. Error Code: InvalidAuthority.",
                    ],
                )
        else:  # pragma: no cover - builder only emits known actions
            raise LedgerSubmissionError(f"Unknown instruction {instruction.action}")

        signature = str(Signature.new_unique())
        self._state.submissions.append(instruction)
        self._schedule(instruction)
        LOGGER.debug("Local ledger accepted %s", instruction.name, extra={"signature": signature})
        return signature

    async def close(self) -> None:
        await super().close()
        for timer in self._state.timers:
            timer.cancel()
        self._state.timers.clear()

    # ------------------------------------------------------------------
    # Ledger program
    def _require_poll(self, instruction: PollInstruction) -> bytes:
        data = self._state.accounts.get(instruction.poll_address)
        if data is None:
            raise LedgerSubmissionError(
                f"Poll account {instruction.poll_address} not initialized",
                code=POLL_NOT_FOUND,
                logs=["Program log: AnchorError caused by account: poll_acc. Error Code: AccountNotInitialized."],
            )
        return data

    def _create(self, instruction: PollInstruction) -> None:
        if instruction.poll_address in self._state.accounts:
            raise LedgerSubmissionError(
                f"Allocate: account {instruction.poll_address} already in use",
                code=0,
                logs=[f"Allocate: account Address {{ address: {instruction.poll_address}, base: None }} already in use"],
            )
        slots = len(instruction.options) if instruction.multi_option else 2
        self._state.accounts[instruction.poll_address] = encode_poll_account(
            poll_id=instruction.poll_id,
            authority=self._payer,
            nonce=instruction.nonce or 0,
            question=instruction.question or "",
            vote_state=[ZERO_CIPHERTEXT] * (MULTI_OPTION_SLOTS if instruction.multi_option else 2),
            options=instruction.options,
            multi_option=instruction.multi_option,
        )
        self._state.tallies[instruction.poll_address] = _Tally(counts=[0] * slots, nonce=instruction.nonce or 0)

    # ------------------------------------------------------------------
    # MPC network
    def _schedule(self, instruction: PollInstruction) -> None:
        if self.inline_callbacks:
            self._complete(instruction)
            return
        if self.callback_delay is None:
            return
        loop = asyncio.get_running_loop()
        if self.callback_delay <= 0:
            loop.call_soon(self._complete, instruction)
        else:
            self._state.timers.append(loop.call_later(self.callback_delay, self._complete, instruction))

    def _storage_cipher(self) -> StreamCipher:
        return StreamCipher(self._state.storage_secret)

    def _complete(self, instruction: PollInstruction) -> None:
        tally = self._state.tallies.get(instruction.poll_address)
        if tally is None:
            return
        logs = [f"Program log: Instruction: {instruction.callback}"]
        outcome: Optional[RevealOutcome] = None
        timestamp: Optional[int] = None
        if instruction.action == CAST_VOTE:
            timestamp = int(time.time())
            self._apply_vote(instruction, tally)
            logs.append(encode_event_log(VOTE_EVENT, struct.pack("<q", timestamp)))
        elif instruction.action == REVEAL:
            if instruction.multi_option:
                padded = (tally.counts + [0, 0, 0, 0])[:4]
                outcome = RevealOutcome.from_counts(tally.counts)
                logs.append(encode_event_log(REVEAL_MULTI_OPTION_RESULT_EVENT, struct.pack("<4Q", *padded)))
            else:
                yes_won = tally.counts[0] > tally.counts[1]
                outcome = RevealOutcome.from_binary(yes_won)
                logs.append(encode_event_log(REVEAL_RESULT_EVENT, bytes([int(yes_won)])))
        self._store_tally(instruction.poll_address, tally)

        signature = str(Signature.new_unique())
        signal = CompletionSignal(
            handle=instruction.handle,
            callback=instruction.callback,
            signature=signature,
            outcome=outcome,
            timestamp=timestamp,
        )
        self._state.completions[(instruction.handle, instruction.callback)] = signal
        if self.deliver_signals:
            for client in self._state.clients:
                client._dispatch(signal)

    def _apply_vote(self, instruction: PollInstruction, tally: _Tally) -> None:
        cipher = StreamCipher.from_key_agreement(self._state.mxe_key, instruction.public_key or b"")
        (choice,) = cipher.decrypt([instruction.ciphertext or ZERO_CIPHERTEXT], instruction.nonce or 0)
        if instruction.multi_option:
            if 0 <= choice < len(tally.counts):
                tally.counts[choice] += 1
            else:
                LOGGER.warning("Discarding out-of-range encrypted choice", extra={"poll": str(instruction.poll_address)})
        elif choice == 1:
            tally.counts[0] += 1
        else:
            tally.counts[1] += 1

    def _store_tally(self, address: Pubkey, tally: _Tally) -> None:
        account = decode_poll_account(self._state.accounts[address])
        sealed = self._storage_cipher().encrypt(tally.counts, tally.nonce)
        self._state.accounts[address] = encode_poll_account(
            poll_id=account.poll_id,
            authority=account.authority,
            nonce=account.nonce,
            question=account.question,
            vote_state=sealed,
            options=account.options,
            multi_option=account.multi_option,
            bump=account.bump,
        )



__all__ = ["LocalLedger"]
