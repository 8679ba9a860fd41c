"""Ledger capability used by the submission and reveal flows.

Completion of an MPC computation is observed through a :class:`CompletionListener`,
a cancellable future registered before the instruction is submitted.  When the
listener times out the client re-reads ledger state once via
:meth:`LedgerClient.find_completion` before giving up.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from solders.pubkey import Pubkey

from ..errors import ComputationTimeoutError, LedgerSubmissionError, UnconfirmedSubmissionError
from ..metrics import COMPLETION_WAITS, LEDGER_SUBMISSIONS
from .events import CompletionSignal
from .instructions import PollInstruction

LOGGER = logging.getLogger(__name__)


class CompletionListener:
    """Future resolved when the callback for ``handle`` is observed."""

    def __init__(self, handle: int, callback: str, owner: "LedgerClient") -> None:
        self.handle = handle
        self.callback = callback
        self._owner = owner
        self._future: asyncio.Future[CompletionSignal] = asyncio.get_running_loop().create_future()
        self._watcher: Optional[asyncio.Task] = None

    @property
    def done(self) -> bool:
        return self._future.done()

    def resolve(self, signal: CompletionSignal) -> None:
        if not self._future.done():
            self._future.set_result(signal)

    async def wait(self, timeout: float) -> CompletionSignal:
        return await asyncio.wait_for(asyncio.shield(self._future), timeout)

    def close(self) -> None:
        """Stop watching. The ledger-side computation is unaffected."""

        if not self._future.done():
            self._future.cancel()
        if self._watcher is not None and not self._watcher.done():
            self._watcher.cancel()
        self._owner._forget(self)


class LedgerClient(ABC):
    """Submit instructions and observe their asynchronous completion."""

    poll_interval: float = 2.0

    def __init__(self) -> None:
        self._listeners: Dict[int, List[CompletionListener]] = {}

    @property
    @abstractmethod
    def payer(self) -> Pubkey:
        """Wallet that signs and pays for submitted instructions."""

    @abstractmethod
    async def submit(self, instruction: PollInstruction) -> str:
        """Send ``instruction`` and return its transaction reference."""

    @abstractmethod
    async def find_completion(self, handle: int, callback: str) -> Optional[CompletionSignal]:
        """Look up a completed callback directly in ledger state."""

    @abstractmethod
    async def get_account(self, address: Pubkey) -> Optional[bytes]:
        """Raw account data, or ``None`` if the account does not exist."""

    async def send(self, instruction: PollInstruction) -> str:
        """:meth:`submit` with the outcome counted per instruction."""

        try:
            signature = await self.submit(instruction)
        except UnconfirmedSubmissionError:
            LEDGER_SUBMISSIONS.labels(instruction=instruction.name, outcome="unconfirmed").inc()
            raise
        except LedgerSubmissionError:
            LEDGER_SUBMISSIONS.labels(instruction=instruction.name, outcome="rejected").inc()
            raise
        except Exception:
            LEDGER_SUBMISSIONS.labels(instruction=instruction.name, outcome="error").inc()
            raise
        LEDGER_SUBMISSIONS.labels(instruction=instruction.name, outcome="accepted").inc()
        return signature

    async def close(self) -> None:
        for listeners in list(self._listeners.values()):
            for listener in list(listeners):
                listener.close()

    # ------------------------------------------------------------------
    # Completion listeners
    def listen(self, handle: int, callback: str) -> CompletionListener:
        """Register interest in a completion. Call before :meth:`submit`."""

        listener = CompletionListener(handle, callback, self)
        self._listeners.setdefault(handle, []).append(listener)
        listener._watcher = self._start_watch(listener)
        return listener

    def _start_watch(self, listener: CompletionListener) -> Optional[asyncio.Task]:
        return asyncio.get_running_loop().create_task(self._watch(listener))

    async def _watch(self, listener: CompletionListener) -> None:
        while not listener.done:
            await asyncio.sleep(self.poll_interval)
            try:
                signal = await self.find_completion(listener.handle, listener.callback)
            except Exception:  # pragma: no cover - transient RPC failures keep polling
                LOGGER.debug("Completion lookup failed", extra={"handle": listener.handle}, exc_info=True)
                continue
            if signal is not None:
                listener.resolve(signal)

    def _dispatch(self, signal: CompletionSignal) -> bool:
        delivered = False
        for listener in list(self._listeners.get(signal.handle, [])):
            if listener.callback == signal.callback:
                listener.resolve(signal)
                delivered = True
        return delivered

    def _forget(self, listener: CompletionListener) -> None:
        listeners = self._listeners.get(listener.handle)
        if not listeners:
            return
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            self._listeners.pop(listener.handle, None)

    async def await_completion(self, listener: CompletionListener, timeout: float) -> CompletionSignal:
        """Wait for ``listener`` with a hard bound, then re-read ledger state once."""

        try:
            signal = await listener.wait(timeout)
            COMPLETION_WAITS.labels(callback=listener.callback, outcome="signal").inc()
            return signal
        except asyncio.TimeoutError:
            LOGGER.info(
                "Completion wait timed out; re-reading ledger state",
                extra={"handle": listener.handle, "callback": listener.callback, "timeout": timeout},
            )
            signal = await self.find_completion(listener.handle, listener.callback)
            if signal is not None:
                COMPLETION_WAITS.labels(callback=listener.callback, outcome="ledger_read").inc()
                return signal
            COMPLETION_WAITS.labels(callback=listener.callback, outcome="timeout").inc()
            raise ComputationTimeoutError(
                f"No {listener.callback} observed within {timeout:.0f}s; the computation may still complete",
                handle=listener.handle,
                timeout=timeout,
            ) from None
        finally:
            listener.close()


__all__ = ["CompletionListener", "LedgerClient"]
