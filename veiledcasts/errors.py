"""Error taxonomy shared by the ledger, store and lifecycle layers."""

from __future__ import annotations

from typing import Any, Optional, Sequence


class PollError(RuntimeError):
    """Base class for every failure surfaced by the poll lifecycle."""


class ValidationError(PollError):
    """Malformed input, rejected before any I/O."""


class NotFoundError(PollError):
    """The referenced poll or selection does not exist."""


class AuthorizationError(PollError):
    """Caller is not allowed to perform the action (e.g. non-creator reveal)."""


class DuplicateError(PollError):
    """Repeat vote or selection. Expected and benign."""


class CapacityError(PollError):
    """A per-wallet weekly limit has been reached."""


class EncryptionSetupError(PollError):
    """The encryption session could not be established."""


class LedgerSubmissionError(PollError):
    """The ledger rejected an instruction."""

    def __init__(
        self,
        message: str,
        *,
        logs: Optional[Sequence[str]] = None,
        code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.logs = list(logs or [])
        self.code = code

    def diagnostics(self) -> str:
        details = str(self)
        if self.code is not None:
            details += f"\nError code: {self.code}"
        if self.logs:
            details += "\nProgram logs:\n" + "\n".join(self.logs)
        return details


class ComputationTimeoutError(PollError):
    """No completion signal arrived within the wait bound.

    This is not a failure of the underlying operation: the ledger and the MPC
    network keep working after the local wait stops.
    """

    def __init__(self, message: str, *, handle: Optional[int] = None, timeout: Optional[float] = None) -> None:
        super().__init__(message)
        self.handle = handle
        self.timeout = timeout

    @property
    def hint(self) -> str:
        return (
            "The operation may still complete. Re-check ledger state before "
            "retrying; a blind retry can submit a duplicate instruction."
        )


class UnconfirmedSubmissionError(ComputationTimeoutError):
    """A transaction was broadcast but its status was not seen before the wait ended."""

    def __init__(self, message: str, *, signature: str, timeout: Optional[float] = None) -> None:
        super().__init__(message, timeout=timeout)
        self.signature = signature


class ReconciliationError(PollError):
    """A relational projection failed after a successful ledger action."""

    def __init__(self, message: str, *, operation: str, key: Any = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.key = key


__all__ = [
    "AuthorizationError",
    "CapacityError",
    "ComputationTimeoutError",
    "DuplicateError",
    "EncryptionSetupError",
    "LedgerSubmissionError",
    "NotFoundError",
    "PollError",
    "ReconciliationError",
    "UnconfirmedSubmissionError",
    "ValidationError",
]
