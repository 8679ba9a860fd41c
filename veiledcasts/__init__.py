"""Confidential poll lifecycle: encrypted votes, MPC reveal and weekly promotion."""

from .errors import (
    AuthorizationError,
    CapacityError,
    ComputationTimeoutError,
    DuplicateError,
    EncryptionSetupError,
    LedgerSubmissionError,
    NotFoundError,
    PollError,
    ReconciliationError,
    UnconfirmedSubmissionError,
    ValidationError,
)

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

__version__ = "0.1.0"
