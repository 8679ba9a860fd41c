"""Ledger addressing, encoding and clients."""

from .addresses import AddressDeriver, ComputationAccounts
from .client import CompletionListener, LedgerClient
from .events import CompletionSignal, RevealOutcome
from .handles import new_computation_handle, new_nonce
from .instructions import InstructionBuilder, PollInstruction
from .simulator import LocalLedger

__all__ = [
    "AddressDeriver",
    "CompletionListener",
    "CompletionSignal",
    "ComputationAccounts",
    "InstructionBuilder",
    "LedgerClient",
    "LocalLedger",
    "PollInstruction",
    "RevealOutcome",
    "new_computation_handle",
    "new_nonce",
]
