"""Program log parsing: emitted events and computation callbacks."""

from __future__ import annotations

import base64
import binascii
import hashlib
import struct
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

PROGRAM_DATA_PREFIX = "Program data: "
INSTRUCTION_LOG_PREFIX = "Program log: Instruction: "

REVEAL_RESULT_EVENT = "RevealResultEvent"
REVEAL_MULTI_OPTION_RESULT_EVENT = "RevealMultiOptionResultEvent"
VOTE_EVENT = "VoteEvent"
MULTI_OPTION_COUNT_SLOTS = 4


def event_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"event:{name}".encode("utf-8")).digest()[:8]


@dataclass(frozen=True, slots=True)
class LedgerEvent:
    name: str
    payload: bytes


@dataclass(frozen=True, slots=True)
class RevealOutcome:
    """Decrypted aggregate of a poll.

    Binary polls report only whether "yes" won; their counts are unknown and
    ``vote_counts`` stays empty.
    """

    vote_counts: Tuple[int, ...]
    winner: Optional[int]

    @classmethod
    def from_counts(cls, counts: Sequence[int]) -> "RevealOutcome":
        values = tuple(int(count) for count in counts)
        return cls(vote_counts=values, winner=pick_winner(values))

    @classmethod
    def from_binary(cls, yes_won: bool) -> "RevealOutcome":
        return cls(vote_counts=(), winner=0 if yes_won else 1)

    def to_dict(self) -> dict:
        return {"voteCounts": list(self.vote_counts), "winner": self.winner}


@dataclass(frozen=True, slots=True)
class CompletionSignal:
    """A computation callback observed on the ledger."""

    handle: int
    callback: str
    signature: Optional[str]
    outcome: Optional[RevealOutcome] = None
    timestamp: Optional[int] = None


def pick_winner(counts: Sequence[int]) -> Optional[int]:
    """Index of the largest count; ties go to the lowest index."""

    if not counts:
        return None
    best = 0
    for index, count in enumerate(counts):
        if count > counts[best]:
            best = index
    return best


_KNOWN = {
    event_discriminator(name): name
    for name in (REVEAL_RESULT_EVENT, REVEAL_MULTI_OPTION_RESULT_EVENT, VOTE_EVENT)
}


def parse_events(logs: Iterable[str]) -> List[LedgerEvent]:
    events: List[LedgerEvent] = []
    for line in logs:
        if not line.startswith(PROGRAM_DATA_PREFIX):
            continue
        try:
            raw = base64.b64decode(line[len(PROGRAM_DATA_PREFIX):].strip(), validate=True)
        except (binascii.Error, ValueError):
            continue
        name = _KNOWN.get(raw[:8])
        if name is not None:
            events.append(LedgerEvent(name=name, payload=raw[8:]))
    return events


def decode_outcome(event: LedgerEvent) -> Optional[RevealOutcome]:
    if event.name == REVEAL_MULTI_OPTION_RESULT_EVENT:
        size = 8 * MULTI_OPTION_COUNT_SLOTS
        counts = struct.unpack(f"<{MULTI_OPTION_COUNT_SLOTS}Q", event.payload[:size])
        return RevealOutcome.from_counts(counts)
    if event.name == REVEAL_RESULT_EVENT:
        return RevealOutcome.from_binary(bool(event.payload[0]))
    return None


def decode_vote_timestamp(event: LedgerEvent) -> Optional[int]:
    if event.name != VOTE_EVENT:
        return None
    return struct.unpack("<q", event.payload[:8])[0]


def has_callback(logs: Iterable[str], callback: str) -> bool:
    return any(line.strip() == INSTRUCTION_LOG_PREFIX + callback for line in logs)


def encode_event_log(name: str, payload: bytes) -> str:
    """Render an event the way the program emits it into transaction logs."""

    raw = event_discriminator(name) + payload
    return PROGRAM_DATA_PREFIX + base64.b64encode(raw).decode("ascii")


def completion_from_logs(
    logs: Sequence[str], *, handle: int, callback: str, signature: Optional[str]
) -> Optional[CompletionSignal]:
    """Build a completion signal if ``logs`` contain the expected callback."""

    if not has_callback(logs, callback):
        return None
    outcome: Optional[RevealOutcome] = None
    timestamp: Optional[int] = None
    for event in parse_events(logs):
        outcome = decode_outcome(event) or outcome
        stamp = decode_vote_timestamp(event)
        if stamp is not None:
            timestamp = stamp
    return CompletionSignal(
        handle=handle, callback=callback, signature=signature, outcome=outcome, timestamp=timestamp
    )


__all__ = [
    "CompletionSignal",
    "LedgerEvent",
    "REVEAL_MULTI_OPTION_RESULT_EVENT",
    "REVEAL_RESULT_EVENT",
    "RevealOutcome",
    "VOTE_EVENT",
    "completion_from_logs",
    "decode_outcome",
    "encode_event_log",
    "event_discriminator",
    "has_callback",
    "parse_events",
    "pick_winner",
]
