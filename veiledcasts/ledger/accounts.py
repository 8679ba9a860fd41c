"""Binary layouts of the poll accounts held by the voting program."""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from solders.pubkey import Pubkey

from .instructions import borsh_string, borsh_string_vec, u128_le

ZERO_CIPHERTEXT = bytes(32)
BINARY_SLOTS = 2
MULTI_OPTION_SLOTS = 5


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode("utf-8")).digest()[:8]


POLL_ACCOUNT = "PollAccount"
MULTI_OPTION_POLL_ACCOUNT = "MultiOptionPollAccount"


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0

    def take(self, size: int) -> bytes:
        end = self._offset + size
        if end > len(self._data):
            raise ValueError("account data truncated")
        chunk = self._data[self._offset:end]
        self._offset = end
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u32(self) -> int:
        return struct.unpack("<I", self.take(4))[0]

    def u128(self) -> int:
        return int.from_bytes(self.take(16), "little")

    def string(self) -> str:
        return self.take(self.u32()).decode("utf-8")

    def strings(self) -> List[str]:
        return [self.string() for _ in range(self.u32())]


@dataclass(frozen=True, slots=True)
class PollAccountState:
    """Decoded poll account; ``vote_state`` holds one ciphertext per tally slot."""

    bump: int
    vote_state: Tuple[bytes, ...]
    poll_id: int
    authority: Pubkey
    nonce: int
    question: str
    options: Tuple[str, ...]
    num_options: int
    multi_option: bool

    @property
    def has_zero_ciphertext(self) -> bool:
        """True if any tally slot is all zero bytes.

        An all-zero slot is what an account holds before the MPC network first
        writes it, but a real encryption can produce the same bytes, so this is
        never used as proof that initialization is pending.
        """

        return any(slot == ZERO_CIPHERTEXT for slot in self.vote_state[: self.num_options])


def decode_poll_account(data: bytes) -> PollAccountState:
    if len(data) < 8:
        raise ValueError("account data too short")
    discriminator = data[:8]
    multi_option = discriminator == account_discriminator(MULTI_OPTION_POLL_ACCOUNT)
    if not multi_option and discriminator != account_discriminator(POLL_ACCOUNT):
        raise ValueError("not a poll account")
    reader = _Reader(data[8:])
    bump = reader.u8()
    slots = MULTI_OPTION_SLOTS if multi_option else BINARY_SLOTS
    vote_state = tuple(reader.take(32) for _ in range(slots))
    poll_id = reader.u32()
    authority = Pubkey.from_bytes(reader.take(32))
    nonce = reader.u128()
    question = reader.string()
    if multi_option:
        options = tuple(reader.strings())
        num_options = reader.u8()
    else:
        options = ("Yes", "No")
        num_options = 2
    return PollAccountState(
        bump=bump,
        vote_state=vote_state,
        poll_id=poll_id,
        authority=authority,
        nonce=nonce,
        question=question,
        options=options,
        num_options=num_options,
        multi_option=multi_option,
    )


def encode_poll_account(
    *,
    poll_id: int,
    authority: Pubkey,
    nonce: int,
    question: str,
    vote_state: Sequence[bytes],
    options: Sequence[str] = (),
    multi_option: bool = True,
    bump: int = 255,
) -> bytes:
    slots = MULTI_OPTION_SLOTS if multi_option else BINARY_SLOTS
    state = list(vote_state)[:slots]
    state += [ZERO_CIPHERTEXT] * (slots - len(state))
    name = MULTI_OPTION_POLL_ACCOUNT if multi_option else POLL_ACCOUNT
    payload = account_discriminator(name) + bytes([bump]) + b"".join(state)
    payload += struct.pack("<I", poll_id) + bytes(authority) + u128_le(nonce) + borsh_string(question)
    if multi_option:
        payload += borsh_string_vec(options) + bytes([len(options)])
    return payload


__all__ = [
    "PollAccountState",
    "ZERO_CIPHERTEXT",
    "account_discriminator",
    "decode_poll_account",
    "encode_poll_account",
]
