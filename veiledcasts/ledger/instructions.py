"""Instruction encoding for the confidential voting program.

Each instruction is an 8-byte Anchor discriminator (``sha256("global:<name>")``)
followed by Borsh-encoded arguments.  Binary and multi-option polls use
separate instructions and MPC circuits; the variant is picked from the poll
kind.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from .addresses import SYSTEM_PROGRAM_ID, AddressDeriver, ComputationAccounts, as_pubkey, u32_le, u64_le

CREATE_POLL = "create_poll"
CAST_VOTE = "cast_vote"
REVEAL = "reveal"

# (instruction name, circuit name, callback instruction) per action and poll kind.
_VARIANTS = {
    (CREATE_POLL, False): ("create_new_poll", "init_vote_stats", "InitVoteStatsCallback"),
    (CREATE_POLL, True): ("create_multi_option_poll", "init_multi_option_vote_stats", "InitMultiOptionVoteStatsCallback"),
    (CAST_VOTE, False): ("vote", "vote", "VoteCallback"),
    (CAST_VOTE, True): ("vote_multi_option", "vote_multi_option", "VoteMultiOptionCallback"),
    (REVEAL, False): ("reveal_result", "reveal_result", "RevealResultCallback"),
    (REVEAL, True): ("reveal_multi_option_result", "reveal_multi_option_result", "RevealMultiOptionResultCallback"),
}

CIPHERTEXT_SIZE = 32
PUBLIC_KEY_SIZE = 32


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


def borsh_string(value: str) -> bytes:
    raw = value.encode("utf-8")
    return struct.pack("<I", len(raw)) + raw


def borsh_string_vec(values: Sequence[str]) -> bytes:
    return struct.pack("<I", len(values)) + b"".join(borsh_string(value) for value in values)


def u128_le(value: int) -> bytes:
    if not 0 <= value < 1 << 128:
        raise ValueError(f"{value} does not fit in u128")
    return value.to_bytes(16, "little")


def _fixed(value: bytes, size: int, label: str) -> bytes:
    if len(value) != size:
        raise ValueError(f"{label} must be {size} bytes, got {len(value)}")
    return bytes(value)


@dataclass(frozen=True, slots=True)
class PollInstruction:
    """A fully addressed instruction, independent of the transport that sends it."""

    action: str
    multi_option: bool
    handle: int
    poll_id: int
    poll_address: Pubkey
    accounts: ComputationAccounts
    authority: Pubkey
    nonce: Optional[int] = None
    question: Optional[str] = None
    options: Tuple[str, ...] = field(default_factory=tuple)
    ciphertext: Optional[bytes] = None
    public_key: Optional[bytes] = None

    @property
    def name(self) -> str:
        return _VARIANTS[(self.action, self.multi_option)][0]

    @property
    def circuit(self) -> str:
        return _VARIANTS[(self.action, self.multi_option)][1]

    @property
    def callback(self) -> str:
        return _VARIANTS[(self.action, self.multi_option)][2]

    @property
    def data(self) -> bytes:
        payload = instruction_discriminator(self.name) + u64_le(self.handle) + u32_le(self.poll_id)
        if self.action == CREATE_POLL:
            payload += borsh_string(self.question or "")
            if self.multi_option:
                payload += borsh_string_vec(self.options)
            payload += u128_le(self.nonce or 0)
        elif self.action == CAST_VOTE:
            payload += _fixed(self.ciphertext or b"", CIPHERTEXT_SIZE, "ciphertext")
            payload += _fixed(self.public_key or b"", PUBLIC_KEY_SIZE, "public key")
            payload += u128_le(self.nonce or 0)
        return payload

    def account_metas(self, payer: Pubkey, arcium_program_id: Pubkey) -> List[AccountMeta]:
        accounts = self.accounts
        return [
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(accounts.sign_pda, is_signer=False, is_writable=True),
            AccountMeta(accounts.mxe, is_signer=False, is_writable=False),
            AccountMeta(accounts.mempool, is_signer=False, is_writable=True),
            AccountMeta(accounts.executing_pool, is_signer=False, is_writable=True),
            AccountMeta(accounts.computation, is_signer=False, is_writable=True),
            AccountMeta(accounts.comp_def, is_signer=False, is_writable=False),
            AccountMeta(accounts.cluster, is_signer=False, is_writable=True),
            AccountMeta(accounts.fee_pool, is_signer=False, is_writable=True),
            AccountMeta(accounts.clock, is_signer=False, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(arcium_program_id, is_signer=False, is_writable=False),
            AccountMeta(self.poll_address, is_signer=False, is_writable=True),
        ]

    def to_solders(self, payer: Pubkey, program_id: Pubkey, arcium_program_id: Pubkey) -> Instruction:
        return Instruction(program_id, self.data, self.account_metas(payer, arcium_program_id))


class InstructionBuilder:
    """Builds addressed instructions for the three confidential operations."""

    def __init__(self, deriver: AddressDeriver) -> None:
        self.deriver = deriver

    def _poll_address(self, poll_id: int, authority: Pubkey, multi_option: bool) -> Pubkey:
        return self.deriver.poll(poll_id, creator=authority, multi_option=multi_option)

    def _circuit(self, action: str, multi_option: bool) -> str:
        return _VARIANTS[(action, multi_option)][1]

    def create_poll(
        self,
        *,
        handle: int,
        poll_id: int,
        question: str,
        nonce: int,
        authority: Pubkey | str,
        options: Optional[Sequence[str]] = None,
    ) -> PollInstruction:
        authority = as_pubkey(authority)
        multi_option = options is not None
        return PollInstruction(
            action=CREATE_POLL,
            multi_option=multi_option,
            handle=handle,
            poll_id=poll_id,
            poll_address=self._poll_address(poll_id, authority, multi_option),
            accounts=self.deriver.computation_accounts(handle, self._circuit(CREATE_POLL, multi_option)),
            authority=authority,
            nonce=nonce,
            question=question,
            options=tuple(options or ()),
        )

    def cast_vote(
        self,
        *,
        handle: int,
        poll_id: int,
        ciphertext: bytes,
        public_key: bytes,
        nonce: int,
        authority: Pubkey | str,
        multi_option: bool = True,
    ) -> PollInstruction:
        authority = as_pubkey(authority)
        return PollInstruction(
            action=CAST_VOTE,
            multi_option=multi_option,
            handle=handle,
            poll_id=poll_id,
            poll_address=self._poll_address(poll_id, authority, multi_option),
            accounts=self.deriver.computation_accounts(handle, self._circuit(CAST_VOTE, multi_option)),
            authority=authority,
            nonce=nonce,
            ciphertext=_fixed(ciphertext, CIPHERTEXT_SIZE, "ciphertext"),
            public_key=_fixed(public_key, PUBLIC_KEY_SIZE, "public key"),
        )

    def reveal(
        self,
        *,
        handle: int,
        poll_id: int,
        authority: Pubkey | str,
        multi_option: bool = True,
    ) -> PollInstruction:
        authority = as_pubkey(authority)
        return PollInstruction(
            action=REVEAL,
            multi_option=multi_option,
            handle=handle,
            poll_id=poll_id,
            poll_address=self._poll_address(poll_id, authority, multi_option),
            accounts=self.deriver.computation_accounts(handle, self._circuit(REVEAL, multi_option)),
            authority=authority,
        )


__all__ = [
    "CAST_VOTE",
    "CREATE_POLL",
    "CIPHERTEXT_SIZE",
    "InstructionBuilder",
    "PUBLIC_KEY_SIZE",
    "PollInstruction",
    "REVEAL",
    "borsh_string",
    "borsh_string_vec",
    "instruction_discriminator",
    "u128_le",
]
