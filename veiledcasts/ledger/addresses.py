"""Deterministic program-derived addresses for the voting and MPC programs."""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from typing import Optional, Sequence

from solders.pubkey import Pubkey

SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")

POLL_SEED = b"poll"
MULTI_POLL_SEED = b"multi_poll"
SIGNER_SEED = b"SignerAccount"
MXE_SEED = b"MXEAccount"
MEMPOOL_SEED = b"Mempool"
EXECPOOL_SEED = b"Execpool"
COMPUTATION_SEED = b"ComputationAccount"
COMP_DEF_SEED = b"ComputationDefinitionAccount"
CLUSTER_SEED = b"Cluster"

U32_MAX = 0xFFFFFFFF
U64_MAX = 0xFFFFFFFFFFFFFFFF


def u32_le(value: int) -> bytes:
    if not 0 <= value <= U32_MAX:
        raise ValueError(f"{value} does not fit in u32")
    return struct.pack("<I", value)


def u64_le(value: int) -> bytes:
    if not 0 <= value <= U64_MAX:
        raise ValueError(f"{value} does not fit in u64")
    return struct.pack("<Q", value)


def comp_def_offset(circuit: str) -> int:
    """Offset of a computation definition: first four SHA-256 bytes, little-endian."""

    digest = hashlib.sha256(circuit.encode("utf-8")).digest()
    return struct.unpack("<I", digest[:4])[0]


def as_pubkey(value: Pubkey | str | bytes) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise ValueError("public keys are 32 bytes")
        return Pubkey.from_bytes(bytes(value))
    return Pubkey.from_string(value)


@dataclass(frozen=True, slots=True)
class ComputationAccounts:
    """Every account the MPC program needs to queue one computation."""

    sign_pda: Pubkey
    mxe: Pubkey
    mempool: Pubkey
    executing_pool: Pubkey
    computation: Pubkey
    comp_def: Pubkey
    cluster: Pubkey
    fee_pool: Pubkey
    clock: Pubkey


class AddressDeriver:
    """Pure address derivation shared with the on-ledger programs."""

    def __init__(
        self,
        voting_program_id: Pubkey | str,
        arcium_program_id: Pubkey | str,
        *,
        fee_pool: Pubkey | str,
        clock: Pubkey | str,
        cluster_offset: int,
    ) -> None:
        self.voting_program_id = as_pubkey(voting_program_id)
        self.arcium_program_id = as_pubkey(arcium_program_id)
        self.fee_pool = as_pubkey(fee_pool)
        self.clock = as_pubkey(clock)
        self.cluster_offset = cluster_offset

    @classmethod
    def from_settings(cls, settings) -> "AddressDeriver":
        return cls(
            settings.voting_program_id,
            settings.arcium_program_id,
            fee_pool=settings.fee_pool_account,
            clock=settings.clock_account,
            cluster_offset=settings.cluster_offset,
        )

    def _voting_pda(self, seeds: Sequence[bytes]) -> Pubkey:
        address, _bump = Pubkey.find_program_address(list(seeds), self.voting_program_id)
        return address

    def _arcium_pda(self, seeds: Sequence[bytes]) -> Pubkey:
        address, _bump = Pubkey.find_program_address(list(seeds), self.arcium_program_id)
        return address

    # ------------------------------------------------------------------
    # Voting program
    def poll(self, poll_id: int, *, creator: Optional[Pubkey | str] = None, multi_option: bool = True) -> Pubkey:
        """Address of a poll record.

        Binary polls are keyed by creator and id, multi-option polls by id only.
        """

        if multi_option:
            return self._voting_pda([MULTI_POLL_SEED, u32_le(poll_id)])
        if creator is None:
            raise ValueError("binary poll addresses require the creator")
        return self._voting_pda([POLL_SEED, bytes(as_pubkey(creator)), u32_le(poll_id)])

    def signer(self) -> Pubkey:
        return self._voting_pda([SIGNER_SEED])

    # ------------------------------------------------------------------
    # MPC program
    def mxe(self) -> Pubkey:
        return self._arcium_pda([MXE_SEED, bytes(self.voting_program_id)])

    def mempool(self) -> Pubkey:
        return self._arcium_pda([MEMPOOL_SEED, bytes(self.voting_program_id)])

    def executing_pool(self) -> Pubkey:
        return self._arcium_pda([EXECPOOL_SEED, bytes(self.voting_program_id)])

    def computation(self, handle: int) -> Pubkey:
        return self._arcium_pda([COMPUTATION_SEED, bytes(self.voting_program_id), u64_le(handle)])

    def comp_def(self, circuit: str) -> Pubkey:
        return self._arcium_pda(
            [COMP_DEF_SEED, bytes(self.voting_program_id), u32_le(comp_def_offset(circuit))]
        )

    def cluster(self) -> Pubkey:
        return self._arcium_pda([CLUSTER_SEED, u32_le(self.cluster_offset)])

    def computation_accounts(self, handle: int, circuit: str) -> ComputationAccounts:
        return ComputationAccounts(
            sign_pda=self.signer(),
            mxe=self.mxe(),
            mempool=self.mempool(),
            executing_pool=self.executing_pool(),
            computation=self.computation(handle),
            comp_def=self.comp_def(circuit),
            cluster=self.cluster(),
            fee_pool=self.fee_pool,
            clock=self.clock,
        )


__all__ = [
    "AddressDeriver",
    "ComputationAccounts",
    "SYSTEM_PROGRAM_ID",
    "as_pubkey",
    "comp_def_offset",
    "u32_le",
    "u64_le",
]
