from __future__ import annotations

import hashlib
import struct

import pytest
from solders.pubkey import Pubkey

from veiledcasts.ledger.accounts import (
    ZERO_CIPHERTEXT,
    account_discriminator,
    decode_poll_account,
    encode_poll_account,
)
from veiledcasts.ledger.addresses import comp_def_offset, u32_le
from veiledcasts.ledger.events import (
    REVEAL_MULTI_OPTION_RESULT_EVENT,
    REVEAL_RESULT_EVENT,
    VOTE_EVENT,
    RevealOutcome,
    completion_from_logs,
    encode_event_log,
    parse_events,
    pick_winner,
)
from veiledcasts.ledger.instructions import InstructionBuilder, instruction_discriminator


def test_comp_def_offset_uses_first_four_digest_bytes() -> None:
    digest = hashlib.sha256(b"vote_multi_option").digest()
    assert comp_def_offset("vote_multi_option") == int.from_bytes(digest[:4], "little")


def test_u32_rejects_out_of_range() -> None:
    assert u32_le(1) == b"\x01\x00\x00\x00"
    with pytest.raises(ValueError):
        u32_le(-1)
    with pytest.raises(ValueError):
        u32_le(1 << 32)


def test_addresses_are_deterministic(deriver) -> None:
    creator = Pubkey.new_unique()
    assert deriver.poll(9) == deriver.poll(9)
    assert deriver.poll(9) != deriver.poll(10)
    binary = deriver.poll(9, creator=creator, multi_option=False)
    assert binary == deriver.poll(9, creator=str(creator), multi_option=False)
    assert binary != deriver.poll(9, creator=Pubkey.new_unique(), multi_option=False)
    assert binary != deriver.poll(9)
    with pytest.raises(ValueError):
        deriver.poll(9, multi_option=False)

    accounts = deriver.computation_accounts(42, "vote")
    assert accounts.computation == deriver.computation(42)
    assert accounts.computation != deriver.computation(43)
    assert accounts.comp_def != deriver.comp_def("reveal_result")
    assert accounts.fee_pool == deriver.fee_pool


def test_create_multi_option_layout(deriver) -> None:
    builder = InstructionBuilder(deriver)
    authority = Pubkey.new_unique()
    instruction = builder.create_poll(
        handle=7, poll_id=3, question="Best?", nonce=5, authority=authority, options=["A", "B"]
    )
    assert instruction.name == "create_multi_option_poll"
    assert instruction.callback == "InitMultiOptionVoteStatsCallback"
    assert instruction.poll_address == deriver.poll(3)
    expected = (
        instruction_discriminator("create_multi_option_poll")
        + struct.pack("<Q", 7)
        + struct.pack("<I", 3)
        + struct.pack("<I", 5)
        + b"Best?"
        + struct.pack("<I", 2)
        + struct.pack("<I", 1)
        + b"A"
        + struct.pack("<I", 1)
        + b"B"
        + (5).to_bytes(16, "little")
    )
    assert instruction.data == expected


def test_binary_vote_layout_and_accounts(deriver) -> None:
    builder = InstructionBuilder(deriver)
    creator = Pubkey.new_unique()
    instruction = builder.cast_vote(
        handle=1,
        poll_id=2,
        ciphertext=b"\x01" * 32,
        public_key=b"\x02" * 32,
        nonce=3,
        authority=creator,
        multi_option=False,
    )
    assert instruction.name == "vote"
    assert instruction.callback == "VoteCallback"
    assert instruction.poll_address == deriver.poll(2, creator=creator, multi_option=False)
    assert instruction.data[:8] == instruction_discriminator("vote")
    assert instruction.data[20:52] == b"\x01" * 32
    assert instruction.data[52:84] == b"\x02" * 32
    assert len(instruction.data) == 8 + 8 + 4 + 32 + 32 + 16

    payer = Pubkey.new_unique()
    metas = instruction.account_metas(payer, deriver.arcium_program_id)
    assert metas[0].pubkey == payer and metas[0].is_signer
    assert metas[-1].pubkey == instruction.poll_address
    compiled = instruction.to_solders(payer, deriver.voting_program_id, deriver.arcium_program_id)
    assert compiled.program_id == deriver.voting_program_id


def test_vote_rejects_malformed_ciphertext(deriver) -> None:
    builder = InstructionBuilder(deriver)
    with pytest.raises(ValueError):
        builder.cast_vote(
            handle=1, poll_id=2, ciphertext=b"short", public_key=b"\x02" * 32, nonce=3, authority=Pubkey.new_unique()
        )


def test_reveal_variant_follows_poll_kind(deriver) -> None:
    builder = InstructionBuilder(deriver)
    creator = Pubkey.new_unique()
    binary = builder.reveal(handle=1, poll_id=4, authority=creator, multi_option=False)
    multi = builder.reveal(handle=1, poll_id=4, authority=creator)
    assert binary.callback == "RevealResultCallback"
    assert multi.callback == "RevealMultiOptionResultCallback"
    assert len(multi.data) == 8 + 8 + 4


def test_poll_account_decodes() -> None:
    authority = Pubkey.new_unique()
    data = encode_poll_account(
        poll_id=12,
        authority=authority,
        nonce=99,
        question="Which option?",
        vote_state=[b"\x05" * 32] * 3,
        options=["A", "B", "C"],
    )
    assert data[:8] == account_discriminator("MultiOptionPollAccount")
    account = decode_poll_account(data)
    assert account.poll_id == 12
    assert account.authority == authority
    assert account.options == ("A", "B", "C")
    assert account.num_options == 3
    assert account.multi_option
    assert len(account.vote_state) == 5
    assert not account.has_zero_ciphertext

    binary = decode_poll_account(
        encode_poll_account(
            poll_id=1, authority=authority, nonce=0, question="Yes?", vote_state=[], multi_option=False
        )
    )
    assert binary.options == ("Yes", "No")
    assert binary.vote_state == (ZERO_CIPHERTEXT, ZERO_CIPHERTEXT)
    assert binary.has_zero_ciphertext


def test_decode_rejects_foreign_accounts() -> None:
    with pytest.raises(ValueError):
        decode_poll_account(b"\x00" * 64)
    with pytest.raises(ValueError):
        decode_poll_account(account_discriminator("PollAccount") + b"\x01")


def test_pick_winner_breaks_ties_low() -> None:
    assert pick_winner([1, 3, 3, 0]) == 1
    assert pick_winner([0, 0]) == 0
    assert pick_winner([]) is None


def test_completion_from_logs_reads_multi_option_result() -> None:
    logs = [
        "Program log: Instruction: RevealMultiOptionResultCallback",
        "Program data: not-base64!",
        encode_event_log(REVEAL_MULTI_OPTION_RESULT_EVENT, struct.pack("<4Q", 2, 1, 0, 0)),
    ]
    signal = completion_from_logs(logs, handle=5, callback="RevealMultiOptionResultCallback", signature="sig")
    assert signal is not None
    assert signal.outcome == RevealOutcome(vote_counts=(2, 1, 0, 0), winner=0)
    assert completion_from_logs(logs, handle=5, callback="VoteCallback", signature="sig") is None


def test_binary_result_and_vote_events() -> None:
    logs = [
        "Program log: Instruction: RevealResultCallback",
        encode_event_log(REVEAL_RESULT_EVENT, b"\x00"),
        encode_event_log(VOTE_EVENT, struct.pack("<q", 1_700_000_000)),
    ]
    assert [event.name for event in parse_events(logs)] == [REVEAL_RESULT_EVENT, VOTE_EVENT]
    signal = completion_from_logs(logs, handle=1, callback="RevealResultCallback", signature=None)
    assert signal.outcome.winner == 1
    assert signal.outcome.vote_counts == ()
    assert signal.timestamp == 1_700_000_000
