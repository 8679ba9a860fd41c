from __future__ import annotations

import asyncio
import base64
import json
import struct
from typing import Any, Dict, List

import httpx
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from veiledcasts.errors import DuplicateError, LedgerSubmissionError, UnconfirmedSubmissionError
from veiledcasts.ledger.accounts import decode_poll_account, encode_poll_account
from veiledcasts.ledger.events import REVEAL_MULTI_OPTION_RESULT_EVENT, encode_event_log
from veiledcasts.ledger.instructions import InstructionBuilder
from veiledcasts.ledger.simulator import LocalLedger
from veiledcasts.ledger.solana import SolanaLedgerClient, load_keypair
from veiledcasts.mpc.session import EncryptionSession
from veiledcasts.reconciler import DualStoreReconciler
from veiledcasts.submission import PollTarget, SubmissionStatus, VoteSubmissionPipeline


class FakeRpc:
    """Answers JSON-RPC calls from a method -> result table."""

    def __init__(self, results: Dict[str, Any]) -> None:
        self.results = results
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append(body)
        outcome = self.results[body["method"]]
        if callable(outcome):
            outcome = outcome(body["params"])
        if isinstance(outcome, dict) and "__error__" in outcome:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": outcome["__error__"]})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": outcome})

    def methods(self) -> List[str]:
        return [call["method"] for call in self.calls]


def _client(deriver, rpc, keypair: Keypair | None = None, confirm_timeout: float = 1.0) -> SolanaLedgerClient:
    return SolanaLedgerClient(
        "http://ledger.test",
        keypair=keypair or Keypair(),
        deriver=deriver,
        poll_interval=0.0,
        confirm_timeout=confirm_timeout,
        transport=httpx.MockTransport(rpc),
    )


def _reveal(deriver, keypair: Keypair):
    return InstructionBuilder(deriver).reveal(handle=77, poll_id=1, authority=keypair.pubkey())


def test_submit_signs_sends_and_confirms(deriver) -> None:
    keypair = Keypair()
    rpc = FakeRpc(
        {
            "getLatestBlockhash": {"value": {"blockhash": str(Hash.new_unique()), "lastValidBlockHeight": 1}},
            "sendTransaction": "5ig",
            "getSignatureStatuses": {"value": [{"confirmationStatus": "confirmed", "err": None}]},
        }
    )
    client = _client(deriver, rpc, keypair)
    signature = asyncio.run(client.submit(_reveal(deriver, keypair)))
    assert signature == "5ig"
    assert rpc.methods() == ["getLatestBlockhash", "sendTransaction", "getSignatureStatuses"]
    encoded, options = rpc.calls[1]["params"]
    assert options["encoding"] == "base64"
    assert base64.b64decode(encoded)


def test_failed_transaction_carries_program_logs(deriver) -> None:
    keypair = Keypair()
    logs = ["Program log: AnchorError occurred. Error Code: InvalidAuthority."]
    rpc = FakeRpc(
        {
            "getLatestBlockhash": {"value": {"blockhash": str(Hash.new_unique()), "lastValidBlockHeight": 1}},
            "sendTransaction": "bad",
            "getSignatureStatuses": {
                "value": [{"confirmationStatus": "confirmed", "err": {"InstructionError": [2, {"Custom": 6000}]}}]
            },
            "getTransaction": {"meta": {"logMessages": logs}},
        }
    )
    client = _client(deriver, rpc, keypair)
    with pytest.raises(LedgerSubmissionError) as excinfo:
        asyncio.run(client.submit(_reveal(deriver, keypair)))
    assert excinfo.value.code == 6000
    assert excinfo.value.logs == logs
    assert "InvalidAuthority" in excinfo.value.diagnostics()


def test_rpc_error_is_a_submission_error(deriver) -> None:
    rpc = FakeRpc(
        {
            "getLatestBlockhash": {
                "__error__": {"code": -32002, "message": "Blockhash not found", "data": {"logs": ["log line"]}}
            }
        }
    )
    client = _client(deriver, rpc)
    with pytest.raises(LedgerSubmissionError) as excinfo:
        asyncio.run(client.submit(_reveal(deriver, Keypair())))
    assert "Blockhash not found" in str(excinfo.value)
    assert excinfo.value.logs == ["log line"]


def test_find_completion_scans_computation_history(deriver) -> None:
    callback_logs = [
        "Program log: Instruction: RevealMultiOptionResultCallback",
        encode_event_log(REVEAL_MULTI_OPTION_RESULT_EVENT, struct.pack("<4Q", 1, 4, 4, 0)),
    ]

    def transaction(params):
        if params[0] == "queue-sig":
            return {"meta": {"logMessages": ["Program log: Instruction: RevealMultiOptionResult"]}}
        return {"meta": {"logMessages": callback_logs}}

    rpc = FakeRpc(
        {
            "getSignaturesForAddress": [
                {"signature": "failed-sig", "err": {"InstructionError": [0, "Custom"]}},
                {"signature": "queue-sig", "err": None},
                {"signature": "callback-sig", "err": None},
            ],
            "getTransaction": transaction,
        }
    )
    client = _client(deriver, rpc)
    signal = asyncio.run(client.find_completion(77, "RevealMultiOptionResultCallback"))
    assert signal is not None
    assert signal.signature == "callback-sig"
    assert signal.outcome.winner == 1
    assert rpc.calls[0]["params"][0] == str(deriver.computation(77))


def test_get_account_decodes_base64(deriver) -> None:
    keypair = Keypair()
    data = encode_poll_account(
        poll_id=5, authority=keypair.pubkey(), nonce=1, question="Q?", vote_state=[], options=["A", "B"]
    )
    rpc = FakeRpc(
        {"getAccountInfo": lambda params: {"value": {"data": [base64.b64encode(data).decode(), "base64"]}}}
    )
    client = _client(deriver, rpc)
    raw = asyncio.run(client.get_account(deriver.poll(5)))
    assert decode_poll_account(raw).authority == keypair.pubkey()

    rpc.results["getAccountInfo"] = {"value": None}
    assert asyncio.run(client.get_account(deriver.poll(6))) is None


def test_load_keypair_formats(tmp_path) -> None:
    keypair = Keypair()
    as_json = json.dumps(list(bytes(keypair)))
    assert load_keypair(as_json).pubkey() == keypair.pubkey()
    assert load_keypair(str(keypair)).pubkey() == keypair.pubkey()
    path = tmp_path / "id.json"
    path.write_text(as_json, encoding="utf-8")
    assert load_keypair(str(path)).pubkey() == keypair.pubkey()


def _never_confirms() -> FakeRpc:
    return FakeRpc(
        {
            "getLatestBlockhash": {"value": {"blockhash": str(Hash.new_unique()), "lastValidBlockHeight": 1}},
            "sendTransaction": "sent-sig",
            "getSignatureStatuses": {"value": [None]},
            "getAccountInfo": {"value": None},
        }
    )


def _pipeline(deriver, client: SolanaLedgerClient, database, on_status=None) -> VoteSubmissionPipeline:
    session = EncryptionSession(LocalLedger(), attempts=1, delay=0.0)
    reconciler = DualStoreReconciler(database)
    return VoteSubmissionPipeline(client, session, InstructionBuilder(deriver), reconciler, on_status=on_status)


def test_transport_failure_is_a_submission_error(deriver) -> None:
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(deriver, unreachable)
    with pytest.raises(LedgerSubmissionError) as excinfo:
        asyncio.run(client.submit(_reveal(deriver, Keypair())))
    assert "getLatestBlockhash" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


def test_unconfirmed_send_carries_signature(deriver) -> None:
    client = _client(deriver, _never_confirms(), confirm_timeout=0.0)
    with pytest.raises(UnconfirmedSubmissionError) as excinfo:
        asyncio.run(client.submit(_reveal(deriver, Keypair())))
    assert excinfo.value.signature == "sent-sig"
    assert "Re-check ledger state" in excinfo.value.hint


def test_unconfirmed_vote_is_pending_and_never_resent(deriver, database) -> None:
    rpc = _never_confirms()
    client = _client(deriver, rpc, confirm_timeout=0.0)
    pipeline = _pipeline(deriver, client, database)
    target = PollTarget(onchain_id=4, authority=str(Pubkey.new_unique()), option_count=2)

    result = asyncio.run(pipeline.cast_vote(target, 0))
    assert result.pending is True
    assert result.state.status is SubmissionStatus.PROCESSING
    assert result.signature == "sent-sig"
    assert pipeline.votes.get(4, str(client.payer)).transaction_signature == "sent-sig"

    with pytest.raises(DuplicateError):
        asyncio.run(pipeline.cast_vote(target, 0))
    assert rpc.methods().count("sendTransaction") == 1


def test_unconfirmed_creation_is_not_reported_as_rejected(deriver, database) -> None:
    client = _client(deriver, _never_confirms(), confirm_timeout=0.0)
    states = []
    pipeline = _pipeline(deriver, client, database, on_status=lambda state: states.append(state.status))

    with pytest.raises(UnconfirmedSubmissionError):
        asyncio.run(pipeline.create_poll(9, "Unconfirmed creation", ["A", "B"], wait=False))
    assert SubmissionStatus.ERROR not in states
    assert pipeline.reconciler.polls.get_by_onchain_id(9) is None
