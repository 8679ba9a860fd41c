"""JSON-RPC ledger client for Solana clusters."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from ..errors import LedgerSubmissionError, UnconfirmedSubmissionError
from .addresses import AddressDeriver
from .client import LedgerClient
from .events import CompletionSignal, completion_from_logs
from .instructions import PollInstruction

LOGGER = logging.getLogger(__name__)

_CONFIRMED = {"confirmed", "finalized"}


def load_keypair(raw: str) -> Keypair:
    """Parse a keypair given as a JSON byte array, a base58 string or a file path."""

    candidate = raw.strip()
    if not candidate.startswith("[") and len(candidate) < 256:
        path = Path(candidate).expanduser()
        if path.is_file():
            candidate = path.read_text(encoding="utf-8").strip()
    if candidate.startswith("["):
        try:
            values = json.loads(candidate)
        except json.JSONDecodeError as exc:
            raise ValueError("Invalid keypair JSON") from exc
        return Keypair.from_bytes(bytes(values))
    return Keypair.from_base58_string(candidate)


def _custom_error_code(err: Any) -> Optional[int]:
    if isinstance(err, dict):
        detail = err.get("InstructionError")
        if isinstance(detail, list) and len(detail) == 2 and isinstance(detail[1], dict):
            custom = detail[1].get("Custom")
            if isinstance(custom, int):
                return custom
    return None


class SolanaLedgerClient(LedgerClient):
    """Builds, signs and sends transactions and watches computation accounts."""

    def __init__(
        self,
        url: str,
        *,
        keypair: Keypair,
        deriver: AddressDeriver,
        commitment: str = "confirmed",
        compute_unit_limit: int = 200_000,
        compute_unit_price: int = 1_000_000,
        poll_interval: float = 2.0,
        confirm_timeout: float = 60.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__()
        self._url = url
        self._keypair = keypair
        self._deriver = deriver
        self._commitment = commitment
        self._compute_unit_limit = compute_unit_limit
        self._compute_unit_price = compute_unit_price
        self._confirm_timeout = confirm_timeout
        self._timeout = timeout
        self._transport = transport
        self.poll_interval = poll_interval

    @property
    def payer(self) -> Pubkey:
        return self._keypair.pubkey()

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": int(time.time() * 1000), "method": method, "params": params}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=payload)
        except httpx.HTTPError as exc:
            raise LedgerSubmissionError(f"RPC {method} failed: {exc}") from exc
        if response.status_code >= 400:
            raise LedgerSubmissionError(
                f"RPC responded with HTTP {response.status_code}",
                code=response.status_code,
            )
        data = response.json()
        if "error" in data:
            error = data["error"] or {}
            details = error.get("data") if isinstance(error.get("data"), dict) else {}
            raise LedgerSubmissionError(
                str(error.get("message") or "RPC error"),
                code=error.get("code"),
                logs=details.get("logs") or [],
            )
        return data.get("result")

    async def latest_blockhash(self) -> Hash:
        result = await self._rpc("getLatestBlockhash", [{"commitment": self._commitment}])
        return Hash.from_string(result["value"]["blockhash"])

    def _build_transaction(self, instruction: PollInstruction, blockhash: Hash) -> Transaction:
        program = instruction.to_solders(
            self.payer, self._deriver.voting_program_id, self._deriver.arcium_program_id
        )
        message = Message.new_with_blockhash(
            [
                set_compute_unit_limit(self._compute_unit_limit),
                set_compute_unit_price(self._compute_unit_price),
                program,
            ],
            self.payer,
            blockhash,
        )
        return Transaction([self._keypair], message, blockhash)

    async def submit(self, instruction: PollInstruction) -> str:
        blockhash = await self.latest_blockhash()
        transaction = self._build_transaction(instruction, blockhash)
        encoded = base64.b64encode(bytes(transaction)).decode("ascii")
        signature = await self._rpc(
            "sendTransaction",
            [
                encoded,
                {"encoding": "base64", "skipPreflight": True, "preflightCommitment": self._commitment},
            ],
        )
        if not isinstance(signature, str):
            raise LedgerSubmissionError("RPC returned an invalid transaction signature")
        LOGGER.info(
            "Submitted %s",
            instruction.name,
            extra={"signature": signature, "poll_id": instruction.poll_id, "handle": instruction.handle},
        )
        await self._confirm(signature)
        return signature

    async def _confirm(self, signature: str) -> None:
        deadline = time.monotonic() + self._confirm_timeout
        while True:
            try:
                result = await self._rpc(
                    "getSignatureStatuses", [[signature], {"searchTransactionHistory": True}]
                )
            except LedgerSubmissionError as exc:
                LOGGER.warning("Status lookup for %s failed: %s", signature, exc)
                result = None
            statuses = (result or {}).get("value") or [None]
            status = statuses[0]
            if status is not None:
                if status.get("err") is not None:
                    logs = await self._transaction_logs(signature)
                    raise LedgerSubmissionError(
                        f"Transaction {signature} failed: {status['err']}",
                        logs=logs,
                        code=_custom_error_code(status["err"]),
                    )
                if status.get("confirmationStatus") in _CONFIRMED:
                    return
            if time.monotonic() >= deadline:
                raise UnconfirmedSubmissionError(
                    f"Transaction {signature} was sent but not confirmed within {self._confirm_timeout:.0f}s",
                    signature=signature,
                    timeout=self._confirm_timeout,
                )
            await asyncio.sleep(self.poll_interval)

    async def _transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        commitment = self._commitment if self._commitment in _CONFIRMED else "confirmed"
        return await self._rpc(
            "getTransaction",
            [signature, {"encoding": "json", "commitment": commitment, "maxSupportedTransactionVersion": 0}],
        )

    async def _transaction_logs(self, signature: str) -> List[str]:
        transaction = await self._transaction(signature)
        if not transaction:
            return []
        return list((transaction.get("meta") or {}).get("logMessages") or [])

    async def find_completion(self, handle: int, callback: str) -> Optional[CompletionSignal]:
        address = self._deriver.computation(handle)
        commitment = self._commitment if self._commitment in _CONFIRMED else "confirmed"
        entries = await self._rpc(
            "getSignaturesForAddress", [str(address), {"limit": 25, "commitment": commitment}]
        )
        for entry in entries or []:
            if entry.get("err") is not None:
                continue
            signature = entry.get("signature")
            logs = await self._transaction_logs(signature)
            signal = completion_from_logs(logs, handle=handle, callback=callback, signature=signature)
            if signal is not None:
                return signal
        return None

    async def get_account(self, address: Pubkey) -> Optional[bytes]:
        result = await self._rpc(
            "getAccountInfo", [str(address), {"encoding": "base64", "commitment": self._commitment}]
        )
        value = (result or {}).get("value")
        if not value:
            return None
        data = value.get("data") or ["", "base64"]
        return base64.b64decode(data[0])


__all__ = ["SolanaLedgerClient", "load_keypair"]
