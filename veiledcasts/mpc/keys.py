"""Retrieval of the MPC network's published X25519 key."""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Any, Optional, Protocol

import httpx

from ..errors import EncryptionSetupError

LOGGER = logging.getLogger(__name__)


class MxeKeySource(Protocol):
    async def fetch_mxe_public_key(self) -> Optional[bytes]:
        """Return the 32-byte key, or ``None`` while it is not yet published."""


class MpcGatewayError(RuntimeError):
    def __init__(self, message: str, *, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class MpcGatewayClient:
    """JSON-RPC client for an MPC gateway exposing ``getMxePublicKey``."""

    def __init__(
        self,
        url: str,
        *,
        program_id: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = url
        self._program_id = program_id
        self._timeout = timeout
        self._transport = transport

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": int(time.time() * 1000), "method": method, "params": params}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self._url, json=payload)
        if response.status_code >= 400:
            raise MpcGatewayError(f"MPC gateway responded with HTTP {response.status_code}", code=response.status_code)
        data = response.json()
        if "error" in data:
            error = data["error"] or {}
            raise MpcGatewayError(str(error.get("message") or "MPC gateway error"), code=error.get("code"))
        return data.get("result")

    async def fetch_mxe_public_key(self) -> Optional[bytes]:
        result = await self._rpc("getMxePublicKey", [self._program_id])
        if not result:
            return None
        key = base64.b64decode(result) if isinstance(result, str) else bytes(result)
        if len(key) != 32:
            raise MpcGatewayError("MPC gateway returned a malformed public key")
        return key


async def fetch_mxe_public_key_with_retry(
    source: MxeKeySource,
    *,
    attempts: int = 10,
    delay: float = 0.5,
) -> bytes:
    """Poll ``source`` a fixed number of times with a fixed delay."""

    for attempt in range(1, attempts + 1):
        try:
            key = await source.fetch_mxe_public_key()
        except (httpx.HTTPError, MpcGatewayError) as exc:
            LOGGER.warning("MXE key fetch attempt %s/%s failed: %s", attempt, attempts, exc)
            key = None
        if key is not None:
            return key
        if attempt < attempts:
            await asyncio.sleep(delay)
    raise EncryptionSetupError(f"MXE public key unavailable after {attempts} attempts")


__all__ = [
    "MpcGatewayClient",
    "MpcGatewayError",
    "MxeKeySource",
    "fetch_mxe_public_key_with_retry",
]
