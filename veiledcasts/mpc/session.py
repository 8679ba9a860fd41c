"""Per-wallet encryption session.

A session lives exactly as long as one wallet connection: the ephemeral key
pair is generated on activation and dropped on deactivation or wallet change.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from ..errors import EncryptionSetupError
from .cipher import Cipher, StreamCipher, public_bytes
from .keys import MxeKeySource, fetch_mxe_public_key_with_retry

LOGGER = logging.getLogger(__name__)

CipherFactory = Callable[[X25519PrivateKey, bytes], Cipher]


class EncryptionSession:
    def __init__(
        self,
        key_source: Optional[MxeKeySource],
        *,
        attempts: int = 10,
        delay: float = 0.5,
        cipher_factory: CipherFactory = StreamCipher.from_key_agreement,
    ) -> None:
        self._key_source = key_source
        self._attempts = attempts
        self._delay = delay
        self._cipher_factory = cipher_factory
        self._wallet: Optional[str] = None
        self._private_key: Optional[X25519PrivateKey] = None
        self._cipher: Optional[Cipher] = None

    @property
    def wallet(self) -> Optional[str]:
        return self._wallet

    @property
    def is_ready(self) -> bool:
        return self._cipher is not None

    @property
    def public_key(self) -> bytes:
        if self._private_key is None:
            raise EncryptionSetupError("Encryption session is not active")
        return public_bytes(self._private_key)

    async def activate(self, wallet: str) -> None:
        """Fetch the MXE key and derive a fresh cipher for ``wallet``."""

        self.deactivate()
        if self._key_source is None:
            raise EncryptionSetupError("No MXE key source configured")
        mxe_key = await fetch_mxe_public_key_with_retry(
            self._key_source, attempts=self._attempts, delay=self._delay
        )
        private_key = X25519PrivateKey.generate()
        try:
            cipher = self._cipher_factory(private_key, mxe_key)
        except ValueError as exc:
            raise EncryptionSetupError(f"Key agreement failed: {exc}") from exc
        self._wallet = wallet
        self._private_key = private_key
        self._cipher = cipher
        LOGGER.info("Encryption session ready", extra={"wallet": wallet})

    def deactivate(self) -> None:
        if self._wallet is not None:
            LOGGER.debug("Encryption session closed", extra={"wallet": self._wallet})
        self._wallet = None
        self._private_key = None
        self._cipher = None

    async def ensure_wallet(self, wallet: str) -> None:
        """Activate for ``wallet``, regenerating keys if another wallet was active."""

        if self.is_ready and self._wallet == wallet:
            return
        await self.activate(wallet)

    def encrypt(self, plaintexts: Sequence[int], nonce: int) -> List[bytes]:
        if self._cipher is None:
            raise EncryptionSetupError("Encryption session is not active")
        return self._cipher.encrypt(plaintexts, nonce)


__all__ = ["EncryptionSession"]
