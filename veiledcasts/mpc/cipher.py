"""Symmetric cipher shared between a voter and the MPC network.

Both sides run X25519 against each other's public key, stretch the shared
secret with HKDF-SHA256 and encrypt 32-byte little-endian field elements with
ChaCha20 under the per-operation 128-bit nonce.
"""

from __future__ import annotations

from typing import List, Protocol, Sequence

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers import Cipher as _Primitive
from cryptography.hazmat.primitives.ciphers import algorithms
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

FIELD_SIZE = 32
NONCE_SIZE = 16
KEY_INFO = b"veiledcasts/vote-cipher/v1"


class Cipher(Protocol):
    """Capability every vote cipher offers."""

    def encrypt(self, plaintexts: Sequence[int], nonce: int) -> List[bytes]:
        ...

    def decrypt(self, ciphertexts: Sequence[bytes], nonce: int) -> List[int]:
        ...


def public_bytes(private_key: X25519PrivateKey) -> bytes:
    return private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)


def shared_secret(private_key: X25519PrivateKey, peer_public_key: bytes) -> bytes:
    if len(peer_public_key) != 32:
        raise ValueError("X25519 public keys are 32 bytes")
    return private_key.exchange(X25519PublicKey.from_public_bytes(bytes(peer_public_key)))


def _nonce_bytes(nonce: int) -> bytes:
    if not 0 <= nonce < 1 << 128:
        raise ValueError("nonce must fit in 128 bits")
    return nonce.to_bytes(NONCE_SIZE, "little")


class StreamCipher:
    """ChaCha20 over field elements, keyed from an X25519 shared secret."""

    def __init__(self, secret: bytes) -> None:
        self._key = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=KEY_INFO).derive(secret)

    @classmethod
    def from_key_agreement(cls, private_key: X25519PrivateKey, peer_public_key: bytes) -> "StreamCipher":
        return cls(shared_secret(private_key, peer_public_key))

    def _apply(self, payload: bytes, nonce: int) -> bytes:
        context = _Primitive(algorithms.ChaCha20(self._key, _nonce_bytes(nonce)), mode=None).encryptor()
        return context.update(payload) + context.finalize()

    def encrypt(self, plaintexts: Sequence[int], nonce: int) -> List[bytes]:
        blocks = []
        for value in plaintexts:
            if value < 0 or value.bit_length() > FIELD_SIZE * 8:
                raise ValueError(f"{value} is not a valid field element")
            blocks.append(int(value).to_bytes(FIELD_SIZE, "little"))
        stream = self._apply(b"".join(blocks), nonce)
        return [stream[index : index + FIELD_SIZE] for index in range(0, len(stream), FIELD_SIZE)]

    def decrypt(self, ciphertexts: Sequence[bytes], nonce: int) -> List[int]:
        for block in ciphertexts:
            if len(block) != FIELD_SIZE:
                raise ValueError("ciphertexts are 32 bytes")
        stream = self._apply(b"".join(bytes(block) for block in ciphertexts), nonce)
        return [
            int.from_bytes(stream[index : index + FIELD_SIZE], "little")
            for index in range(0, len(stream), FIELD_SIZE)
        ]


__all__ = ["Cipher", "StreamCipher", "public_bytes", "shared_secret"]
