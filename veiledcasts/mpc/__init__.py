"""Client-side encryption for the MPC network."""

from .cipher import Cipher, StreamCipher
from .keys import MpcGatewayClient, MxeKeySource, fetch_mxe_public_key_with_retry
from .session import EncryptionSession

__all__ = [
    "Cipher",
    "EncryptionSession",
    "MpcGatewayClient",
    "MxeKeySource",
    "StreamCipher",
    "fetch_mxe_public_key_with_retry",
]
