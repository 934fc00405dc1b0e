#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Derivation of the AccessToken that must accompany WriteDevice requests.

The gateway hands out a 16-character session token in every GetDeviceListAck. The
AccessToken is that token encrypted with the gateway's 16-character secret key
(shown in the vendor's mobile app) using AES-128 in ECB mode with no padding,
rendered as upper-case hex.
"""

from __future__ import annotations

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .internal_types import *
from .exceptions import InvalidKeyError, InvalidTokenError

AES_BLOCK_SIZE = 16
"""AES block size in bytes."""

VALID_KEY_SIZES = (16, 24, 32)
"""Key lengths (in bytes) accepted by AES."""

def _to_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, str):
        return value.encode('utf-8')
    return bytes(value)

def derive_access_token(key: Union[str, bytes], token: Union[str, bytes]) -> str:
    """Encrypt a session token with the secret key, returning the AccessToken.

    Both arguments may be given as str (encoded as UTF-8) or bytes. The key must be
    a valid AES key length and the token must be a whole number of 16-byte blocks;
    nothing is padded or truncated.

    Raises InvalidKeyError or InvalidTokenError on bad lengths.
    """
    key_bytes = _to_bytes(key)
    token_bytes = _to_bytes(token)
    if len(key_bytes) not in VALID_KEY_SIZES:
        raise InvalidKeyError(f"Invalid key length {len(key_bytes)}; must be one of {VALID_KEY_SIZES} bytes")
    if len(token_bytes) == 0 or len(token_bytes) % AES_BLOCK_SIZE != 0:
        raise InvalidTokenError(f"Invalid token length {len(token_bytes)}; must be a multiple of {AES_BLOCK_SIZE} bytes")
    encryptor = Cipher(algorithms.AES(key_bytes), modes.ECB()).encryptor()
    ciphertext = encryptor.update(token_bytes) + encryptor.finalize()
    return ciphertext.hex().upper()
