"""
Decryption of measurement envelopes served by the graph.hangout.audio proxy.

The proxy answers with a CryptoJS-style JSON envelope

    {"ct": "<base64 ciphertext>", "iv": "<hex iv>", "s": "<hex salt>"}

encrypted with AES-256-CBC under a key derived from the per-request
passphrase (a UUID4 sent with the request) via OpenSSL's EVP_BytesToKey
with MD5. The plaintext is itself a JSON string literal that wraps the
measurement text.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import json
from typing import Any, Mapping, Tuple, Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from scanner.errors import DecryptError


KEY_LEN = 32
IV_LEN = 16


def evp_bytes_to_key(passphrase: Union[str, bytes], salt: bytes, key_len: int = KEY_LEN, iv_len: int = IV_LEN) -> Tuple[bytes, bytes]:
    """
    OpenSSL EVP_BytesToKey, one MD5 iteration per block:
      D_1 = MD5(pass || salt), D_i = MD5(D_{i-1} || pass || salt)
    until key_len + iv_len bytes exist. Returns (key, iv).
    """
    if isinstance(passphrase, str):
        passphrase = passphrase.encode("utf-8")
    data = passphrase + salt
    derived = b""
    block = b""
    while len(derived) < key_len + iv_len:
        block = hashlib.md5(block + data).digest()
        derived += block
    return derived[:key_len], derived[key_len:key_len + iv_len]


def _envelope_fields(envelope: Union[str, bytes, Mapping[str, Any]]) -> Mapping[str, Any]:
    if isinstance(envelope, (str, bytes)):
        try:
            envelope = json.loads(envelope)
        except ValueError as e:
            raise DecryptError(f"envelope is not JSON: {e}") from e
    if not isinstance(envelope, Mapping) or "ct" not in envelope or "s" not in envelope:
        raise DecryptError("envelope must carry 'ct' and 's'")
    return envelope


def decrypt_envelope(envelope: Union[str, bytes, Mapping[str, Any]], passphrase: str) -> str:
    """
    Decrypt an envelope back into the measurement text.

    An explicit "iv" in the envelope wins over the derived IV. Raises
    DecryptError on any malformed input, wrong key or bad padding.
    """
    env = _envelope_fields(envelope)
    try:
        ciphertext = base64.b64decode(env["ct"], validate=False)
        salt = binascii.unhexlify(env["s"])
        key, derived_iv = evp_bytes_to_key(passphrase, salt)
        iv = binascii.unhexlify(env["iv"]) if env.get("iv") else derived_iv
    except (binascii.Error, TypeError, ValueError) as e:
        raise DecryptError(f"malformed envelope field: {e}") from e

    if len(iv) != IV_LEN or not ciphertext or len(ciphertext) % 16:
        raise DecryptError("bad iv or ciphertext length")

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        raw = unpadder.update(padded) + unpadder.finalize()
        plaintext = raw.decode("utf-8")
    except ValueError as e:  # bad padding or UnicodeDecodeError
        raise DecryptError(f"decryption failed: {e}") from e

    try:
        payload = json.loads(plaintext)
    except ValueError as e:
        raise DecryptError(f"plaintext is not a JSON string: {e}") from e
    if not isinstance(payload, str):
        raise DecryptError("plaintext JSON is not a string")
    return payload
