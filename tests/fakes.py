"""
Test doubles shared by unit and integration tests.
"""

import base64
import json
import os
import threading
from typing import Callable, Dict, List, Optional, Tuple
from unittest.mock import Mock

import numpy as np
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from scanner.crypto import evp_bytes_to_key


def make_response(status: int = 200, text: str = "", json_data=None) -> Mock:
    resp = Mock()
    resp.status_code = status
    resp.ok = 200 <= status < 400
    resp.text = text
    if json_data is None:
        resp.json.side_effect = ValueError("not json")
    else:
        resp.json.return_value = json_data
    return resp


class FakeSession:
    """
    Stand-in for requests.Session.

    GET urls are looked up in `routes`; a value may be a response Mock, an
    exception instance (raised) or a callable(url) -> response. Unknown urls
    answer 404. Every call is recorded.
    """

    def __init__(self, routes: Optional[Dict] = None, post_handler: Optional[Callable] = None):
        self.routes = dict(routes or {})
        self.post_handler = post_handler
        self.get_calls: List[str] = []
        self.post_calls: List[Tuple[str, dict]] = []
        self._lock = threading.Lock()

    def get(self, url, headers=None, timeout=None):
        with self._lock:
            self.get_calls.append(url)
        r = self.routes.get(url)
        if r is None:
            return make_response(404)
        if isinstance(r, BaseException):
            raise r
        if callable(r) and not isinstance(r, Mock):
            return r(url)
        return r

    def post(self, url, data=None, headers=None, timeout=None):
        with self._lock:
            self.post_calls.append((url, dict(data or {})))
        if self.post_handler is None:
            return make_response(404)
        return self.post_handler(url, data, headers)

    def close(self):
        pass


def measurement_text(n: int = 40, level: Callable[[float], float] = lambda f: 0.0, header: bool = True) -> str:
    """Tab-separated measurement with `n` log-spaced rows between 20 Hz and 20 kHz."""
    freqs = np.geomspace(20.0, 20000.0, n)
    rows = [f"{f:.4f}\t{level(f):.4f}" for f in freqs]
    if header:
        rows.insert(0, "* freq\tdB")
    return "\n".join(rows) + "\n"


def encrypt_envelope(plaintext: str, passphrase: str, salt: bytes = b"saltsalt", iv: Optional[bytes] = None) -> str:
    """CryptoJS-style envelope around json.dumps(plaintext)."""
    key, derived_iv = evp_bytes_to_key(passphrase, salt)
    use_iv = iv if iv is not None else derived_iv
    padder = padding.PKCS7(128).padder()
    data = padder.update(json.dumps(plaintext).encode("utf-8")) + padder.finalize()
    enc = Cipher(algorithms.AES(key), modes.CBC(use_iv)).encryptor()
    ct = enc.update(data) + enc.finalize()
    env = {"ct": base64.b64encode(ct).decode("ascii"), "s": salt.hex()}
    if iv is not None:
        env["iv"] = iv.hex()
    return json.dumps(env)


def random_iv() -> bytes:
    return os.urandom(16)
