"""
HTTP access to measurement archives.

All requests go through one requests.Session. Catalog (phone_book.json)
fetches retry transport errors with exponential backoff; measurement
fetches are single-shot with a short timeout. Every failure is reported as
None so callers can fall through to the next candidate URL.
"""
from __future__ import annotations

import logging
import re
import uuid
from typing import Any, Dict, Optional, Union
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from scanner.config import ScanParams
from scanner.crypto import decrypt_envelope
from scanner.errors import DecryptError, NetworkError


log = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
PROXY_ORIGIN = "https://graph.hangout.audio"
PROXY_REFERER = "https://graph.hangout.audio/iem/5128/"

_PRICE_NUMBER = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)")


def quote_file_name(file_name: str) -> str:
    """Percent-encode a catalog file name the way browsers' encodeURIComponent does."""
    return quote(file_name, safe="!'()*")


def parse_price(value: Union[str, int, float, None]) -> Optional[float]:
    """'$1,299' -> 1299.0; '$??', 'Free', '' and unparseable text -> None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    s = str(value).strip()
    if not s or s in ("$??", "Free"):
        return None
    m = _PRICE_NUMBER.match(s.replace("$", "").replace(",", ""))
    return float(m.group(0)) if m else None


class HttpClient:
    """
    Thin wrapper over requests.Session with the scanner's timeout/retry policy.

    Args:
        params: runtime parameters (timeouts, retry policy, user agent, proxy URL).
        session: injected session (tests pass a Mock); a new one is created
            otherwise, with a connection pool sized for the nested worker pools.
    """

    def __init__(self, params: ScanParams, session: Optional[requests.Session] = None):
        self.params = params
        if session is None:
            session = requests.Session()
            # every domain worker may hold an L/R pair per measurement worker
            adapter = HTTPAdapter(pool_maxsize=params.concurrent_domains * params.concurrent_measurements * 2)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self.session = session
        self._headers = {
            "User-Agent": params.user_agent,
            "Accept": "application/json, text/plain, */*",
            "Accept-Encoding": "gzip, deflate",
        }

    # ----------------------------
    # Plain GET
    # ----------------------------
    def _get(self, url: str, timeout: float) -> requests.Response:
        resp = self.session.get(url, headers=self._headers, timeout=timeout)
        if not resp.ok:
            # status errors are final; only transport errors are retried
            raise NetworkError(f"HTTP {resp.status_code} for {url}")
        return resp

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.params.retry_attempts + 1),
            wait=wait_exponential(multiplier=self.params.retry_delay, min=0),
            retry=retry_if_exception_type(requests.RequestException),
            before_sleep=before_sleep_log(log, logging.DEBUG),
            reraise=True,
        )

    def fetch_json(self, url: str) -> Optional[Any]:
        """GET + decode JSON with retries on transport errors. None on any failure."""
        try:
            resp = self._retrying()(self._get, url, self.params.catalog_timeout)
            return resp.json()
        except (requests.RequestException, NetworkError) as e:
            log.debug("catalog fetch failed", extra={"extra": {"url": url, "error": str(e)}})
        except ValueError:
            log.debug("catalog is not JSON", extra={"extra": {"url": url}})
        return None

    def fetch_text(self, url: str) -> Optional[str]:
        """Single GET with the measurement timeout; no retry. None on any failure."""
        try:
            return self._get(url, self.params.measurement_timeout).text
        except (requests.RequestException, NetworkError) as e:
            log.debug("measurement fetch failed", extra={"extra": {"url": url, "error": str(e)}})
            return None

    # ----------------------------
    # Encrypted proxy
    # ----------------------------
    def fetch_encrypted(self, file_path: str) -> Optional[str]:
        """
        POST `file_path` (e.g. "iem/5128/data/Daybreak L.txt") to the proxy
        with a fresh UUID4 passphrase and decrypt the envelope it returns.
        """
        passphrase = str(uuid.uuid4())
        headers: Dict[str, str] = {
            "Content-Type": "application/x-www-form-urlencoded",
            "User-Agent": BROWSER_USER_AGENT,
            "Origin": PROXY_ORIGIN,
            "Referer": PROXY_REFERER,
        }
        try:
            resp = self.session.post(
                self.params.proxy_url,
                data={"f_p": file_path, "k": passphrase},
                headers=headers,
                timeout=self.params.measurement_timeout,
            )
        except requests.RequestException as e:
            log.debug("proxy request failed", extra={"extra": {"path": file_path, "error": str(e)}})
            return None
        if not resp.ok:
            return None
        body = resp.text
        if not body or not body.strip():
            return None
        try:
            return decrypt_envelope(body, passphrase)
        except DecryptError as e:
            log.debug("proxy payload not decryptable", extra={"extra": {"path": file_path, "error": str(e)}})
            return None

    def close(self) -> None:
        self.session.close()
