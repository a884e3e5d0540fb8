"""Shared HTTP client built on curl_cffi.

Used for Shopify Admin API reads and SendGrid mail sends. Honors a single
429 Retry-After throttle per request; any other failure is returned to the
caller as-is (no retry loop, recovery is the next reconciliation trigger).
"""

import logging
import os
import ssl
import time
from dataclasses import dataclass

from curl_cffi.requests import Session, Response

log = logging.getLogger(__name__)

JSON_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}

MAX_RETRY_AFTER = 30.0  # seconds


def _find_ca_bundle() -> str | None:
    """Find system CA certificate bundle for SSL verification."""
    env_path = os.environ.get("CURL_CA_BUNDLE") or os.environ.get("SSL_CERT_FILE")
    if env_path and os.path.isfile(env_path):
        return env_path
    system_ca = ssl.get_default_verify_paths().cafile
    if system_ca and os.path.isfile(system_ca):
        return system_ca
    return None


@dataclass
class FetchResult:
    """Result from an HTTP call. Header names are lower-cased."""
    content: bytes
    status_code: int
    headers: dict[str, str]
    url: str
    reason: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def _to_result(response: Response) -> FetchResult:
    return FetchResult(
        content=response.content,
        status_code=response.status_code,
        headers={k.lower(): v for k, v in response.headers.items()},
        url=str(response.url),
        reason=getattr(response, "reason", "") or "",
    )


def _retry_after(response: Response) -> float:
    raw = response.headers.get("Retry-After")
    try:
        return min(float(raw), MAX_RETRY_AFTER) if raw else 1.0
    except ValueError:
        return 1.0


class HttpClient:
    """Thin JSON-over-HTTP client. Not thread-safe; one per pass."""

    def __init__(self, timeout: float = 15.0, retry_on_throttle: bool = True):
        self.timeout = timeout
        self.retry_on_throttle = retry_on_throttle
        ca_bundle = _find_ca_bundle()
        self._session = Session(verify=ca_bundle) if ca_bundle else Session()

    def _request(self, method: str, url: str, headers: dict | None = None, **kwargs) -> FetchResult:
        request_headers = JSON_HEADERS.copy()
        if headers:
            request_headers.update(headers)

        response: Response = self._session.request(
            method, url, headers=request_headers, timeout=self.timeout, **kwargs
        )
        # 429 = rate limited, wait once and retry
        if response.status_code == 429 and self.retry_on_throttle:
            wait = _retry_after(response)
            log.warning(f"Rate limited by {url.split('?')[0]} — retrying in {wait:.1f}s")
            time.sleep(wait)
            response = self._session.request(
                method, url, headers=request_headers, timeout=self.timeout, **kwargs
            )
        return _to_result(response)

    def fetch(self, url: str, headers: dict | None = None) -> FetchResult:
        """GET a URL."""
        return self._request("GET", url, headers=headers)

    def post_json(self, url: str, payload: dict, headers: dict | None = None) -> FetchResult:
        """POST a JSON payload."""
        return self._request("POST", url, headers=headers, json=payload)

    def close(self):
        """Close the session."""
        self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
