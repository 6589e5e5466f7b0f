"""
HTTP transport for calls to the identity provider (discovery, JWKS, token endpoint).
Trusts a configured root CA and bounds every call with a timeout.
"""
import logging
import ssl

import httpx

from auth_gateway.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


def build_http_client(ca_cert_path: str | None, timeout: float) -> httpx.Client:
    """httpx client that verifies the provider against ca_cert_path (or the system store)."""
    verify: ssl.SSLContext | bool = True
    if ca_cert_path:
        verify = ssl.create_default_context(cafile=ca_cert_path)
    return httpx.Client(verify=verify, timeout=timeout, headers={"Accept": "application/json"})


class Transport:
    """Thin JSON-over-HTTP wrapper; raises UpstreamUnavailable on any transport or HTTP error."""

    def __init__(self, client: httpx.Client):
        self._client = client

    def get_json(self, url: str) -> dict:
        try:
            r = self._client.get(url)
        except httpx.HTTPError as e:
            logger.error("GET %s failed: %s", url, e)
            raise UpstreamUnavailable(f"GET {url} failed: {e}") from e
        return self._json(r, url)

    def post_form(self, url: str, data: dict, auth: tuple[str, str] | None = None) -> httpx.Response:
        """POST form data; returns the raw response so callers can inspect error bodies."""
        try:
            return self._client.post(url, data=data, auth=auth)
        except httpx.HTTPError as e:
            logger.error("POST %s failed: %s", url, e)
            raise UpstreamUnavailable(f"POST {url} failed: {e}") from e

    @staticmethod
    def _json(r: httpx.Response, url: str) -> dict:
        if r.status_code != 200:
            logger.error("%s returned HTTP %s", url, r.status_code)
            raise UpstreamUnavailable(f"{url} returned HTTP {r.status_code}")
        try:
            body = r.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"{url} returned invalid JSON") from e
        if not isinstance(body, dict):
            raise UpstreamUnavailable(f"{url} returned a non-object JSON document")
        return body

    def close(self) -> None:
        self._client.close()
