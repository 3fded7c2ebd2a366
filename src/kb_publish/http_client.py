from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import requests
from requests import exceptions as req_exc

from . import __version__

logger = logging.getLogger(__name__)

# Hosting panels throttle or briefly 5xx right after an upload.
RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})

# Servers that refuse HEAD; the asset is fetched with GET instead.
_HEAD_REFUSED = frozenset({405, 501})

USER_AGENT = f"kb-publish/{__version__} (+deploy verification)"


class FetchError(RuntimeError):
    """Raised when a URL stays unreachable after every retry."""


@dataclass(frozen=True)
class Response:
    url: str
    status_code: int
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class SiteClient:
    """Fetches a deployed site's page and checks that its assets resolve."""

    def __init__(
        self,
        session: requests.Session,
        *,
        timeout_s: int = 20,
        max_retries: int = 3,
        backoff_base_s: float = 1.0,
    ) -> None:
        self._session = session
        self._session.headers.setdefault("User-Agent", USER_AGENT)
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._backoff_base_s = backoff_base_s

    def _wait_s(self, attempt: int, resp: requests.Response | None) -> float:
        if resp is not None:
            retry_after = resp.headers.get("Retry-After", "")
            if retry_after.strip().isdigit():
                return float(retry_after)
        return self._backoff_base_s * (2**attempt)

    def _request(self, method: str, url: str) -> requests.Response:
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            resp: requests.Response | None = None
            try:
                resp = self._session.request(
                    method, url, timeout=self._timeout_s, allow_redirects=True
                )
            except req_exc.RequestException as e:
                last_error = e
            else:
                if resp.status_code not in RETRY_STATUSES:
                    return resp
                if attempt >= self._max_retries:
                    return resp

            if attempt >= self._max_retries:
                break
            wait_s = self._wait_s(attempt, resp)
            logger.debug(
                "%s %s -> %s; retrying in %.1fs",
                method,
                url,
                resp.status_code if resp is not None else last_error,
                wait_s,
            )
            time.sleep(wait_s)

        raise FetchError(f"Failed to fetch {url}: {last_error}")

    def page(self, url: str) -> Response:
        """GET `url` and keep the body; the final URL follows redirects."""
        resp = self._request("GET", url)
        return Response(
            url=str(resp.url), status_code=int(resp.status_code), body=resp.content
        )

    def asset_status(self, url: str) -> int:
        """Status code for `url`, using HEAD so large assets aren't downloaded."""
        resp = self._request("HEAD", url)
        if resp.status_code in _HEAD_REFUSED:
            resp = self._request("GET", url)
        return int(resp.status_code)
