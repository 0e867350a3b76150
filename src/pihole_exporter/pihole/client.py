"""HTTP client for the Pi-hole admin API.

One GET per scrape against ``<endpoint>/admin/api.php`` asking for the raw
summary plus the top-items, query-type, forward-destination and query-source
sections. There is no retry and no caching: any failure is surfaced to the
caller, which treats it as "skip this scrape".
"""

from __future__ import annotations

import logging
import urllib.parse
from typing import Any, Optional

import requests
from pydantic import ValidationError

from .. import __version__
from ..errors import DecodeFailure, InvalidEndpoint, UpstreamUnreachable
from .models import Snapshot

logger = logging.getLogger(__name__)

API_PATH = "/admin/api.php"

# Valueless flags understood by api.php; order matches the Pi-hole web UI.
API_QUERY_FLAGS = (
    "summaryRaw",
    "overTimeData",
    "topItems",
    "recentItems",
    "getQueryTypes",
    "getForwardDestinations",
    "getQuerySources",
)

ACCEPT_HEADER = "application/json"
MEDIA_TYPE = "application/json"
USER_AGENT = f"pihole-exporter/{__version__}"


def validate_endpoint(endpoint: str) -> str:
    """Brief: Check that endpoint is an absolute plain-HTTP URL.

    Inputs:
      - endpoint: Base URL of the Pi-hole web interface, e.g. "http://pi.hole".

    Outputs:
      - str: endpoint with any trailing slashes removed.

    Raises:
      - InvalidEndpoint: for any scheme other than "http" (https included),
        a missing host, or a URL that cannot be parsed.

    Example:
      >>> validate_endpoint("http://192.168.1.2/")
      'http://192.168.1.2'
    """

    raw = str(endpoint or "").strip()
    try:
        parts = urllib.parse.urlsplit(raw)
        # Accessing .port raises ValueError for out-of-range or non-numeric ports.
        _ = parts.port
    except ValueError as exc:
        raise InvalidEndpoint(f"Invalid PiHole address: {raw!r}: {exc}") from exc

    if parts.scheme != "http":
        raise InvalidEndpoint(
            f"Invalid PiHole address: {raw!r}: scheme must be 'http', got {parts.scheme!r}"
        )
    if not parts.hostname:
        raise InvalidEndpoint(f"Invalid PiHole address: {raw!r}: missing host")
    return raw.rstrip("/")


class PiholeClient:
    """Brief: Fetch and decode Pi-hole summary statistics.

    Inputs (constructor):
      - endpoint: Base URL of the Pi-hole web interface (http scheme only).
      - auth: API token appended as the ``auth`` query parameter.
      - timeout: Optional request timeout in seconds. None keeps the
        requests default (no timeout).
      - session: Optional requests.Session, mainly for tests.

    Outputs:
      - PiholeClient instance; construction performs no network I/O.

    Example:
      >>> client = PiholeClient("http://pi.hole", auth="secret")
      >>> snapshot = client.fetch()  # doctest: +SKIP
    """

    def __init__(
        self,
        endpoint: str,
        auth: str = "",
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._endpoint = validate_endpoint(endpoint)
        self._auth = str(auth or "")
        self._timeout = float(timeout) if timeout is not None else None
        self._session = session if session is not None else requests.Session()
        self._headers = {
            "Content-Type": MEDIA_TYPE,
            "Accept": ACCEPT_HEADER,
            "User-Agent": USER_AGENT,
        }

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def url(self) -> str:
        """Full api.php URL including the query flags and auth token."""

        query = "&".join(API_QUERY_FLAGS)
        auth = urllib.parse.quote(self._auth, safe="")
        return f"{self._endpoint}{API_PATH}?{query}&auth={auth}"

    def fetch(self) -> Snapshot:
        """Brief: Issue one GET against api.php and decode the response.

        Inputs:
          - None.

        Outputs:
          - Snapshot decoded from the response body.

        Raises:
          - UpstreamUnreachable: connection refused, DNS failure, timeout or
            any other requests transport error.
          - DecodeFailure: body is not JSON, not a JSON object, or does not
            fit the Snapshot model.
        """

        try:
            resp = self._session.get(
                self.url, headers=self._headers, timeout=self._timeout
            )
        except requests.RequestException as exc:
            raise UpstreamUnreachable(
                f"Pi-hole API at {self._endpoint} unreachable: {exc}"
            ) from exc

        try:
            payload: Any = resp.json()
        except ValueError as exc:
            raise DecodeFailure(
                f"Pi-hole API returned non-JSON body (HTTP {resp.status_code}): {exc}"
            ) from exc

        if not isinstance(payload, dict):
            # api.php answers [] when the auth token is rejected.
            raise DecodeFailure(
                f"Pi-hole API returned {type(payload).__name__} instead of an object "
                f"(HTTP {resp.status_code}); check the API token"
            )

        try:
            snapshot = Snapshot.model_validate(payload)
        except ValidationError as exc:
            raise DecodeFailure(
                f"Pi-hole API response does not match the expected schema "
                f"(HTTP {resp.status_code}): {exc}"
            ) from exc

        logger.debug("Pi-hole metrics: %r", snapshot)
        return snapshot

    def close(self) -> None:
        """Close the underlying HTTP session."""

        try:
            self._session.close()
        except Exception:  # pragma: no cover
            logger.exception("Error while closing Pi-hole HTTP session")
