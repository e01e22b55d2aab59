"""
Upstream nomenclature provider - paginated tree-structured HTTP API.
"""

from typing import Any, Dict, Optional

import requests

from .config import UPSTREAM_BASE_URL, UPSTREAM_TIMEOUT_SEC

# The provider rejects requests (HTTP 406) that do not look like its own web frontend
DEFAULT_HEADERS = {
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "pl-PL,pl;q=0.9,en-US;q=0.8,en;q=0.7",
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Origin": "https://ext-isztar4.mf.gov.pl",
    "Referer": "https://ext-isztar4.mf.gov.pl/",
}


class UpstreamPageError(Exception):
    """A single page could not be fetched or decoded."""

    def __init__(self, page: int, message: str, status_code: Optional[int] = None):
        super().__init__(f"Page {page}: {message}")
        self.page = page
        self.status_code = status_code


class UpstreamClient:
    """Fetches one page of the nomenclature tree at a time."""

    def __init__(self, base_url: str = UPSTREAM_BASE_URL, timeout_sec: float = UPSTREAM_TIMEOUT_SEC,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)

    def fetch_page(self, page: int) -> Dict[str, Any]:
        """Return the root node of one page.

        Raises:
            UpstreamPageError: network failure, non-2xx status or a non-JSON body
        """
        try:
            response = self.session.get(self.base_url, params={"page": page}, timeout=self.timeout_sec)
        except requests.RequestException as e:
            raise UpstreamPageError(page, f"network error: {e}") from e

        if not response.ok:
            raise UpstreamPageError(
                page,
                f"HTTP {response.status_code}: {response.reason} - {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamPageError(page, f"invalid JSON body: {e}", status_code=response.status_code) from e

        if not isinstance(data, dict):
            raise UpstreamPageError(page, f"expected a tree node, got {type(data).__name__}")
        return data

    def close(self) -> None:
        self.session.close()
