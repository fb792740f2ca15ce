"""
Thin requests wrapper shared by the GoFlow and Magento adapters.

- Every call carries a timeout.
- Timeouts, connection errors and 429 responses are retried with exponential
  backoff (1s, 2s, 4s, ...).
- Any other non-2xx response fails immediately with UpstreamError.
- GoFlow list endpoints return ``{"data": [...], "next": <url|null>}``;
  ``iter_pages`` follows ``next`` until it is exhausted.
"""

import logging
import time
from typing import Any, Callable, Dict, Iterator, List, Optional

import requests

import config
from services.errors import UpstreamError, UpstreamRateLimitError

logger = logging.getLogger(__name__)


class UpstreamClient:
    def __init__(
        self,
        headers: Callable[[], Dict[str, str]],
        *,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        label: str = "upstream",
        download_headers: Optional[Callable[[], Dict[str, str]]] = None,
    ) -> None:
        self._headers = headers
        self._download_headers = download_headers or headers
        self.timeout = timeout if timeout is not None else config.HTTP_TIMEOUT_SECONDS
        self.max_attempts = max(1, max_attempts if max_attempts is not None else config.HTTP_MAX_ATTEMPTS)
        self.session = session or requests.Session()
        self._sleep = sleep
        self.label = label

    def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        request_headers = headers if headers is not None else self._headers()
        for attempt in range(1, self.max_attempts + 1):
            wait_time = 2 ** (attempt - 1)
            try:
                resp = self.session.request(
                    method,
                    url,
                    headers=request_headers,
                    json=json_body,
                    timeout=self.timeout,
                )
            except requests.exceptions.Timeout:
                logger.warning(f"[{self.label}] {method} {url} timed out, attempt {attempt}/{self.max_attempts}")
                if attempt < self.max_attempts:
                    self._sleep(wait_time)
                    continue
                raise UpstreamError(f"{method} {url} timed out after {self.max_attempts} attempts", url=url)
            except requests.exceptions.ConnectionError as e:
                logger.warning(f"[{self.label}] Connection error, attempt {attempt}/{self.max_attempts}: {e}")
                if attempt < self.max_attempts:
                    self._sleep(wait_time)
                    continue
                raise UpstreamError(f"{method} {url} connection failed: {e}", url=url)

            if resp.status_code == 429:
                logger.warning(
                    f"[{self.label}] Rate limited (429), waiting {wait_time}s before retry {attempt}/{self.max_attempts}"
                )
                if attempt < self.max_attempts:
                    self._sleep(wait_time)
                    continue
                raise UpstreamRateLimitError(f"{method} {url} rate limited", status_code=429, url=url)

            if resp.status_code >= 300:
                logger.error(f"[{self.label}] {method} {url} failed {resp.status_code}: {resp.text[:500]}")
                raise UpstreamError(
                    f"{method} {url} failed with status {resp.status_code}",
                    status_code=resp.status_code,
                    url=url,
                )
            return resp

        raise UpstreamError(f"{method} {url} failed after {self.max_attempts} attempts", url=url)

    def get(self, url: str, **kwargs: Any) -> requests.Response:
        return self.request("GET", url, **kwargs)

    def get_json(self, url: str, **kwargs: Any) -> Any:
        resp = self.get(url, **kwargs)
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamError(f"GET {url} returned a non-JSON body: {exc}", status_code=resp.status_code, url=url)

    def download_json(self, url: str) -> Any:
        """Fetch a generated report file, which rejects the JSON content-type header."""
        return self.get_json(url, headers=self._download_headers())

    def post_json(self, url: str, payload: Any) -> Any:
        resp = self.request("POST", url, json_body=payload)
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamError(f"POST {url} returned a non-JSON body: {exc}", status_code=resp.status_code, url=url)

    def iter_pages(self, url: Optional[str]) -> Iterator[List[Dict[str, Any]]]:
        """Yield the ``data`` list of every page, following ``next`` links."""
        page = 0
        while url:
            payload = self.get_json(url) or {}
            items = payload.get("data") if isinstance(payload, dict) else None
            page += 1
            logger.debug(f"[{self.label}] page {page}: {len(items or [])} records")
            yield items if isinstance(items, list) else []
            url = payload.get("next") if isinstance(payload, dict) else None

    def fetch_all(self, url: Optional[str]) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        for items in self.iter_pages(url):
            records.extend(items)
        return records


def goflow_client(**kwargs: Any) -> UpstreamClient:
    from auth.goflow_auth import GoFlowAuth

    auth = GoFlowAuth()
    return UpstreamClient(
        auth.headers,
        label="GoFlow",
        download_headers=lambda: auth.headers(include_content_type=False),
        **kwargs,
    )


def magento_client(**kwargs: Any) -> UpstreamClient:
    from auth.goflow_auth import MagentoAuth

    auth = MagentoAuth()
    return UpstreamClient(auth.headers, label="Magento", **kwargs)


def goflow_url(path: str, base_url: Optional[str] = None) -> str:
    base = (base_url if base_url is not None else config.GOFLOW_BASE_URL).rstrip("/")
    if not base:
        base = config._req("GOFLOW_BASE_URL").rstrip("/")
    return f"{base}/{path.lstrip('/')}"
