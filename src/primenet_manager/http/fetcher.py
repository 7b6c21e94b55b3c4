"""Cookie-keeping HTTP client with retries and a fixed timeout."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_USER_AGENT = "primenet-manager/0.3 (+https://www.mersenne.org/manual_assignment/)"


@dataclass(slots=True)
class FetchResult:
    """Result of an HTTP request."""

    url: str
    status_code: int
    content: str
    is_success: bool
    error: str | None = None


class HttpFetcher:
    """HTTP client wrapper shared by the PrimeNet and GPU72 clients.

    One instance keeps one cookie jar, so a PrimeNet login carries over to the
    assignment and result requests that follow it.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        self._client = httpx.Client(
            timeout=self._timeout,
            headers={"User-Agent": user_agent},
            transport=transport or httpx.HTTPTransport(retries=max_retries),
            follow_redirects=True,
        )

    def get(self, url: str, *, params: dict[str, str] | None = None) -> FetchResult:
        return self._request("GET", url, params=params)

    def post_form(
        self,
        url: str,
        data: dict[str, str],
        *,
        auth: tuple[str, str] | None = None,
    ) -> FetchResult:
        return self._request("POST", url, data=data, auth=auth)

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        data: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
    ) -> FetchResult:
        try:
            response = self._client.request(
                method,
                url,
                params=params,
                data=data,
                auth=auth,
            )
        except httpx.TimeoutException:
            logger.warning("Timeout on %s %s", method, url)
            return FetchResult(
                url=url,
                status_code=0,
                content="",
                is_success=False,
                error="timeout",
            )
        except httpx.HTTPError as exc:
            logger.warning("HTTP error on %s %s: %s", method, url, exc)
            return FetchResult(url=url, status_code=0, content="", is_success=False, error=str(exc))

        if not response.is_success:
            logger.warning("%s %s returned HTTP %d", method, url, response.status_code)
        return FetchResult(
            url=url,
            status_code=response.status_code,
            content=response.text,
            is_success=response.is_success,
            error=None if response.is_success else f"HTTP {response.status_code}",
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
