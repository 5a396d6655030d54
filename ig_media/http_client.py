from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Protocol
from urllib.parse import urlsplit

import httpx

from .errors import NetworkFailure
from .retry import OnRetryFn, RetryConfig, SleepFn, call_with_retries


@dataclass(frozen=True)
class HttpResponse:
    status_code: int
    text: str
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= int(self.status_code) < 300

    def json(self) -> Any:
        return json.loads(self.text)


class HttpClient(Protocol):
    def get(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> HttpResponse: ...


def _retryable_transport(exc: BaseException) -> str | None:
    # Timeouts are not retried: the per-attempt deadline is already spent.
    if isinstance(exc, (httpx.ConnectError, httpx.RemoteProtocolError)):
        return "connect_error"
    return None


class HttpxClient:
    """
    HttpClient backed by a synchronous httpx.Client.

    Transport errors and timeouts surface as NetworkFailure; HTTP status codes
    are returned as-is for the caller to interpret.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 10.0,
        retry: RetryConfig | None = None,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self._timeout = float(timeout_seconds)
        self._retry = retry or RetryConfig()
        self._on_retry = on_retry
        self._sleep_fn = sleep_fn
        self._client = client or httpx.Client(follow_redirects=True)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpxClient":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def get(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        seconds = self._timeout if timeout is None else max(0.001, float(timeout))

        def _do_request() -> HttpResponse:
            resp = self._client.get(
                url,
                headers=dict(headers or {}),
                timeout=httpx.Timeout(seconds),
            )
            return HttpResponse(status_code=resp.status_code, text=resp.text, url=str(resp.url))

        host = urlsplit(url).hostname or "unknown"
        try:
            return call_with_retries(
                _do_request,
                cfg=self._retry,
                operation=f"http.get:{host}",
                is_retryable=_retryable_transport,
                on_retry=self._on_retry,
                sleep_fn=self._sleep_fn,
            )
        except httpx.TimeoutException as e:
            raise NetworkFailure(f"Request timed out after {seconds:.1f}s ({host})") from e
        except httpx.HTTPError as e:
            raise NetworkFailure(f"Request failed ({host}): {e}") from e
