from __future__ import annotations

import unittest

import httpx

from ig_media.errors import NetworkFailure
from ig_media.http_client import HttpResponse, HttpxClient
from ig_media.retry import RetryConfig


def _client(handler, *, retry: RetryConfig | None = None, sleeps: list[float] | None = None) -> HttpxClient:
    transport = httpx.MockTransport(handler)
    return HttpxClient(
        timeout_seconds=2.0,
        retry=retry,
        sleep_fn=(sleeps.append if sleeps is not None else (lambda _: None)),
        client=httpx.Client(transport=transport),
    )


class TestHttpxClient(unittest.TestCase):
    def test_get_returns_status_and_text(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="<html>ok</html>")

        with _client(handler) as client:
            resp = client.get("https://www.instagram.com/p/ABC/", headers={"User-Agent": "ua"})

        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.ok)
        self.assertEqual(resp.text, "<html>ok</html>")
        self.assertEqual(resp.url, "https://www.instagram.com/p/ABC/")
        self.assertEqual(seen[0].headers["User-Agent"], "ua")

    def test_error_statuses_are_returned_not_raised(self) -> None:
        with _client(lambda request: httpx.Response(429, text="slow")) as client:
            resp = client.get("https://www.instagram.com/p/ABC/")
        self.assertEqual(resp.status_code, 429)
        self.assertFalse(resp.ok)

    def test_json_body_is_decoded(self) -> None:
        with _client(lambda request: httpx.Response(200, json={"ok": True})) as client:
            resp = client.get("https://api.instagram.com/oembed/?url=x")

        self.assertEqual(resp.json(), {"ok": True})

    def test_timeout_is_a_network_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with _client(handler) as client:
            with self.assertRaises(NetworkFailure) as ctx:
                client.get("https://www.instagram.com/p/ABC/", timeout=0.5)
        self.assertIn("timed out", str(ctx.exception))

    def test_connect_errors_are_retried(self) -> None:
        attempts: list[int] = []
        sleeps: list[float] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            if len(attempts) < 3:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, text="ok")

        retry = RetryConfig(max_attempts=3, base_delay_seconds=0.1, max_delay_seconds=1.0, jitter_ratio=0.0)
        with _client(handler, retry=retry, sleeps=sleeps) as client:
            resp = client.get("https://www.instagram.com/p/ABC/")

        self.assertEqual(resp.text, "ok")
        self.assertEqual(len(attempts), 3)
        self.assertEqual(len(sleeps), 2)

    def test_connect_errors_exhaust_into_network_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with _client(handler) as client:
            with self.assertRaises(NetworkFailure):
                client.get("https://www.instagram.com/p/ABC/")


class TestHttpResponse(unittest.TestCase):
    def test_json_and_ok(self) -> None:
        resp = HttpResponse(status_code=204, text='{"a": 1}')
        self.assertTrue(resp.ok)
        self.assertEqual(resp.json(), {"a": 1})
        with self.assertRaises(ValueError):
            HttpResponse(status_code=200, text="<html>").json()


if __name__ == "__main__":
    unittest.main()
