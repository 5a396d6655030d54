from __future__ import annotations

import math
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Mapping, Sequence, TypeVar
from urllib.parse import quote, urlencode, urlsplit

from .apify_items import extraction_from_apify_item
from .apify_relay import InstagramPostScraper
from .config import RuntimeSecrets
from .config_schema import AppConfig, ApifyConfig, RelayEndpoint
from .errors import ApifyError, NetworkFailure, NoParseableContent, RateLimited, StrategyError
from .http_client import HttpClient, HttpResponse
from .media import ExtractionResult, SourceURL, StrategyOutcome
from .patterns import PayloadExtraction, RawMedia, extract_payload
from .results import ResultBuilder

MonotonicFn = Callable[[], float]
T = TypeVar("T")

CANCEL_POLL_SECONDS = 0.05

# Public web app id sent by instagram.com's own XHR requests.
_IG_APP_ID = "936619743392459"

_PATH_KIND = {"post": "p", "reel": "reel", "igtv": "tv"}


def _host(url: str) -> str:
    return urlsplit(url).hostname or url


def check_blocking(text: str, phrases: Sequence[str], *, what: str) -> None:
    for phrase in phrases:
        if phrase and phrase in (text or ""):
            raise RateLimited(f"Rate limited by Instagram ({what})")


def check_response(resp: HttpResponse, *, what: str, phrases: Sequence[str] = ()) -> None:
    if resp.status_code == 429:
        raise RateLimited(f"{what} rate limited: HTTP 429")
    if not resp.ok:
        raise NetworkFailure(f"{what} failed: HTTP {resp.status_code}")
    check_blocking(resp.text, phrases, what=what)


def derive_video_url(thumbnail_url: str) -> str | None:
    """Guess a reel's video URL from its oEmbed thumbnail (`…_n.jpg` → `…_n.mp4`)."""
    path, sep, query = (thumbnail_url or "").partition("?")
    if not path.endswith("_n.jpg"):
        return None
    return path[: -len(".jpg")] + ".mp4" + sep + query


def _call_cancellable(fn: Callable[[], T], cancel_event: threading.Event) -> T:
    """
    Run `fn` on a daemon thread and return as soon as it finishes or the event is set.

    A cancelled call keeps running in the background until its own timeout
    fires; its result is discarded.
    """
    box: dict[str, Any] = {}
    done = threading.Event()

    def _target() -> None:
        try:
            box["result"] = fn()
        except BaseException as e:  # re-raised in the calling thread
            box["error"] = e
        finally:
            done.set()

    threading.Thread(target=_target, name="ig-media-attempt", daemon=True).start()
    while not done.wait(CANCEL_POLL_SECONDS):
        if cancel_event.is_set():
            raise NetworkFailure("Extraction cancelled")

    if "error" in box:
        raise box["error"]
    return box["result"]


class Strategy(ABC):
    """
    One upstream source for a post's data.

    `attempt` raises a StrategyError on failure; `run` turns any failure into a
    StrategyOutcome so the chain never sees an exception. Given a cancel event,
    `run` stops waiting on the attempt as soon as the event is set, so an
    in-flight request never holds up a cancelled extraction.
    """

    name: str = "strategy"
    timeout_seconds: float | None = None

    def __init__(self, *, monotonic_fn: MonotonicFn | None = None) -> None:
        self._monotonic = monotonic_fn or time.monotonic

    @abstractmethod
    def attempt(self, source: SourceURL, *, timeout: float) -> ExtractionResult: ...

    def run(
        self,
        source: SourceURL,
        *,
        timeout: float,
        cancel_event: threading.Event | None = None,
    ) -> StrategyOutcome:
        started = self._monotonic()
        try:
            if cancel_event is None:
                result = self.attempt(source, timeout=timeout)
            else:
                result = _call_cancellable(
                    lambda: self.attempt(source, timeout=timeout), cancel_event
                )
        except Exception as e:
            # Unexpected errors are reported like any other failed attempt.
            return StrategyOutcome(
                strategy_name=self.name,
                success=False,
                error=(str(e) or "").strip() or type(e).__name__,
                error_type=type(e).__name__,
                elapsed_seconds=self._monotonic() - started,
            )

        return StrategyOutcome(
            strategy_name=self.name,
            success=True,
            result=result,
            elapsed_seconds=self._monotonic() - started,
        )

    def _deadline(self, timeout: float) -> Callable[[], float]:
        """Split one attempt's timeout across several sequential calls."""
        ends_at = self._monotonic() + float(timeout)

        def remaining() -> float:
            left = ends_at - self._monotonic()
            if left <= 0:
                raise NetworkFailure(f"{self.name} attempt deadline exceeded")
            return left

        return remaining


class _PayloadStrategy(Strategy):
    def __init__(
        self,
        http: HttpClient,
        builder: ResultBuilder,
        *,
        blocking_phrases: Sequence[str] = (),
        monotonic_fn: MonotonicFn | None = None,
    ) -> None:
        super().__init__(monotonic_fn=monotonic_fn)
        self._http = http
        self._builder = builder
        self._phrases = tuple(blocking_phrases)

    def _result_from_payload(self, text: str, source: SourceURL) -> ExtractionResult:
        extraction = extract_payload(
            text, post_type=source.post_type, shortcode=source.shortcode
        )
        if extraction.is_empty:
            raise NoParseableContent(f"{self.name}: no media or metadata in payload")
        return self._builder.build(extraction, source, strategy=self.name)


class OEmbedStrategy(_PayloadStrategy):
    name = "oembed"

    def __init__(
        self,
        http: HttpClient,
        builder: ResultBuilder,
        *,
        endpoint: str,
        user_agent: str,
        blocking_phrases: Sequence[str] = (),
        monotonic_fn: MonotonicFn | None = None,
    ) -> None:
        super().__init__(
            http, builder, blocking_phrases=blocking_phrases, monotonic_fn=monotonic_fn
        )
        self._endpoint = endpoint
        self._user_agent = user_agent

    def attempt(self, source: SourceURL, *, timeout: float) -> ExtractionResult:
        url = f"{self._endpoint}?{urlencode({'url': source.url})}"
        resp = self._http.get(
            url,
            headers={"User-Agent": self._user_agent, "Accept": "application/json"},
            timeout=timeout,
        )
        check_response(resp, what="oEmbed API", phrases=self._phrases)

        try:
            data = resp.json()
        except ValueError as e:
            raise NoParseableContent("oEmbed API returned invalid JSON") from e
        if not isinstance(data, Mapping):
            raise NoParseableContent("oEmbed API returned an unexpected document")

        extraction = self._parse(data, source)
        if extraction.is_empty:
            raise NoParseableContent("oEmbed API returned no usable fields")
        return self._builder.build(extraction, source, strategy=self.name)

    def _parse(self, data: Mapping[str, Any], source: SourceURL) -> PayloadExtraction:
        def _s(key: str) -> str | None:
            v = data.get(key)
            if not isinstance(v, str):
                return None
            return v.strip() or None

        def _i(key: str) -> int | None:
            v = data.get(key)
            return v if isinstance(v, int) and not isinstance(v, bool) else None

        title = _s("title")
        out = PayloadExtraction(title=title, description=title, author=_s("author_name"))

        thumb = _s("thumbnail_url")
        if not thumb:
            return out

        if source.post_type in ("reel", "igtv"):
            guess = derive_video_url(thumb)
            if guess:
                out.media.append(
                    RawMedia(
                        kind="video",
                        url=guess,
                        thumbnail=thumb,
                        rule="oembed_derived_video",
                        derived=True,
                    )
                )
        out.media.append(
            RawMedia(
                kind="image",
                url=thumb,
                width=_i("thumbnail_width"),
                height=_i("thumbnail_height"),
                rule="oembed_thumbnail",
            )
        )
        return out


class DirectPageStrategy(_PayloadStrategy):
    name = "direct_page"

    def __init__(
        self,
        http: HttpClient,
        builder: ResultBuilder,
        *,
        user_agent: str,
        accept_language: str = "en-US,en;q=0.5",
        blocking_phrases: Sequence[str] = (),
        monotonic_fn: MonotonicFn | None = None,
    ) -> None:
        super().__init__(
            http, builder, blocking_phrases=blocking_phrases, monotonic_fn=monotonic_fn
        )
        self._headers = {
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
            "Accept-Language": accept_language,
            "Accept-Encoding": "gzip, deflate",
            "DNT": "1",
            "Upgrade-Insecure-Requests": "1",
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "none",
            "Cache-Control": "max-age=0",
        }

    def attempt(self, source: SourceURL, *, timeout: float) -> ExtractionResult:
        resp = self._http.get(source.url, headers=self._headers, timeout=timeout)
        check_response(resp, what="Direct fetch", phrases=self._phrases)
        return self._result_from_payload(resp.text, source)


class ProxyRelayStrategy(_PayloadStrategy):
    name = "proxy_relay"

    def __init__(
        self,
        http: HttpClient,
        builder: ResultBuilder,
        *,
        relays: Sequence[RelayEndpoint],
        min_payload_chars: int,
        user_agent: str,
        blocking_phrases: Sequence[str] = (),
        monotonic_fn: MonotonicFn | None = None,
    ) -> None:
        super().__init__(
            http, builder, blocking_phrases=blocking_phrases, monotonic_fn=monotonic_fn
        )
        self._relays = tuple(relays)
        self._min_chars = int(min_payload_chars)
        self._user_agent = user_agent

    def attempt(self, source: SourceURL, *, timeout: float) -> ExtractionResult:
        if not self._relays:
            raise NoParseableContent("No proxy relays configured")

        remaining = self._deadline(timeout)
        last: StrategyError | None = None

        for relay in self._relays:
            relay_url = relay.url_template.replace("{url}", quote(source.url, safe=""))
            what = f"Proxy relay {_host(relay_url)}"
            try:
                resp = self._http.get(
                    relay_url,
                    headers={"User-Agent": self._user_agent},
                    timeout=remaining(),
                )
                check_response(resp, what=what)
                payload = self._unwrap(resp, relay, what=what)
                if len(payload) < self._min_chars:
                    raise NoParseableContent(f"{what} returned only {len(payload)} chars")
                check_blocking(payload, self._phrases, what=what)
            except StrategyError as e:
                last = e
                continue

            return self._result_from_payload(payload, source)

        if last is None:
            raise NoParseableContent("No proxy relay returned a page")
        raise last

    @staticmethod
    def _unwrap(resp: HttpResponse, relay: RelayEndpoint, *, what: str) -> str:
        if relay.response == "raw":
            return resp.text or ""

        try:
            data = resp.json()
        except ValueError as e:
            raise NoParseableContent(f"{what} returned invalid JSON") from e
        contents = data.get("contents") if isinstance(data, Mapping) else None
        if not isinstance(contents, str) or not contents:
            raise NoParseableContent(f"No content received from {what}")
        return contents


class EndpointProbeStrategy(_PayloadStrategy):
    name = "endpoint_probe"

    def __init__(
        self,
        http: HttpClient,
        builder: ResultBuilder,
        *,
        endpoints: Sequence[str],
        user_agent: str,
        blocking_phrases: Sequence[str] = (),
        monotonic_fn: MonotonicFn | None = None,
    ) -> None:
        super().__init__(
            http, builder, blocking_phrases=blocking_phrases, monotonic_fn=monotonic_fn
        )
        self._endpoints = tuple(endpoints)
        self._headers = {
            "User-Agent": user_agent,
            "Accept": "application/json, text/html;q=0.9, */*;q=0.8",
            "X-IG-App-ID": _IG_APP_ID,
            "X-Requested-With": "XMLHttpRequest",
        }

    def attempt(self, source: SourceURL, *, timeout: float) -> ExtractionResult:
        kind = _PATH_KIND.get(source.post_type)
        if kind is None or not source.shortcode:
            raise NoParseableContent(f"No probe endpoints for {source.post_type} URLs")
        if not self._endpoints:
            raise NoParseableContent("No probe endpoints configured")

        remaining = self._deadline(timeout)
        last: StrategyError | None = None

        for template in self._endpoints:
            url = template.replace("{code}", source.shortcode).replace("{kind}", kind)
            what = f"Endpoint {urlsplit(url).path}"
            try:
                resp = self._http.get(url, headers=self._headers, timeout=remaining())
                check_response(resp, what=what, phrases=self._phrases)
            except StrategyError as e:
                last = e
                continue

            # JSON documents and HTML pages both go through the same rule set.
            extraction = extract_payload(
                resp.text, post_type=source.post_type, shortcode=source.shortcode
            )
            result = self._builder.build(extraction, source, strategy=self.name)
            if result.has_media:
                return result
            last = NoParseableContent(f"{what} had no media descriptors")

        if last is None:
            raise NoParseableContent("No probe endpoint returned media")
        raise last


class ApifyStrategy(Strategy):
    name = "apify"

    def __init__(
        self,
        scraper: InstagramPostScraper,
        builder: ResultBuilder,
        *,
        apify: ApifyConfig,
        monotonic_fn: MonotonicFn | None = None,
    ) -> None:
        super().__init__(monotonic_fn=monotonic_fn)
        self._scraper = scraper
        self._builder = builder
        self._apify = apify
        self.timeout_seconds = float(apify.timeout_secs)

    def attempt(self, source: SourceURL, *, timeout: float) -> ExtractionResult:
        timeout_secs = max(1, min(int(self._apify.timeout_secs), math.ceil(timeout)))
        try:
            _, items = self._scraper.scrape_post(
                source.url, apify=self._apify, timeout_secs=timeout_secs
            )
        except ApifyError as e:
            raise NetworkFailure(str(e)) from e

        if not items:
            raise NoParseableContent("Apify Actor returned no dataset items")

        extraction = extraction_from_apify_item(items[0])
        if extraction.is_empty:
            raise NoParseableContent("Apify dataset item had no media or metadata")
        return self._builder.build(extraction, source, strategy=self.name)


def build_strategies(
    config: AppConfig,
    *,
    http: HttpClient,
    builder: ResultBuilder,
    secrets: RuntimeSecrets | None = None,
    apify_scraper: InstagramPostScraper | None = None,
    monotonic_fn: MonotonicFn | None = None,
) -> list[Strategy]:
    """
    Instantiate the configured strategies in chain order.

    The Apify strategy is left out unless it is enabled and a token (or an
    injected scraper) is available.
    """
    phrases = tuple(config.blocking_phrases)
    out: list[Strategy] = []

    for name in config.chain.strategies:
        if name == "oembed":
            out.append(
                OEmbedStrategy(
                    http,
                    builder,
                    endpoint=config.oembed.endpoint,
                    user_agent=config.http.desktop_user_agent,
                    blocking_phrases=phrases,
                    monotonic_fn=monotonic_fn,
                )
            )
        elif name == "direct_page":
            out.append(
                DirectPageStrategy(
                    http,
                    builder,
                    user_agent=config.http.mobile_user_agent,
                    accept_language=config.http.accept_language,
                    blocking_phrases=phrases,
                    monotonic_fn=monotonic_fn,
                )
            )
        elif name == "proxy_relay":
            out.append(
                ProxyRelayStrategy(
                    http,
                    builder,
                    relays=config.relay.relays,
                    min_payload_chars=config.relay.min_payload_chars,
                    user_agent=config.http.desktop_user_agent,
                    blocking_phrases=phrases,
                    monotonic_fn=monotonic_fn,
                )
            )
        elif name == "endpoint_probe":
            out.append(
                EndpointProbeStrategy(
                    http,
                    builder,
                    endpoints=config.probe.endpoints,
                    user_agent=config.http.desktop_user_agent,
                    blocking_phrases=phrases,
                    monotonic_fn=monotonic_fn,
                )
            )
        elif name == "apify":
            if not config.apify.enabled:
                continue
            scraper = apify_scraper
            if scraper is None:
                token = secrets.apify_token if secrets is not None else None
                if not token:
                    continue
                scraper = InstagramPostScraper(token)
            out.append(
                ApifyStrategy(scraper, builder, apify=config.apify, monotonic_fn=monotonic_fn)
            )

    return out
