from __future__ import annotations

import threading
from typing import Any

from .apify_relay import InstagramPostScraper
from .chain import MonotonicFn, OnOutcomeFn, SleepFn, StrategyChain, select_result
from .cleaner import CleanerSettings
from .config import RuntimeSecrets
from .config_schema import AppConfig
from .http_client import HttpClient, HttpxClient
from .media import ExtractionResult, utc_now
from .results import Clock, ResultBuilder
from .retry import RetryConfig
from .source_url import parse_source_url
from .strategies import build_strategies


class MediaExtractor:
    """
    Entry point for a single post: validate the URL, run the strategy chain,
    and select the final result.

    Only `InvalidSourceURL` escapes `extract`; every upstream failure ends up
    as an empty-media result with a diagnostic `error`.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        http: HttpClient | None = None,
        clock: Clock | None = None,
        secrets: RuntimeSecrets | None = None,
        on_outcome: OnOutcomeFn | None = None,
        sleep_fn: SleepFn | None = None,
        monotonic_fn: MonotonicFn | None = None,
        apify_scraper: InstagramPostScraper | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._config = config or AppConfig()
        self._http = http
        self._clock = clock or utc_now
        self._secrets = secrets or RuntimeSecrets()
        self._on_outcome = on_outcome
        self._sleep_fn = sleep_fn
        self._monotonic_fn = monotonic_fn
        self._apify_scraper = apify_scraper
        self._cancel_event = cancel_event

    @property
    def config(self) -> AppConfig:
        return self._config

    def builder(self) -> ResultBuilder:
        cleaner = self._config.cleaner
        return ResultBuilder(
            cleaner=CleanerSettings(
                keep_params=tuple(cleaner.keep_query_params),
                cdn_host_suffixes=tuple(cleaner.cdn_host_suffixes),
            ),
            clock=self._clock,
        )

    def extract(self, raw_url: str) -> ExtractionResult:
        source = parse_source_url(raw_url)
        cfg = self._config
        builder = self.builder()

        owned: HttpxClient | None = None
        http = self._http
        if http is None:
            owned = HttpxClient(
                timeout_seconds=cfg.http.timeout_seconds,
                retry=RetryConfig(max_attempts=cfg.http.max_attempts),
                sleep_fn=self._sleep_fn,
            )
            http = owned

        try:
            strategies = build_strategies(
                cfg,
                http=http,
                builder=builder,
                secrets=self._secrets,
                apify_scraper=self._apify_scraper,
                monotonic_fn=self._monotonic_fn,
            )
            chain = StrategyChain(
                strategies,
                timeout_seconds=cfg.http.timeout_seconds,
                delay_after_failure_seconds=cfg.chain.delay_after_failure_seconds,
                deadline_seconds=cfg.chain.deadline_seconds,
                sleep_fn=self._sleep_fn,
                monotonic_fn=self._monotonic_fn,
                on_outcome=self._on_outcome,
                cancel_event=self._cancel_event,
            )
            run = chain.run(source)
        finally:
            if owned is not None:
                owned.close()

        return select_result(run, source, builder)


def extract(raw_url: str, config: AppConfig | None = None, **kwargs: Any) -> ExtractionResult:
    """Convenience wrapper: `MediaExtractor(config, **kwargs).extract(raw_url)`."""
    return MediaExtractor(config, **kwargs).extract(raw_url)
