from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from apify_client import ApifyClient
from apify_client.errors import ApifyApiError

from .config_schema import ApifyConfig
from .errors import ApifyError
from .retry import OnRetryFn, RetryConfig, SleepFn, call_with_retries, transient_reason

_DEFAULT_APIFY_RETRY = RetryConfig(
    max_attempts=3,
    base_delay_seconds=0.5,
    max_delay_seconds=4.0,
    jitter_ratio=0.0,
)


@dataclass(frozen=True)
class ActorRunRef:
    actor_id: str
    run_id: str
    default_dataset_id: str


class InstagramPostScraper:
    """
    Thin wrapper around Apify's Instagram Scraper Actor for a single post URL.

    Runs the Actor with `directUrls` and reads back its dataset items.
    """

    def __init__(
        self,
        token: str,
        *,
        client: ApifyClient | None = None,
        retry: RetryConfig | None = None,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
    ) -> None:
        self._retry = retry or _DEFAULT_APIFY_RETRY
        self._on_retry = on_retry
        self._sleep_fn = sleep_fn

        if client is not None:
            self._client = client
        else:
            # Client-level retries off; our own policy applies uniformly.
            self._client = ApifyClient(token=token, max_retries=0)

    def run_for_url(
        self,
        url: str,
        *,
        apify: ApifyConfig,
        timeout_secs: int | None = None,
    ) -> ActorRunRef:
        target = (url or "").strip()
        if not target:
            raise ApifyError("A non-empty post URL is required for directUrls")

        run_input: dict[str, Any] = {
            "directUrls": [target],
            "resultsType": "posts",
            "resultsLimit": 1,
        }

        def _do_call() -> Any:
            return self._client.actor(apify.actor).call(
                run_input=run_input,
                timeout_secs=timeout_secs,
            )

        try:
            result = call_with_retries(
                _do_call,
                cfg=self._retry,
                operation=f"apify.actor.call:{apify.actor}",
                is_retryable=transient_reason,
                on_retry=self._on_retry,
                sleep_fn=self._sleep_fn,
            )
        except ApifyApiError as e:
            raise ApifyError(f"Apify Actor call failed ({apify.actor}): {e}") from e
        except Exception as e:
            raise ApifyError(
                f"Unexpected error while calling Apify Actor ({apify.actor}): {e}"
            ) from e

        if result is None:
            raise ApifyError(f"Apify Actor run failed ({apify.actor})")

        run_id = (result.get("id") or "").strip()
        dataset_id = (result.get("defaultDatasetId") or "").strip()
        if not run_id or not dataset_id:
            raise ApifyError(
                f"Apify Actor run response missing run id or default dataset id: {result}"
            )

        return ActorRunRef(actor_id=apify.actor, run_id=run_id, default_dataset_id=dataset_id)

    def fetch_dataset_items(self, dataset_id: str, *, limit: int | None = None) -> list[dict[str, Any]]:
        ds = (dataset_id or "").strip()
        if not ds:
            raise ApifyError("dataset_id must be a non-empty string")

        def _do_fetch() -> list[dict[str, Any]]:
            return list(self._client.dataset(ds).iterate_items(limit=limit, clean=True))

        try:
            return call_with_retries(
                _do_fetch,
                cfg=self._retry,
                operation=f"apify.dataset.iterate_items:{ds}",
                is_retryable=transient_reason,
                on_retry=self._on_retry,
                sleep_fn=self._sleep_fn,
            )
        except ApifyApiError as e:
            raise ApifyError(f"Failed to read dataset items ({ds}): {e}") from e
        except Exception as e:
            raise ApifyError(f"Unexpected error while reading dataset ({ds}): {e}") from e

    def scrape_post(
        self,
        url: str,
        *,
        apify: ApifyConfig,
        timeout_secs: int | None = None,
    ) -> tuple[ActorRunRef, list[dict[str, Any]]]:
        run = self.run_for_url(url, apify=apify, timeout_secs=timeout_secs)
        items = self.fetch_dataset_items(run.default_dataset_id, limit=1)
        return run, items
