from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

from .errors import NetworkFailure
from .media import ExtractionResult, SourceURL, StrategyOutcome
from .results import NO_MEDIA_MESSAGE, ResultBuilder
from .strategies import Strategy

SleepFn = Callable[[float], None]
MonotonicFn = Callable[[], float]
OnOutcomeFn = Callable[[StrategyOutcome], None]


class ChainState(str, Enum):
    PENDING = "pending"
    TRYING = "trying"
    ACCEPTED = "accepted"
    CONTINUING = "continuing"
    EXHAUSTED = "exhausted"


@dataclass
class ChainRun:
    """Bookkeeping for one pass over the strategies."""

    state: ChainState = ChainState.PENDING
    outcomes: list[StrategyOutcome] = field(default_factory=list)

    accepted: ExtractionResult | None = None
    best_so_far: ExtractionResult | None = None
    # First success that carried text fields but no usable media.
    metadata_fallback: ExtractionResult | None = None
    last_error: str | None = None

    @property
    def finished(self) -> bool:
        return self.state in (ChainState.ACCEPTED, ChainState.EXHAUSTED)

    def record(self, outcome: StrategyOutcome) -> ChainState:
        self.outcomes.append(outcome)

        if not outcome.success or outcome.result is None:
            self.last_error = outcome.error or f"{outcome.strategy_name} failed"
            self.state = ChainState.CONTINUING
            return self.state

        result = outcome.result
        if result.has_hd_video:
            self.accepted = result
            self.state = ChainState.ACCEPTED
        elif result.has_media:
            if self.best_so_far is None:
                self.best_so_far = result
            self.state = ChainState.CONTINUING
        else:
            if self.metadata_fallback is None:
                self.metadata_fallback = result
            self.state = ChainState.CONTINUING
        return self.state


class StrategyChain:
    """
    Runs strategies one at a time in priority order.

    Stops at the first result with an hd video; otherwise every strategy gets
    its turn. A failed attempt is followed by a short pause before the next one.
    """

    def __init__(
        self,
        strategies: Sequence[Strategy],
        *,
        timeout_seconds: float = 10.0,
        delay_after_failure_seconds: float = 0.0,
        deadline_seconds: float | None = None,
        sleep_fn: SleepFn | None = None,
        monotonic_fn: MonotonicFn | None = None,
        on_outcome: OnOutcomeFn | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._strategies = tuple(strategies)
        self._timeout = float(timeout_seconds)
        self._delay = max(0.0, float(delay_after_failure_seconds))
        self._deadline = None if deadline_seconds is None else float(deadline_seconds)
        self._sleep = sleep_fn
        self._monotonic = monotonic_fn or time.monotonic
        self._on_outcome = on_outcome
        self._cancel = cancel_event

    def run(self, source: SourceURL) -> ChainRun:
        run = ChainRun()
        started = self._monotonic()
        ends_at = None if self._deadline is None else started + self._deadline

        for idx, strategy in enumerate(self._strategies):
            stop_reason = self._stop_reason(ends_at)
            if stop_reason is not None:
                for skipped in self._strategies[idx:]:
                    self._emit(run, _skipped(skipped.name, stop_reason))
                break

            run.state = ChainState.TRYING
            timeout = strategy.timeout_seconds or self._timeout
            if ends_at is not None:
                timeout = min(timeout, ends_at - self._monotonic())

            outcome = strategy.run(source, timeout=timeout, cancel_event=self._cancel)
            self._emit(run, outcome)
            if run.state is ChainState.ACCEPTED:
                return run

            is_last = idx == len(self._strategies) - 1
            if not outcome.success and not is_last:
                self._pause(ends_at)

        run.state = ChainState.EXHAUSTED
        return run

    def _emit(self, run: ChainRun, outcome: StrategyOutcome) -> None:
        run.record(outcome)
        if self._on_outcome is not None:
            self._on_outcome(outcome)

    def _stop_reason(self, ends_at: float | None) -> str | None:
        if self._cancel is not None and self._cancel.is_set():
            return "Extraction cancelled"
        if ends_at is not None and self._monotonic() >= ends_at:
            return "Extraction deadline exceeded"
        return None

    def _pause(self, ends_at: float | None) -> None:
        delay = self._delay
        if ends_at is not None:
            delay = min(delay, max(0.0, ends_at - self._monotonic()))
        if delay <= 0:
            return
        if self._sleep is not None:
            self._sleep(delay)
        elif self._cancel is not None:
            # Wakes early when the caller cancels.
            self._cancel.wait(delay)
        else:
            time.sleep(delay)


def _skipped(name: str, reason: str) -> StrategyOutcome:
    return StrategyOutcome(
        strategy_name=name,
        success=False,
        error=reason,
        error_type=NetworkFailure.__name__,
    )


def select_result(run: ChainRun, source: SourceURL, builder: ResultBuilder) -> ExtractionResult:
    """
    Pick the final result: the accepted one, else the first non-empty one,
    else an empty-media placeholder carrying the last error.
    """
    if run.accepted is not None:
        return run.accepted
    if run.best_so_far is not None:
        return run.best_so_far

    return builder.placeholder(
        source, error=run.last_error or NO_MEDIA_MESSAGE, metadata=run.metadata_fallback
    )
