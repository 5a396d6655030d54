from __future__ import annotations


class ConfigError(RuntimeError):
    """Raised when configuration is missing or invalid."""


class ApifyError(RuntimeError):
    """Raised when an Apify Actor run or dataset read fails."""


class InvalidSourceURL(ValueError):
    """Raised when a string is not a recognized Instagram post address."""


class StrategyError(RuntimeError):
    """Base class for recoverable, per-strategy failures."""


class NetworkFailure(StrategyError):
    """Transport error, timeout, or non-success HTTP status."""


class RateLimited(StrategyError):
    """Upstream throttled the request (429 or a known blocking phrase)."""


class NoParseableContent(StrategyError):
    """The payload yielded neither media nor metadata."""


class NoMediaFound(RuntimeError):
    """Every strategy ran and none produced media."""
