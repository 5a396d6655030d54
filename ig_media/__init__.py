from __future__ import annotations

from .config import config_sha256, load_config, resolve_runtime_secrets
from .config_schema import AppConfig
from .errors import (
    ConfigError,
    InvalidSourceURL,
    NetworkFailure,
    NoMediaFound,
    NoParseableContent,
    RateLimited,
    StrategyError,
)
from .extractor import MediaExtractor, extract
from .media import (
    ExtractionResult,
    MediaCandidate,
    SourceURL,
    StrategyOutcome,
    response_envelope,
)
from .source_url import is_valid_source_url, normalize_source_url, parse_source_url

__all__ = [
    "AppConfig",
    "ConfigError",
    "ExtractionResult",
    "InvalidSourceURL",
    "MediaCandidate",
    "MediaExtractor",
    "NetworkFailure",
    "NoMediaFound",
    "NoParseableContent",
    "RateLimited",
    "SourceURL",
    "StrategyError",
    "StrategyOutcome",
    "config_sha256",
    "extract",
    "is_valid_source_url",
    "load_config",
    "normalize_source_url",
    "parse_source_url",
    "resolve_runtime_secrets",
    "response_envelope",
]
