from __future__ import annotations

import re
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

StrategyName = Literal["oembed", "direct_page", "proxy_relay", "endpoint_probe", "apify"]

DEFAULT_STRATEGY_ORDER: tuple[StrategyName, ...] = (
    "oembed",
    "direct_page",
    "proxy_relay",
    "endpoint_probe",
    "apify",
)

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 14_6 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/14.0.3 Mobile/15E148 Safari/604.1"
)


def _normalize_str_list(values: list[str], *, allow_empty: bool) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()

    for item in values:
        value = (item or "").strip()
        if not value:
            continue
        key = value.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(value)

    if not allow_empty and not out:
        raise ValueError("must contain at least one non-empty value")
    return out


def _validate_env_var_name(value: str) -> str:
    name = (value or "").strip()
    if not _ENV_NAME_RE.fullmatch(name):
        raise ValueError("must be a valid environment variable name")
    return name


PositiveInt = Annotated[int, Field(ge=1)]
NonNegativeInt = Annotated[int, Field(ge=0)]
PositiveFloat = Annotated[float, Field(gt=0)]
NonNegativeFloat = Annotated[float, Field(ge=0)]


class HttpConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    timeout_seconds: PositiveFloat = 10.0
    max_attempts: PositiveInt = 1
    desktop_user_agent: str = DESKTOP_USER_AGENT
    mobile_user_agent: str = MOBILE_USER_AGENT
    accept_language: str = "en-US,en;q=0.5"


class ChainConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    strategies: list[StrategyName] = Field(default_factory=lambda: list(DEFAULT_STRATEGY_ORDER))
    delay_after_failure_seconds: NonNegativeFloat = 1.0
    deadline_seconds: PositiveFloat | None = None

    @field_validator("strategies")
    @classmethod
    def _strategies_unique(cls, v: list[StrategyName]) -> list[StrategyName]:
        if not v:
            raise ValueError("must name at least one strategy")
        if len(set(v)) != len(v):
            raise ValueError("must not repeat a strategy")
        return v


class OEmbedConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    endpoint: str = "https://api.instagram.com/oembed/"


class RelayEndpoint(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    url_template: str
    response: Literal["json_contents", "raw"] = "raw"

    @field_validator("url_template")
    @classmethod
    def _template_has_url(cls, v: str) -> str:
        value = (v or "").strip()
        if "{url}" not in value:
            raise ValueError("must contain a {url} placeholder")
        return value


class RelayConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    relays: list[RelayEndpoint] = Field(
        default_factory=lambda: [
            RelayEndpoint(
                url_template="https://api.allorigins.win/get?url={url}",
                response="json_contents",
            ),
            RelayEndpoint(url_template="https://api.allorigins.win/raw?url={url}"),
            RelayEndpoint(url_template="https://corsproxy.io/?url={url}"),
        ]
    )
    min_payload_chars: NonNegativeInt = 1000


class ProbeConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    # {kind} is the post path segment (p, reel, tv); {code} is the shortcode.
    endpoints: list[str] = Field(
        default_factory=lambda: [
            "https://www.instagram.com/{kind}/{code}/?__a=1&__d=dis",
            "https://www.instagram.com/p/{code}/embed/captioned/",
            "https://www.instagram.com/p/{code}/embed/",
        ]
    )

    @field_validator("endpoints")
    @classmethod
    def _endpoints_have_code(cls, v: list[str]) -> list[str]:
        out = _normalize_str_list(v, allow_empty=False)
        for item in out:
            if "{code}" not in item:
                raise ValueError(f"endpoint must contain a {{code}} placeholder: {item}")
        return out


class CleanerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    cdn_host_suffixes: list[str] = Field(
        default_factory=lambda: ["cdninstagram.com", "fbcdn.net"]
    )
    keep_query_params: list[str] = Field(
        default_factory=lambda: [
            "oh",
            "oe",
            "_nc_ht",
            "_nc_cat",
            "_nc_ohc",
            "_nc_oc",
            "_nc_sid",
            "_nc_gid",
            "efg",
            "stp",
            "ccb",
            "vs",
        ]
    )

    @field_validator("cdn_host_suffixes")
    @classmethod
    def _normalize_hosts(cls, v: list[str]) -> list[str]:
        return [h.lstrip(".") for h in _normalize_str_list(v, allow_empty=False)]

    @field_validator("keep_query_params")
    @classmethod
    def _normalize_params(cls, v: list[str]) -> list[str]:
        return _normalize_str_list(v, allow_empty=True)


class ApifyConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = False
    token_env: str = "APIFY_TOKEN"
    actor: str = "apify/instagram-scraper"
    timeout_secs: PositiveInt = 120

    @field_validator("token_env")
    @classmethod
    def _token_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    http: HttpConfig = Field(default_factory=HttpConfig)
    chain: ChainConfig = Field(default_factory=ChainConfig)
    oembed: OEmbedConfig = Field(default_factory=OEmbedConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    probe: ProbeConfig = Field(default_factory=ProbeConfig)
    cleaner: CleanerConfig = Field(default_factory=CleanerConfig)
    apify: ApifyConfig = Field(default_factory=ApifyConfig)
    blocking_phrases: list[str] = Field(
        default_factory=lambda: ["Please wait a few minutes before you try again"]
    )

    @field_validator("blocking_phrases")
    @classmethod
    def _normalize_phrases(cls, v: list[str]) -> list[str]:
        return _normalize_str_list(v, allow_empty=True)
