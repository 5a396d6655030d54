from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Sequence
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .media import MediaCandidate, MediaKind
from .patterns import RawMedia, unescape_value

DEFAULT_KEEP_PARAMS: tuple[str, ...] = (
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
)
DEFAULT_CDN_HOST_SUFFIXES: tuple[str, ...] = ("cdninstagram.com", "fbcdn.net")

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".heic", ".gif")
VIDEO_EXTENSIONS = (".mp4", ".m4v", ".mov", ".webm")


@dataclass(frozen=True)
class CleanerSettings:
    keep_params: Sequence[str] = DEFAULT_KEEP_PARAMS
    cdn_host_suffixes: Sequence[str] = DEFAULT_CDN_HOST_SUFFIXES


def clean_url(raw: str, *, keep_params: Iterable[str] = DEFAULT_KEEP_PARAMS) -> str:
    """
    Unescape a candidate URL and keep only the query parameters the CDN needs.

    Drops the fragment, and the `?` too when nothing is left to keep.
    """
    value = unescape_value(raw or "").strip()
    if not value:
        return ""

    try:
        parts = urlsplit(value)
    except ValueError:
        return value

    keep = {k.casefold() for k in keep_params}
    kept = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k.casefold() in keep
    ]
    query = urlencode(kept) if kept else ""
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, ""))


def _host_in(host: str, suffixes: Iterable[str]) -> bool:
    h = (host or "").casefold()
    for suffix in suffixes:
        s = (suffix or "").strip().casefold().lstrip(".")
        if not s:
            continue
        if h == s or h.endswith("." + s):
            return True
    return False


def is_valid_candidate(
    kind: MediaKind,
    url: str,
    *,
    cdn_host_suffixes: Iterable[str] = DEFAULT_CDN_HOST_SUFFIXES,
) -> bool:
    try:
        parts = urlsplit(url or "")
    except ValueError:
        return False

    if parts.scheme.casefold() != "https":
        return False
    if not _host_in(parts.hostname or "", cdn_host_suffixes):
        return False

    path = parts.path.casefold()
    if kind == "video" and path.endswith(IMAGE_EXTENSIONS):
        return False
    if kind == "image" and path.endswith(VIDEO_EXTENSIONS):
        return False
    return True


def _merge(first: MediaCandidate, later: MediaCandidate) -> MediaCandidate:
    return replace(
        first,
        width=first.width if first.width is not None else later.width,
        height=first.height if first.height is not None else later.height,
        duration=first.duration if first.duration is not None else later.duration,
        thumbnail=first.thumbnail or later.thumbnail,
    )


def clean_candidates(
    raw_media: Iterable[RawMedia],
    *,
    settings: CleanerSettings | None = None,
) -> list[MediaCandidate]:
    """
    Clean, validate and deduplicate raw matches, keeping first-seen order.

    Invalid candidates are dropped silently. A later duplicate only fills
    attributes the first occurrence is missing.
    """
    cfg = settings or CleanerSettings()

    out: list[MediaCandidate] = []
    index: dict[str, int] = {}

    for raw in raw_media:
        url = clean_url(raw.url, keep_params=cfg.keep_params)
        if not url or not is_valid_candidate(
            raw.kind, url, cdn_host_suffixes=cfg.cdn_host_suffixes
        ):
            continue

        thumb = clean_url(raw.thumbnail, keep_params=cfg.keep_params) if raw.thumbnail else None
        candidate = MediaCandidate(
            kind=raw.kind,
            url=url,
            width=raw.width,
            height=raw.height,
            duration=raw.duration,
            thumbnail=thumb or None,
            derived=raw.derived,
        )

        pos = index.get(url)
        if pos is not None:
            out[pos] = _merge(out[pos], candidate)
            continue
        index[url] = len(out)
        out.append(candidate)

    return out
