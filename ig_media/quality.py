from __future__ import annotations

import re
from dataclasses import replace
from typing import Iterable, Sequence
from urllib.parse import parse_qs, unquote, urlsplit

from .media import MediaCandidate, Quality

HD_MIN_DIMENSION = 720

_RES_P_RE = re.compile(r"(?<![0-9a-z])(\d{3,4})p(?![0-9a-z])", re.IGNORECASE)
_RES_WXH_RE = re.compile(r"(?<![0-9])(\d{2,4})x(\d{2,4})(?![0-9])", re.IGNORECASE)
_HD_TOKEN_RE = re.compile(r"(?<![a-z])(?:hd|fhd|uhd)(?![a-z])", re.IGNORECASE)
_SD_TOKEN_RE = re.compile(r"(?<![a-z])(?:sd|lq|thumb|thumbnail)(?![a-z])", re.IGNORECASE)

_THUMB_SUFFIXES = (
    "_thumbnail",
    "-thumbnail",
    "_thumb",
    "-thumb",
    "_poster",
    "-poster",
    "_cover",
    "-cover",
)

_KIND_RANK = {"video": 0, "image": 1}
_QUALITY_RANK = {"hd": 0, "standard": 1, "unknown": 2}


def _resolution_hint(text: str) -> int | None:
    best: int | None = None
    for m in _RES_P_RE.finditer(text):
        best = max(best or 0, int(m.group(1)))
    for m in _RES_WXH_RE.finditer(text):
        best = max(best or 0, int(m.group(1)), int(m.group(2)))
    return best


def _quality_text(url: str) -> str:
    # Signature params (oh, efg, _nc_ohc) are opaque and may contain digit runs.
    try:
        parts = urlsplit(url)
    except ValueError:
        return unquote(url)
    sizes = parse_qs(parts.query).get("stp", [])
    return " ".join([unquote(parts.path), *sizes])


def classify_quality(candidate: MediaCandidate) -> Quality:
    """
    Infer quality from resolution tokens embedded in the URL.

    Without any marker, videos default to hd and images to standard. Guessed
    (derived) URLs are always unknown.
    """
    if candidate.derived:
        return "unknown"

    text = _quality_text(candidate.url or "")
    resolution = _resolution_hint(text)
    if resolution is not None:
        return "hd" if resolution >= HD_MIN_DIMENSION else "standard"

    if _HD_TOKEN_RE.search(text):
        return "hd"
    if _SD_TOKEN_RE.search(text):
        return "standard"

    dims = [d for d in (candidate.width, candidate.height) if d]
    if dims:
        return "hd" if max(dims) >= HD_MIN_DIMENSION else "standard"

    return "hd" if candidate.kind == "video" else "standard"


def _base_path(url: str) -> str:
    try:
        path = urlsplit(url).path
    except ValueError:
        path = url
    folder, _, name = path.rpartition("/")
    stem = name.rsplit(".", 1)[0] if "." in name else name
    low = stem.casefold()
    for suffix in _THUMB_SUFFIXES:
        if low.endswith(suffix):
            low = low[: -len(suffix)]
            break
    return f"{folder.casefold()}/{low}"


def drop_video_thumbnails(media: Sequence[MediaCandidate]) -> list[MediaCandidate]:
    """
    Remove images that are covers of a video in the same sequence.

    Derived videos are guesses, so they never cause their source image to be dropped.
    """
    videos = [m for m in media if m.kind == "video" and not m.derived]
    if not videos:
        return list(media)

    thumbs = {v.thumbnail for v in videos if v.thumbnail}
    # Covers often reappear with a different size param (stp), so compare paths too.
    bases = {_base_path(v.url) for v in videos} | {_base_path(t) for t in thumbs}

    out: list[MediaCandidate] = []
    for m in media:
        if m.kind == "image" and (m.url in thumbs or _base_path(m.url) in bases):
            continue
        out.append(m)
    return out


def order_media(media: Iterable[MediaCandidate]) -> list[MediaCandidate]:
    # sorted() is stable, so first-seen order survives within ties.
    return sorted(
        media,
        key=lambda m: (_KIND_RANK.get(m.kind, 2), _QUALITY_RANK.get(m.quality, 2)),
    )


def finalize_media(candidates: Iterable[MediaCandidate]) -> tuple[MediaCandidate, ...]:
    tagged = [replace(c, quality=classify_quality(c)) for c in candidates]
    return tuple(order_media(drop_video_thumbnails(tagged)))
