from __future__ import annotations

import re

from .errors import InvalidSourceURL
from .media import PostType, SourceURL

_HOST = r"https?://(?:www\.)?instagram\.com"

_SHAPES: tuple[tuple[PostType, re.Pattern[str]], ...] = (
    ("post", re.compile(_HOST + r"/p/(?P<code>[A-Za-z0-9_-]+)/", re.IGNORECASE)),
    ("reel", re.compile(_HOST + r"/reels?/(?P<code>[A-Za-z0-9_-]+)/", re.IGNORECASE)),
    ("igtv", re.compile(_HOST + r"/tv/(?P<code>[A-Za-z0-9_-]+)/", re.IGNORECASE)),
    (
        "story",
        re.compile(
            _HOST + r"/stories/(?P<user>[A-Za-z0-9_.-]+)/(?P<code>[0-9]+)/",
            re.IGNORECASE,
        ),
    ),
)


def normalize_source_url(raw: str) -> str:
    """
    Trim and, for instagram.com addresses, drop query/fragment and add a trailing slash.

    Idempotent: normalizing a normalized URL returns it unchanged.
    """
    url = (raw or "").strip()
    if "instagram.com" not in url.casefold():
        return url

    url = url.split("#", 1)[0]
    url = url.split("?", 1)[0]
    if not url.endswith("/"):
        url += "/"
    return url


def detect_post_type(url: str) -> PostType:
    u = (url or "").casefold()
    if "/reel/" in u or "/reels/" in u:
        return "reel"
    if "/tv/" in u:
        return "igtv"
    if "/stories/" in u:
        return "story"
    return "post"


def parse_source_url(raw: str) -> SourceURL:
    """
    Validate a post URL and reduce it to its canonical shape.

    Only the leading path has to match; trailing segments such as `embed/` or
    `c/<comment id>/` are dropped from the canonical URL.
    """
    url = normalize_source_url(raw)
    if not url:
        raise InvalidSourceURL("URL is required")

    for post_type, pattern in _SHAPES:
        m = pattern.match(url)
        if m is None:
            continue
        groups = m.groupdict()
        return SourceURL(
            url=m.group(0),
            post_type=post_type,
            shortcode=groups.get("code"),
            username=groups.get("user"),
        )

    raise InvalidSourceURL(f"Invalid Instagram URL: {url}")


def is_valid_source_url(raw: str) -> bool:
    try:
        parse_source_url(raw)
    except InvalidSourceURL:
        return False
    return True
