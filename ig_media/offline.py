from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Mapping
from urllib.parse import urlsplit

from .http_client import HttpResponse

_OFFLINE_CDN = "https://scontent.cdninstagram.com/v/t51.2885-15"

_OFFLINE_DESCRIPTION = (
    "1,204 likes, 37 comments - offline_creator on January 5, 2025: "
    "&quot;Harbour at dusk, shot from the ferry. The colours held up well.&quot;"
)

_OFFLINE_PAGE = f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>offline_creator on Instagram</title>
<meta property="og:title" content="offline_creator on Instagram: &quot;Harbour at dusk&quot;">
<meta property="og:description" content="{_OFFLINE_DESCRIPTION}">
<meta property="og:video" content="{_OFFLINE_CDN}/offline_clip_1080p.mp4?_nc_ht=scontent.cdninstagram.com&amp;oh=00_offline&amp;utm_source=ig_web">
<meta property="og:image" content="{_OFFLINE_CDN}/offline_cover_n.jpg?stp=dst-jpg_s640x640&amp;_nc_ht=scontent.cdninstagram.com">
</head>
<body><div id="root"></div></body>
</html>
"""


def _offline_oembed() -> str:
    return json.dumps(
        {
            "version": "1.0",
            "title": "Harbour at dusk, shot from the ferry.",
            "author_name": "offline_creator",
            "provider_name": "Instagram",
            "thumbnail_url": f"{_OFFLINE_CDN}/offline_cover_n.jpg?stp=dst-jpg_s640x640",
            "thumbnail_width": 640,
            "thumbnail_height": 640,
        }
    )


@dataclass
class OfflineHttpClient:
    """
    Network-free HttpClient for `--offline` smoke checks.

    The oEmbed endpoint answers with a small JSON document; every other
    instagram.com URL answers with the same canned post page. Anything else
    gets a 404. Requested URLs are recorded in `calls`.
    """

    page: str = _OFFLINE_PAGE
    oembed: str = field(default_factory=_offline_oembed)
    calls: list[str] = field(default_factory=list)

    def get(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        _ = (headers, timeout)
        self.calls.append(url)

        host = (urlsplit(url).hostname or "").lower()
        if host == "api.instagram.com" and "/oembed" in urlsplit(url).path:
            return HttpResponse(status_code=200, text=self.oembed, url=url)
        if host == "instagram.com" or host.endswith(".instagram.com"):
            return HttpResponse(status_code=200, text=self.page, url=url)
        return HttpResponse(status_code=404, text="", url=url)
