from __future__ import annotations

from typing import Any, Mapping

from .patterns import PayloadExtraction, RawMedia

_RULE = "apify_item"


def _coerce_str(value: Any) -> str | None:
    if isinstance(value, str):
        s = value.strip()
        return s if s else None
    return None


def _coerce_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def _coerce_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _media_from_item(item: Mapping[str, Any]) -> list[RawMedia]:
    width = _coerce_int(item.get("dimensionsWidth"))
    height = _coerce_int(item.get("dimensionsHeight"))
    display = _coerce_str(item.get("displayUrl")) or _coerce_str(item.get("display_url"))

    video = _coerce_str(item.get("videoUrl")) or _coerce_str(item.get("video_url"))
    if video:
        return [
            RawMedia(
                kind="video",
                url=video,
                width=width,
                height=height,
                duration=_coerce_float(item.get("videoDuration")),
                thumbnail=display,
                rule=_RULE,
            )
        ]
    if display:
        return [RawMedia(kind="image", url=display, width=width, height=height, rule=_RULE)]
    return []


def extraction_from_apify_item(item: Mapping[str, Any]) -> PayloadExtraction:
    """
    Map an Instagram Scraper dataset item onto a PayloadExtraction.

    Carousels (`childPosts`, or a bare `images` list) enumerate every child;
    minor field-name variations between Actor versions are tolerated.
    """
    out = PayloadExtraction()

    children = item.get("childPosts")
    if isinstance(children, list) and children:
        for child in children:
            if isinstance(child, Mapping):
                out.media.extend(_media_from_item(child))
    else:
        out.media.extend(_media_from_item(item))
        images = item.get("images")
        if isinstance(images, list):
            for url in images:
                s = _coerce_str(url)
                if s:
                    out.media.append(RawMedia(kind="image", url=s, rule=_RULE))

    out.description = (
        _coerce_str(item.get("caption"))
        or _coerce_str(item.get("captionText"))
        or _coerce_str(item.get("text"))
    )
    out.author = (
        _coerce_str(item.get("ownerUsername"))
        or _coerce_str(item.get("owner_username"))
        or _coerce_str(item.get("username"))
    )
    owner = item.get("owner")
    if out.author is None and isinstance(owner, Mapping):
        out.author = _coerce_str(owner.get("username"))

    full_name = _coerce_str(item.get("ownerFullName"))
    if full_name:
        out.title = f"{full_name} on Instagram"
    return out
