from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Sequence

MediaKind = Literal["image", "video"]
Quality = Literal["hd", "standard", "unknown"]
PostType = Literal["post", "reel", "igtv", "story"]


@dataclass(frozen=True)
class SourceURL:
    """A validated, canonical Instagram post address."""

    url: str
    post_type: PostType
    shortcode: str | None = None
    username: str | None = None


@dataclass(frozen=True)
class MediaCandidate:
    kind: MediaKind
    url: str
    quality: Quality = "unknown"

    width: int | None = None
    height: int | None = None
    duration: float | None = None
    thumbnail: str | None = None

    # True when the URL was guessed from another URL rather than observed.
    derived: bool = False

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": self.kind,
            "url": self.url,
            "quality": self.quality,
        }
        if self.width is not None:
            out["width"] = self.width
        if self.height is not None:
            out["height"] = self.height
        if self.duration is not None:
            out["duration"] = self.duration
        if self.thumbnail:
            out["thumbnail"] = self.thumbnail
        if self.derived:
            out["derived"] = True
        return out


@dataclass(frozen=True)
class ExtractionResult:
    """
    Post metadata plus an ordered media sequence.

    Media entries are distinct by URL, videos come before images, and within
    each kind hd comes before standard before unknown.
    """

    title: str
    author: str
    description: str
    post_type: PostType
    source_url: str
    media: Sequence[MediaCandidate] = ()
    timestamp: str = ""

    error: str | None = None
    strategy: str | None = None

    @property
    def has_media(self) -> bool:
        return len(self.media) > 0

    @property
    def has_hd_video(self) -> bool:
        return any(m.kind == "video" and m.quality == "hd" for m in self.media)

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "title": self.title,
            "author": self.author,
            "description": self.description,
            "type": self.post_type,
            "url": self.source_url,
            "timestamp": self.timestamp,
            "media": [m.to_wire() for m in self.media],
        }
        if self.error:
            out["error"] = self.error
        if self.strategy:
            out["strategy"] = self.strategy
        return out


@dataclass(frozen=True)
class StrategyOutcome:
    strategy_name: str
    success: bool
    result: ExtractionResult | None = None
    error: str | None = None
    error_type: str | None = None
    elapsed_seconds: float = 0.0

    def to_event(self) -> dict[str, Any]:
        event: dict[str, Any] = {
            "strategy": self.strategy_name,
            "success": self.success,
            "elapsed_seconds": round(float(self.elapsed_seconds), 3),
        }
        if self.result is not None:
            event["media_count"] = len(self.result.media)
            event["has_hd_video"] = self.result.has_hd_video
        if self.error:
            event["error"] = self.error
            event["error_type"] = self.error_type
        return event


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def response_envelope(
    *,
    result: ExtractionResult | None = None,
    error: str | None = None,
    details: Mapping[str, Any] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Wrap a result or an error in the `{success, data | error, timestamp}` shape.

    An extraction that found no media is still `success: true`; its `data.error`
    carries the diagnostic.
    """
    ts = (now or utc_now()).isoformat()
    if result is not None:
        return {"success": True, "data": result.to_wire(), "timestamp": ts}

    out: dict[str, Any] = {
        "success": False,
        "error": (error or "").strip() or "Failed to process request",
        "timestamp": ts,
    }
    if details:
        out["details"] = dict(details)
    return out
