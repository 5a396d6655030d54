from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from .cleaner import CleanerSettings, clean_candidates
from .media import ExtractionResult, SourceURL, utc_now
from .patterns import UNKNOWN_AUTHOR, PayloadExtraction, derive_author
from .quality import finalize_media

DEFAULT_TITLE = "Instagram Post"
PLACEHOLDER_TITLE = "Instagram Media"
NO_MEDIA_MESSAGE = "Could not extract media URLs"

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class ResultBuilder:
    """Turns a payload extraction into a cleaned, ordered ExtractionResult."""

    cleaner: CleanerSettings = field(default_factory=CleanerSettings)
    clock: Clock = utc_now

    def timestamp(self) -> str:
        return self.clock().isoformat()

    def build(
        self,
        extraction: PayloadExtraction,
        source: SourceURL,
        *,
        strategy: str | None = None,
    ) -> ExtractionResult:
        media = finalize_media(clean_candidates(extraction.media, settings=self.cleaner))

        description = extraction.description or ""
        author = extraction.author or derive_author(description)

        return ExtractionResult(
            title=extraction.title or DEFAULT_TITLE,
            author=author or UNKNOWN_AUTHOR,
            description=description,
            post_type=source.post_type,
            source_url=source.url,
            media=media,
            timestamp=self.timestamp(),
            strategy=strategy,
        )

    def placeholder(
        self,
        source: SourceURL,
        *,
        error: str | None,
        metadata: ExtractionResult | None = None,
    ) -> ExtractionResult:
        """
        Empty-media result carrying the last diagnostic.

        Metadata from a strategy that found text but no media is kept when available.
        """
        return ExtractionResult(
            title=metadata.title if metadata is not None else PLACEHOLDER_TITLE,
            author=metadata.author if metadata is not None else UNKNOWN_AUTHOR,
            description=metadata.description if metadata is not None else "",
            post_type=source.post_type,
            source_url=source.url,
            media=(),
            timestamp=self.timestamp(),
            error=(error or "").strip() or NO_MEDIA_MESSAGE,
            strategy=metadata.strategy if metadata is not None else None,
        )
