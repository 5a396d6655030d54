from __future__ import annotations

import html
import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Literal, Mapping, Sequence

from bs4 import BeautifulSoup

from .media import MediaKind, PostType

RuleField = Literal["blob", "title", "description", "author", "video", "image"]
RuleTier = Literal["structured", "meta", "loose"]

_TEXT_FIELDS = ("title", "description", "author")

UNKNOWN_AUTHOR = "Unknown"


@dataclass(frozen=True)
class ExtractionRule:
    """
    One declarative scan over a payload.

    A rule reads the page either through a CSS `selector` (HTML tags, taking
    `attr` or the element text) or through a regex `pattern` over the raw text
    (first non-empty group). `blob` rules yield JSON text that is walked for
    media nodes.
    """

    name: str
    field: RuleField
    tier: RuleTier = "meta"
    pattern: re.Pattern[str] | None = None
    selector: str | None = None
    attr: str | None = None


@dataclass(frozen=True)
class RawMedia:
    kind: MediaKind
    url: str
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    thumbnail: str | None = None
    rule: str = ""
    derived: bool = False


@dataclass
class PayloadExtraction:
    title: str | None = None
    description: str | None = None
    author: str | None = None
    media: list[RawMedia] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.title or self.description or self.author or self.media)


def _meta_rule(name: str, prop: str, rule_field: RuleField) -> ExtractionRule:
    return ExtractionRule(
        name,
        rule_field,
        "meta",
        selector=f'meta[property="{prop}"], meta[name="{prop}"]',
        attr="content",
    )


def _json_string_pattern(key: str) -> re.Pattern[str]:
    return re.compile(r'"' + re.escape(key) + r'"\s*:\s*"((?:[^"\\]|\\.)*)"')


DEFAULT_RULES: tuple[ExtractionRule, ...] = (
    ExtractionRule(
        "json_document",
        "blob",
        "structured",
        pattern=re.compile(r"\A\s*([\[{].*[\]}])\s*\Z", re.DOTALL),
    ),
    ExtractionRule(
        "json_script",
        "blob",
        "structured",
        selector='script[type="application/json"], script[type="application/ld+json"]',
    ),
    ExtractionRule(
        "shared_data",
        "blob",
        "structured",
        pattern=re.compile(r"window\._sharedData\s*=\s*(\{.*?\});?\s*</script>", re.DOTALL),
    ),
    ExtractionRule(
        "additional_data",
        "blob",
        "structured",
        pattern=re.compile(
            r"""window\.__additionalDataLoaded\(\s*['"][^'"]*['"]\s*,\s*(\{.*?\})\s*\);""",
            re.DOTALL,
        ),
    ),
    _meta_rule("og_title", "og:title", "title"),
    _meta_rule("og_description", "og:description", "description"),
    _meta_rule("meta_description", "description", "description"),
    _meta_rule("og_video", "og:video", "video"),
    _meta_rule("og_video_secure", "og:video:secure_url", "video"),
    _meta_rule("og_image", "og:image", "image"),
    ExtractionRule("video_url", "video", "loose", pattern=_json_string_pattern("video_url")),
    ExtractionRule("playback_url", "video", "loose", pattern=_json_string_pattern("playback_url")),
    ExtractionRule("display_url", "image", "loose", pattern=_json_string_pattern("display_url")),
    ExtractionRule("thumbnail_url", "image", "loose", pattern=_json_string_pattern("thumbnail_url")),
    ExtractionRule(
        "bare_mp4",
        "video",
        "loose",
        pattern=re.compile(r"""(https:(?:\\?/){2}[^"'\s<>\\]+\.mp4(?:\?[^"'\s<>]*)?)"""),
    ),
)


_UNICODE_ESCAPE_RE = re.compile(r"\\u([0-9a-fA-F]{4})")


def unescape_value(value: str) -> str:
    """Undo JSON-in-HTML escaping (\\u0026, \\/, \\") and HTML entities."""
    s = value or ""
    if "\\" in s:
        s = _UNICODE_ESCAPE_RE.sub(lambda m: chr(int(m.group(1), 16)), s)
        s = s.replace("\\/", "/").replace('\\"', '"')
        try:
            # Recombine surrogate pairs produced by escaped emoji.
            s = s.encode("utf-16", "surrogatepass").decode("utf-16")
        except UnicodeError:
            pass
    if "&" in s:
        s = html.unescape(s)
    return s


_AUTHOR_PHRASINGS: tuple[re.Pattern[str], ...] = (
    # "1,234 likes, 56 comments - someone on March 1, 2024: ..."
    re.compile(
        r"^[\d.,]+\s*[KkMm]?\s+likes?,\s*[\d.,]+\s*[KkMm]?\s+comments?\s+-\s+"
        r"(?P<author>[A-Za-z0-9_.]+)\s+on\s+"
    ),
    # "@someone on Instagram: ..."
    re.compile(r"^@(?P<author>[A-Za-z0-9_.]+)\s+on\s+[A-Za-z]+\s*:"),
    # "someone: caption"
    re.compile(r"^(?P<author>[^:\n]+):"),
)


def derive_author(description: str | None) -> str:
    text = (description or "").strip()
    if not text:
        return UNKNOWN_AUTHOR

    for pattern in _AUTHOR_PHRASINGS:
        m = pattern.match(text)
        if m is None:
            continue
        author = m.group("author").strip().lstrip("@").strip()
        if author:
            return author
    return UNKNOWN_AUTHOR


def _first_group(m: re.Match[str]) -> str:
    for g in m.groups():
        if g is not None:
            return g
    return ""


def _rule_values(
    rule: ExtractionRule, payload: str, soup: Callable[[], BeautifulSoup]
) -> Iterator[str]:
    if rule.selector is not None:
        for el in soup().select(rule.selector):
            value = el.get(rule.attr) if rule.attr else el.get_text()
            if isinstance(value, str) and value:
                yield value
        return

    if rule.pattern is not None:
        for m in rule.pattern.finditer(payload):
            yield _first_group(m)


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return None


def _coerce_str(value: Any) -> str | None:
    if isinstance(value, str):
        s = value.strip()
        return s if s else None
    return None


def _coerce_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _coerce_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


_MEDIA_NODE_KEYS = (
    "video_url",
    "display_url",
    "video_versions",
    "image_versions2",
    "display_resources",
)
_MAX_DEPTH = 64


def _children(node: Mapping[str, Any]) -> list[Mapping[str, Any]] | None:
    sidecar = node.get("edge_sidecar_to_children")
    if isinstance(sidecar, Mapping):
        edges = sidecar.get("edges")
        if isinstance(edges, list):
            kids = [
                e["node"]
                for e in edges
                if isinstance(e, Mapping) and isinstance(e.get("node"), Mapping)
            ]
            if kids:
                return kids

    carousel = node.get("carousel_media")
    if isinstance(carousel, list):
        kids = [c for c in carousel if isinstance(c, Mapping)]
        if kids:
            return kids

    return None


def _is_media_node(node: Mapping[str, Any]) -> bool:
    if any(k in node for k in _MEDIA_NODE_KEYS):
        return True
    return node.get("@type") in ("VideoObject", "ImageObject") and "contentUrl" in node


def _iter_media_nodes(obj: Any, depth: int = 0) -> Iterator[Mapping[str, Any]]:
    if depth > _MAX_DEPTH:
        return
    if isinstance(obj, Mapping):
        kids = _children(obj)
        if kids is not None:
            for kid in kids:
                yield from _iter_media_nodes(kid, depth + 1)
            return
        if _is_media_node(obj):
            yield obj
            return
        for value in obj.values():
            yield from _iter_media_nodes(value, depth + 1)
    elif isinstance(obj, list):
        for item in obj:
            yield from _iter_media_nodes(item, depth + 1)


def _iter_mappings(obj: Any) -> Iterator[Mapping[str, Any]]:
    stack: list[Any] = [obj]
    while stack:
        cur = stack.pop()
        if isinstance(cur, Mapping):
            yield cur
            stack.extend(reversed(list(cur.values())))
        elif isinstance(cur, list):
            stack.extend(reversed(cur))


def _find_post_node(
    blob: Any, *, shortcode: str | None, post_type: PostType
) -> Mapping[str, Any] | None:
    """
    Locate the node describing this post, so related/suggested posts are ignored.

    Stories are identified by their numeric media id rather than a shortcode.
    """
    if not shortcode:
        return None

    keys = ("pk", "id") if post_type == "story" else ("shortcode", "code")
    for node in _iter_mappings(blob):
        for key in keys:
            value = node.get(key)
            if value is None or isinstance(value, (Mapping, list)):
                continue
            if str(value).split("_", 1)[0] == shortcode:
                return node
    return None


def _dimensions(node: Mapping[str, Any]) -> tuple[int | None, int | None]:
    dims = node.get("dimensions")
    if isinstance(dims, Mapping):
        return _coerce_int(dims.get("width")), _coerce_int(dims.get("height"))
    return _coerce_int(node.get("original_width")), _coerce_int(node.get("original_height"))


def _widest(entries: Any, *, url_key: str, width_key: str) -> str | None:
    if not isinstance(entries, list):
        return None
    best: tuple[int, str] | None = None
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        url = _coerce_str(entry.get(url_key))
        if not url:
            continue
        width = _coerce_int(entry.get(width_key)) or 0
        if best is None or width > best[0]:
            best = (width, url)
    return best[1] if best else None


def _best_image_url(node: Mapping[str, Any]) -> str | None:
    url = _coerce_str(node.get("display_url"))
    if url:
        return url

    versions = node.get("image_versions2")
    if isinstance(versions, Mapping):
        url = _widest(versions.get("candidates"), url_key="url", width_key="width")
        if url:
            return url

    url = _widest(node.get("display_resources"), url_key="src", width_key="config_width")
    if url:
        return url

    return _coerce_str(node.get("thumbnail_src")) or _coerce_str(node.get("thumbnailUrl"))


def _media_from_node(node: Mapping[str, Any], rule: str) -> list[RawMedia]:
    width, height = _dimensions(node)
    duration = _coerce_float(node.get("video_duration"))
    cover = _best_image_url(node)

    ld_type = node.get("@type")
    if ld_type in ("VideoObject", "ImageObject"):
        url = _coerce_str(node.get("contentUrl"))
        if not url:
            return []
        kind: MediaKind = "video" if ld_type == "VideoObject" else "image"
        return [
            RawMedia(
                kind=kind,
                url=url,
                width=_coerce_int(node.get("width")),
                height=_coerce_int(node.get("height")),
                thumbnail=cover if kind == "video" else None,
                rule=rule,
            )
        ]

    out: list[RawMedia] = []
    video_url = _coerce_str(node.get("video_url"))
    if video_url:
        out.append(
            RawMedia("video", video_url, width, height, duration, thumbnail=cover, rule=rule)
        )

    versions = node.get("video_versions")
    if isinstance(versions, list):
        for version in versions:
            if not isinstance(version, Mapping):
                continue
            url = _coerce_str(version.get("url"))
            if not url:
                continue
            out.append(
                RawMedia(
                    "video",
                    url,
                    _coerce_int(version.get("width")) or width,
                    _coerce_int(version.get("height")) or height,
                    duration,
                    thumbnail=cover,
                    rule=rule,
                )
            )

    # A video node without a playable URL still exposes its cover.
    if not out and cover:
        out.append(RawMedia("image", cover, width, height, rule=rule))
    return out


def _caption_text(node: Mapping[str, Any]) -> str | None:
    edges = node.get("edge_media_to_caption")
    if isinstance(edges, Mapping):
        items = edges.get("edges")
        if isinstance(items, list):
            for item in items:
                if isinstance(item, Mapping) and isinstance(item.get("node"), Mapping):
                    text = _coerce_str(item["node"].get("text"))
                    if text:
                        return text

    caption = node.get("caption")
    if isinstance(caption, Mapping):
        return _coerce_str(caption.get("text"))
    return _coerce_str(caption)


def _owner_username(node: Mapping[str, Any]) -> str | None:
    for key in ("owner", "user"):
        owner = node.get(key)
        if isinstance(owner, Mapping):
            name = _coerce_str(owner.get("username"))
            if name:
                return name
    return None


def _apply_blob(
    out: PayloadExtraction,
    blob: Any,
    *,
    rule: str,
    shortcode: str | None,
    post_type: PostType,
) -> None:
    post_node = _find_post_node(blob, shortcode=shortcode, post_type=post_type)
    target: Any = post_node if post_node is not None else blob

    nodes = list(_iter_media_nodes(target))
    for node in nodes:
        out.media.extend(_media_from_node(node, rule))

    meta_node = post_node if post_node is not None else (nodes[0] if nodes else None)
    if meta_node is None:
        return

    if not out.author:
        out.author = _owner_username(meta_node)
    if not out.description:
        out.description = _caption_text(meta_node)
    if not out.title:
        out.title = _coerce_str(meta_node.get("title"))


def extract_payload(
    text: str,
    *,
    post_type: PostType = "post",
    shortcode: str | None = None,
    rules: Sequence[ExtractionRule] = DEFAULT_RULES,
) -> PayloadExtraction:
    """
    Run the ordered extraction rules over an HTML or JSON payload.

    Text fields keep the first non-empty value in rule order. Loose media rules
    are skipped once a structured rule has produced media, so low-confidence
    matches never pad a structured result.
    """
    payload = text or ""
    out = PayloadExtraction()
    structured_media = 0
    soup: BeautifulSoup | None = None

    def _soup() -> BeautifulSoup:
        nonlocal soup
        if soup is None:
            soup = BeautifulSoup(payload, "html.parser")
        return soup

    for rule in rules:
        if rule.field == "blob":
            for raw in _rule_values(rule, payload, _soup):
                blob = _load_json(raw)
                if blob is None:
                    continue
                _apply_blob(out, blob, rule=rule.name, shortcode=shortcode, post_type=post_type)
            structured_media = len(out.media)
            continue

        if rule.field in _TEXT_FIELDS:
            if getattr(out, rule.field):
                continue
            for raw in _rule_values(rule, payload, _soup):
                value = unescape_value(raw).strip()
                if value:
                    setattr(out, rule.field, value)
                    break
            continue

        if rule.tier == "loose" and structured_media:
            continue

        kind: MediaKind = "video" if rule.field == "video" else "image"
        for raw in _rule_values(rule, payload, _soup):
            url = unescape_value(raw).strip()
            if url:
                out.media.append(RawMedia(kind=kind, url=url, rule=rule.name))

    if not out.author and out.description:
        author = derive_author(out.description)
        if author != UNKNOWN_AUTHOR:
            out.author = author

    return out
