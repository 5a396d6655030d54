from __future__ import annotations

import json
import unittest

from ig_media.patterns import (
    UNKNOWN_AUTHOR,
    derive_author,
    extract_payload,
    unescape_value,
)

_CDN = "https://scontent.cdninstagram.com/v/t51.2885-15"


def _shared_data_page(blob: dict) -> str:
    return (
        "<html><head>"
        '<meta property="og:title" content="Creator A on Instagram">'
        "</head><body>"
        f'<script type="text/javascript">window._sharedData = {json.dumps(blob)};</script>'
        "</body></html>"
    )


def _carousel_blob() -> dict:
    return {
        "entry_data": {
            "PostPage": [
                {
                    "graphql": {
                        "shortcode_media": {
                            "shortcode": "ABC123",
                            "owner": {"username": "creator_a"},
                            "edge_media_to_caption": {
                                "edges": [{"node": {"text": "Trip photos, day 3"}}]
                            },
                            "edge_sidecar_to_children": {
                                "edges": [
                                    {
                                        "node": {
                                            "is_video": True,
                                            "video_url": f"{_CDN}/one.mp4",
                                            "display_url": f"{_CDN}/one_cover.jpg",
                                            "dimensions": {"width": 1080, "height": 1920},
                                            "video_duration": 12.5,
                                        }
                                    },
                                    {
                                        "node": {
                                            "display_url": f"{_CDN}/two.jpg",
                                            "dimensions": {"width": 1080, "height": 1080},
                                        }
                                    },
                                ]
                            },
                        }
                    }
                }
            ],
            "related": [{"shortcode": "OTHER", "display_url": f"{_CDN}/other.jpg"}],
        }
    }


class TestStructuredRules(unittest.TestCase):
    def test_carousel_children_are_enumerated(self) -> None:
        out = extract_payload(
            _shared_data_page(_carousel_blob()), post_type="post", shortcode="ABC123"
        )

        self.assertEqual([m.kind for m in out.media], ["video", "image"])
        video, image = out.media
        self.assertEqual(video.url, f"{_CDN}/one.mp4")
        self.assertEqual(video.width, 1080)
        self.assertEqual(video.height, 1920)
        self.assertEqual(video.duration, 12.5)
        self.assertEqual(video.thumbnail, f"{_CDN}/one_cover.jpg")
        self.assertEqual(video.rule, "shared_data")
        self.assertEqual(image.url, f"{_CDN}/two.jpg")

        self.assertEqual(out.author, "creator_a")
        self.assertEqual(out.description, "Trip photos, day 3")
        self.assertEqual(out.title, "Creator A on Instagram")

    def test_loose_rules_do_not_pad_structured_media(self) -> None:
        out = extract_payload(
            _shared_data_page(_carousel_blob()), post_type="post", shortcode="ABC123"
        )
        urls = [m.url for m in out.media]
        self.assertNotIn(f"{_CDN}/other.jpg", urls)
        self.assertFalse(any(m.rule in ("display_url", "video_url") for m in out.media))

    def test_whole_json_document(self) -> None:
        doc = {
            "items": [
                {
                    "code": "REEL1",
                    "user": {"username": "traveller"},
                    "caption": {"text": "Sketches"},
                    "video_versions": [
                        {"url": f"{_CDN}/reel_720.mp4", "width": 720, "height": 1280}
                    ],
                    "image_versions2": {
                        "candidates": [
                            {"url": f"{_CDN}/small.jpg", "width": 320},
                            {"url": f"{_CDN}/large.jpg", "width": 1080},
                        ]
                    },
                    "video_duration": 9.0,
                }
            ]
        }
        out = extract_payload(json.dumps(doc), post_type="reel", shortcode="REEL1")

        self.assertEqual(len(out.media), 1)
        media = out.media[0]
        self.assertEqual(media.kind, "video")
        self.assertEqual(media.url, f"{_CDN}/reel_720.mp4")
        self.assertEqual(media.thumbnail, f"{_CDN}/large.jpg")
        self.assertEqual(media.rule, "json_document")
        self.assertEqual(out.author, "traveller")
        self.assertEqual(out.description, "Sketches")

    def test_ld_json_video_object(self) -> None:
        ld = {
            "@type": "VideoObject",
            "contentUrl": f"{_CDN}/ld.mp4",
            "thumbnailUrl": f"{_CDN}/ld_poster.jpg",
            "width": "1080",
            "height": "1920",
        }
        page = f'<script type="application/ld+json">{json.dumps(ld)}</script>'
        out = extract_payload(page)

        self.assertEqual(len(out.media), 1)
        self.assertEqual(out.media[0].kind, "video")
        self.assertEqual(out.media[0].width, 1080)
        self.assertEqual(out.media[0].thumbnail, f"{_CDN}/ld_poster.jpg")


class TestMetaAndLooseRules(unittest.TestCase):
    def test_meta_tags_in_either_attribute_order(self) -> None:
        page = (
            f'<meta content="{_CDN}/v.mp4" property="og:video">'
            f"<meta property='og:image' content='{_CDN}/i.jpg'>"
            '<meta name="description" content="plain description">'
        )
        out = extract_payload(page)

        meta = [(m.kind, m.url) for m in out.media if m.rule.startswith("og_")]
        self.assertEqual(meta, [("video", f"{_CDN}/v.mp4"), ("image", f"{_CDN}/i.jpg")])
        self.assertEqual(out.description, "plain description")

    def test_unquoted_html5_attributes(self) -> None:
        page = (
            '<meta property=og:title content="creator on Instagram">'
            f"<meta property=og:image content={_CDN}/photo_n.jpg>"
        )
        out = extract_payload(page)

        self.assertEqual(out.title, "creator on Instagram")
        self.assertEqual([(m.kind, m.url) for m in out.media], [("image", f"{_CDN}/photo_n.jpg")])

    def test_meta_content_entities_are_decoded(self) -> None:
        page = f'<meta property="og:video" content="{_CDN}/v.mp4?oh=1&amp;oe=2">'
        out = extract_payload(page)
        self.assertEqual(out.media[0].url, f"{_CDN}/v.mp4?oh=1&oe=2")

    def test_json_script_with_extra_attributes(self) -> None:
        blob = {"shortcode": "ABC123", "display_url": f"{_CDN}/solo.jpg"}
        page = (
            f'<script data-sjs nonce="x" type="application/json">{json.dumps(blob)}</script>'
            '<script type="text/javascript">var x = 1;</script>'
        )
        out = extract_payload(page, shortcode="ABC123")

        self.assertEqual([(m.url, m.rule) for m in out.media], [(f"{_CDN}/solo.jpg", "json_script")])

    def test_first_text_value_wins(self) -> None:
        page = (
            '<meta property="og:description" content="from og">'
            '<meta name="description" content="from meta">'
        )
        self.assertEqual(extract_payload(page).description, "from og")

    def test_loose_rules_run_when_only_meta_media_exists(self) -> None:
        page = (
            f'<meta property="og:image" content="{_CDN}/cover.jpg">'
            r'<script>{"video_url":"https:\/\/scontent.cdninstagram.com\/v\/clip.mp4?oh=1&oe=2"}</script>'
        )
        out = extract_payload(page)

        kinds = [(m.kind, m.rule) for m in out.media]
        self.assertIn(("image", "og_image"), kinds)
        self.assertIn(("video", "video_url"), kinds)
        loose = [m for m in out.media if m.rule == "video_url"][0]
        self.assertEqual(loose.url, "https://scontent.cdninstagram.com/v/clip.mp4?oh=1&oe=2")

    def test_bare_mp4_last_resort(self) -> None:
        page = "some text https://scontent.cdninstagram.com/o1/clip.mp4?efg=x more"
        out = extract_payload(page)
        self.assertEqual(len(out.media), 1)
        self.assertEqual(out.media[0].rule, "bare_mp4")

    def test_author_derived_from_description(self) -> None:
        page = (
            '<meta property="og:description" '
            'content="1,204 likes, 37 comments - creator_a on January 5, 2025: &quot;Hi&quot;">'
        )
        out = extract_payload(page)
        self.assertEqual(out.author, "creator_a")
        self.assertIn('"Hi"', out.description or "")

    def test_empty_payload(self) -> None:
        out = extract_payload("<html></html>")
        self.assertTrue(out.is_empty)
        self.assertIsNone(out.author)


class TestUnescapeValue(unittest.TestCase):
    def test_json_in_html_escapes(self) -> None:
        self.assertEqual(
            unescape_value(r"https:\/\/a.example\/x?a=1\u0026b=2"),
            "https://a.example/x?a=1&b=2",
        )
        self.assertEqual(unescape_value(r"say \"hi\""), 'say "hi"')

    def test_html_entities(self) -> None:
        self.assertEqual(unescape_value("a=1&amp;b=2"), "a=1&b=2")

    def test_escaped_surrogate_pair(self) -> None:
        self.assertEqual(unescape_value(r"\ud83d\udcaa"), "\U0001F4AA")


class TestDeriveAuthor(unittest.TestCase):
    def test_phrasings_in_order(self) -> None:
        self.assertEqual(
            derive_author("12K likes, 3 comments - city.lights on May 2, 2024: text"),
            "city.lights",
        )
        self.assertEqual(derive_author("@creator_a on Instagram: \"caption\""), "creator_a")
        self.assertEqual(derive_author("creator_a: morning flow"), "creator_a")

    def test_default_unknown(self) -> None:
        self.assertEqual(derive_author("Just a caption"), UNKNOWN_AUTHOR)
        self.assertEqual(derive_author(""), UNKNOWN_AUTHOR)
        self.assertEqual(derive_author(None), UNKNOWN_AUTHOR)


if __name__ == "__main__":
    unittest.main()
