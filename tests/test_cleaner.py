from __future__ import annotations

import unittest

from ig_media.cleaner import (
    CleanerSettings,
    clean_candidates,
    clean_url,
    is_valid_candidate,
)
from ig_media.patterns import RawMedia, extract_payload


class TestCleanURL(unittest.TestCase):
    def test_keeps_only_whitelisted_params(self) -> None:
        self.assertEqual(
            clean_url(
                "https://scontent.cdninstagram.com/v/a.jpg"
                "?stp=dst-jpg_s640x640&utm_source=ig_web&oh=00_AB&igsh=x#frag"
            ),
            "https://scontent.cdninstagram.com/v/a.jpg?stp=dst-jpg_s640x640&oh=00_AB",
        )

    def test_drops_question_mark_when_nothing_is_kept(self) -> None:
        self.assertEqual(
            clean_url("https://scontent.cdninstagram.com/v/a.mp4?utm_source=ig"),
            "https://scontent.cdninstagram.com/v/a.mp4",
        )
        self.assertEqual(
            clean_url("https://scontent.cdninstagram.com/v/a.mp4?"),
            "https://scontent.cdninstagram.com/v/a.mp4",
        )

    def test_unescapes_before_parsing(self) -> None:
        self.assertEqual(
            clean_url(r"https:\/\/scontent.cdninstagram.com\/v\/a.mp4?oh=1&oe=2&x=3"),
            "https://scontent.cdninstagram.com/v/a.mp4?oh=1&oe=2",
        )

    def test_custom_whitelist(self) -> None:
        self.assertEqual(
            clean_url("https://cdn.example/a.jpg?sig=1&oh=2", keep_params=["sig"]),
            "https://cdn.example/a.jpg?sig=1",
        )

    def test_blank_input(self) -> None:
        self.assertEqual(clean_url("   "), "")


class TestIsValidCandidate(unittest.TestCase):
    def test_accepts_cdn_urls(self) -> None:
        self.assertTrue(is_valid_candidate("video", "https://scontent-lhr8-1.cdninstagram.com/o1/v.mp4"))
        self.assertTrue(is_valid_candidate("image", "https://scontent.xx.fbcdn.net/v/t51/i.jpg"))
        self.assertTrue(is_valid_candidate("video", "https://instagram.fxyz1-1.fna.fbcdn.net/o1/v/t16/f2/m86/AQ"))

    def test_rejects_insecure_and_foreign_hosts(self) -> None:
        self.assertFalse(is_valid_candidate("image", "http://scontent.cdninstagram.com/i.jpg"))
        self.assertFalse(is_valid_candidate("image", "https://example.com/i.jpg"))
        self.assertFalse(is_valid_candidate("image", "https://cdninstagram.com.evil.example/i.jpg"))
        self.assertFalse(is_valid_candidate("image", "https://www.instagram.com/p/ABC/"))

    def test_rejects_kind_extension_mismatch(self) -> None:
        self.assertFalse(is_valid_candidate("video", "https://scontent.cdninstagram.com/v/cover.jpg"))
        self.assertFalse(is_valid_candidate("image", "https://scontent.cdninstagram.com/v/clip.mp4"))

    def test_configured_host_space(self) -> None:
        self.assertTrue(
            is_valid_candidate("image", "https://cdn.example/a.jpg", cdn_host_suffixes=["cdn.example"])
        )
        self.assertFalse(
            is_valid_candidate("image", "https://scontent.cdninstagram.com/a.jpg", cdn_host_suffixes=["cdn.example"])
        )


class TestCleanCandidates(unittest.TestCase):
    def test_escaped_duplicates_collapse_to_one_entry(self) -> None:
        page = (
            '<meta property="og:video" '
            'content="https://scontent.cdninstagram.com/v/clip.mp4?oh=1&amp;oe=2">'
            r'<script>{"video_url":"https:\/\/scontent.cdninstagram.com\/v\/clip.mp4?oh=1&oe=2"}</script>'
        )
        raw = extract_payload(page).media
        self.assertGreaterEqual(len(raw), 2)

        cleaned = clean_candidates(raw)
        self.assertEqual(len(cleaned), 1)
        self.assertEqual(cleaned[0].url, "https://scontent.cdninstagram.com/v/clip.mp4?oh=1&oe=2")
        self.assertEqual(cleaned[0].kind, "video")

    def test_first_seen_wins_and_later_duplicates_fill_gaps(self) -> None:
        raw = [
            RawMedia("video", "https://scontent.cdninstagram.com/v/a.mp4?utm=1"),
            RawMedia("image", "https://scontent.cdninstagram.com/v/b.jpg"),
            RawMedia(
                "video",
                "https://scontent.cdninstagram.com/v/a.mp4",
                width=1080,
                height=1920,
                duration=7.5,
                thumbnail="https://scontent.cdninstagram.com/v/a_cover.jpg?utm=2",
            ),
        ]
        cleaned = clean_candidates(raw)

        self.assertEqual([c.url for c in cleaned], [
            "https://scontent.cdninstagram.com/v/a.mp4",
            "https://scontent.cdninstagram.com/v/b.jpg",
        ])
        self.assertEqual(cleaned[0].width, 1080)
        self.assertEqual(cleaned[0].duration, 7.5)
        self.assertEqual(cleaned[0].thumbnail, "https://scontent.cdninstagram.com/v/a_cover.jpg")

    def test_invalid_candidates_are_dropped_silently(self) -> None:
        raw = [
            RawMedia("video", "https://example.com/a.mp4"),
            RawMedia("image", ""),
            RawMedia("image", "https://scontent.cdninstagram.com/v/ok.jpg"),
        ]
        cleaned = clean_candidates(raw)
        self.assertEqual([c.url for c in cleaned], ["https://scontent.cdninstagram.com/v/ok.jpg"])

    def test_derived_flag_is_carried(self) -> None:
        raw = [RawMedia("video", "https://cdn.example/x_n.mp4", derived=True)]
        cleaned = clean_candidates(raw, settings=CleanerSettings(cdn_host_suffixes=("cdn.example",)))
        self.assertTrue(cleaned[0].derived)
        self.assertEqual(cleaned[0].quality, "unknown")


if __name__ == "__main__":
    unittest.main()
