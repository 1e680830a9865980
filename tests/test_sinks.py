from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from ig_scraper.classify import ContentType
from ig_scraper.records import NormalizedRecord
from ig_scraper.sinks import JsonlSink, MemorySink


def _profile() -> NormalizedRecord:
    return NormalizedRecord(
        type=ContentType.PROFILE,
        source_url="https://www.instagram.com/natgeo/",
        fields={
            "username": "natgeo",
            "name": "National Geographic",
            "bio": "",
            "followers": 1,
            "following": 2,
            "posts": 3,
            "isVerified": True,
            "isPrivate": False,
        },
        scraped_at="2025-01-01T00:00:00+00:00",
    )


class TestSinks(unittest.TestCase):
    def test_jsonl_sink_writes_one_item_per_line(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "nested" / "dataset.jsonl"
            with JsonlSink(path) as sink:
                sink.append(_profile())
                sink.append(_profile())
                self.assertEqual(sink.count, 2)

            lines = path.read_text(encoding="utf-8").splitlines()
            self.assertEqual(len(lines), 2)
            item = json.loads(lines[0])
            self.assertEqual(item["type"], "profile")
            self.assertEqual(item["url"], "https://www.instagram.com/natgeo/")
            self.assertEqual(item["followers"], 1)
            self.assertEqual(item["scrapedAt"], "2025-01-01T00:00:00+00:00")

            with self.assertRaises(ValueError):
                sink.append(_profile())

    def test_memory_sink(self) -> None:
        sink = MemorySink()
        sink.append(_profile())
        self.assertEqual(sink.items()[0]["username"], "natgeo")

    def test_record_requires_type_fields(self) -> None:
        with self.assertRaises(ValueError):
            NormalizedRecord(type=ContentType.PROFILE, source_url=None, fields={"likes": 1})


if __name__ == "__main__":
    unittest.main()
