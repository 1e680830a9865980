from __future__ import annotations

import unittest
from collections import Counter

import httpx

from ig_scraper.config import config_from_mapping
from ig_scraper.offline import OfflineFetcher
from ig_scraper.records import NormalizedRecord
from ig_scraper.runner import run_scrape, search_url, start_requests
from ig_scraper.session import Session
from ig_scraper.sinks import MemorySink


def _offline_session(config) -> Session:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f"unexpected network call: {request.url}")

    return Session(config.fetch, client=httpx.Client(transport=httpx.MockTransport(handler)))


def _run(data: dict, sink: MemorySink | None = None):
    cfg = config_from_mapping(data)
    sink = sink or MemorySink()
    fetcher = OfflineFetcher(cfg.fetch, search_type=cfg.input.search_type)
    with _offline_session(cfg) as session:
        result = run_scrape(cfg, sink=sink, fetcher=fetcher, session=session)
    return result, sink, fetcher


class TestStartRequests(unittest.TestCase):
    def test_direct_urls_then_search(self) -> None:
        cfg = config_from_mapping({"input": {"direct_urls": ["natgeo"], "search": "Street Food"}})
        reqs = start_requests(cfg)
        self.assertEqual([r.url for r in reqs], [
            "https://www.instagram.com/natgeo",
            "https://www.instagram.com/explore/search/keyword/?q=Street+Food",
        ])
        self.assertEqual(reqs[1].unique_key, "search:street food")
        self.assertEqual(search_url("a b"), "https://www.instagram.com/explore/search/keyword/?q=a+b")


class TestRunScrape(unittest.TestCase):
    def test_profile_posts_bounded_by_limit(self) -> None:
        result, sink, _ = _run(
            {"input": {"direct_urls": ["https://www.instagram.com/natgeo/"], "results_limit": 4}}
        )

        self.assertEqual(result.status, "completed")
        self.assertEqual(result.records_by_type, {"profile": 1, "post": 4})
        self.assertEqual(result.records, 5)
        self.assertTrue(all(isinstance(r, NormalizedRecord) for r in sink.records))
        self.assertEqual(sink.records[0].fields["followers"], 1200)
        # Even-numbered fixture posts carry the authoritative counter, odd ones only the preview.
        self.assertEqual([r.fields["likes"] for r in sink.records[1:]], [10, 20, 30, 40])

    def test_comments_of_a_post(self) -> None:
        result, sink, _ = _run(
            {
                "input": {
                    "direct_urls": ["https://www.instagram.com/p/ABC123/"],
                    "results_type": "comments",
                    "results_limit": 50,
                }
            }
        )
        self.assertEqual(result.records_by_type, {"post": 1, "comment": 5})
        self.assertEqual(sink.records[0].fields["shortcode"], "ABC123")

    def test_search_enqueues_hits_and_skips_misses(self) -> None:
        result, sink, fetcher = _run(
            {
                "input": {
                    "direct_urls": ["https://www.instagram.com/accounts/login/"],
                    "search": "food",
                    "search_limit": 2,
                    "results_limit": 1,
                }
            }
        )

        by_type = Counter(r.type.value for r in sink.records)
        self.assertEqual(by_type["search_result"], 2)
        self.assertEqual(by_type["hashtag"], 2)
        self.assertEqual(by_type["post"], 2)
        self.assertEqual(result.skipped, 1)
        self.assertEqual(
            [t.identifier for t in fetcher.fetched], ["food", "food", "foodlife"]
        )

    def test_request_cap_is_reported(self) -> None:
        result, _, _ = _run(
            {
                "input": {"direct_urls": ["a", "b", "c"], "results_limit": 1},
                "crawl": {"max_requests_per_crawl": 2},
            }
        )
        self.assertEqual(result.status, "request_cap_reached")
        self.assertEqual(result.handled, 2)


if __name__ == "__main__":
    unittest.main()
