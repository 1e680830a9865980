from __future__ import annotations

import json
import unittest
from typing import Any

import httpx

from ig_scraper.classify import ContentType, ScrapeTarget, classify
from ig_scraper.config_schema import FetchConfig
from ig_scraper.document import MEDIA, USER, Document, FetchFailure
from ig_scraper.fetch_html import HtmlFetcher, find_embedded_json, page_url
from ig_scraper.paginate import EdgeListSource, EmptySource
from ig_scraper.retry import RetryConfig
from ig_scraper.session import Session


def _page(feed: dict[str, Any]) -> str:
    blob = json.dumps({"nativeState": {"feed": feed}})
    return (
        "<html><head><title>x</title></head><body>"
        f'<script type="application/json" id="__A_APP_DATA">{blob}</script>'
        "</body></html>"
    )


def _session(routes: dict[str, httpx.Response], seen: list[str] | None = None) -> Session:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(str(request.url))
        return routes.get(request.url.path, httpx.Response(404))

    return Session(
        FetchConfig(),
        retry=RetryConfig(max_attempts=1),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def _target(url: str) -> ScrapeTarget:
    t = classify(url)
    assert isinstance(t, ScrapeTarget)
    return t


class TestFindEmbeddedJson(unittest.TestCase):
    def test_absent_and_malformed(self) -> None:
        self.assertIsNone(find_embedded_json("<html><body>nothing</body></html>"))
        with self.assertRaises(json.JSONDecodeError):
            find_embedded_json('<script id="__A_APP_DATA">{not json</script>')

    def test_page_urls(self) -> None:
        self.assertEqual(
            page_url(_target("https://instagram.com/natgeo")),
            "https://www.instagram.com/natgeo/?__a=1&__w=1",
        )
        self.assertEqual(
            page_url(_target("https://instagram.com/p/ABC/")),
            "https://www.instagram.com/p/ABC/?__a=1&__w=1",
        )


class TestHtmlFetcher(unittest.TestCase):
    def setUp(self) -> None:
        self.fetcher = HtmlFetcher(FetchConfig(page_size=10))

    def test_post_document(self) -> None:
        html = _page({"post": {"media": {"shortcode": "ABC123", "edge_liked_by": {"count": 42}}}})
        seen: list[str] = []
        with _session({"/p/ABC123/": httpx.Response(200, text=html)}, seen) as s:
            doc = self.fetcher.fetch(_target("https://instagram.com/p/ABC123/"), s)

        self.assertIsInstance(doc, Document)
        assert isinstance(doc, Document)
        self.assertEqual(doc.root(MEDIA)["edge_liked_by"]["count"], 42)
        self.assertIsNone(doc.root(USER))
        self.assertIn("__a=1", seen[0])

    def test_missing_embedded_json_is_failure(self) -> None:
        with _session({"/p/ABC123/": httpx.Response(200, text="<html></html>")}) as s:
            out = self.fetcher.fetch(_target("https://instagram.com/p/ABC123/"), s)
        self.assertIsInstance(out, FetchFailure)
        assert isinstance(out, FetchFailure)
        self.assertEqual(out.cause, "no_embedded_data")

    def test_malformed_embedded_json_is_failure(self) -> None:
        body = '<script id="__A_APP_DATA">{oops</script>'
        with _session({"/natgeo/": httpx.Response(200, text=body)}) as s:
            out = self.fetcher.fetch(_target("https://instagram.com/natgeo"), s)
        assert isinstance(out, FetchFailure)
        self.assertEqual(out.cause, "malformed_embedded_json")

    def test_http_status_failure(self) -> None:
        with _session({}) as s:
            out = self.fetcher.fetch(_target("https://instagram.com/natgeo"), s)
        assert isinstance(out, FetchFailure)
        self.assertEqual(out.cause, "http_status")
        self.assertEqual(out.status_code, 404)

    def test_profile_timeline_child_source(self) -> None:
        edges = [{"node": {"shortcode": f"S{i}"}} for i in range(15)]
        html = _page({"user_detail": {"user": {"username": "natgeo"}}, "timeline": {"edges": edges}})
        target = _target("https://instagram.com/natgeo")
        with _session({"/natgeo/": httpx.Response(200, text=html)}) as s:
            doc = self.fetcher.fetch(target, s)
            assert isinstance(doc, Document)
            source = self.fetcher.child_source(target, doc, s, ContentType.POST)

        self.assertIsInstance(source, EdgeListSource)
        self.assertEqual(len(source.next_batch(100)), 10)
        self.assertEqual(len(source.next_batch(100)), 5)
        self.assertTrue(source.exhausted)

    def test_search_uses_topsearch(self) -> None:
        payload = {"hashtags": [{"hashtag": {"name": "food"}}]}
        seen: list[str] = []
        with _session({"/web/search/topsearch/": httpx.Response(200, json=payload)}, seen) as s:
            doc = self.fetcher.fetch(
                _target("https://www.instagram.com/explore/search/keyword/?q=food"), s
            )
        assert isinstance(doc, Document)
        self.assertEqual(doc.root("search")["payload"], payload)
        self.assertIn("query=food", seen[0])

    def test_unsupported_child_type_is_empty(self) -> None:
        target = _target("https://instagram.com/explore/tags/food/")
        doc = Document(url=target.url, roots={}, raw={})
        with _session({}) as s:
            source = self.fetcher.child_source(target, doc, s, ContentType.COMMENT)
        self.assertIsInstance(source, EdgeListSource)
        self.assertTrue(source.exhausted)

        source = self.fetcher.child_source(target, doc, None, ContentType.PROFILE)  # type: ignore[arg-type]
        self.assertIsInstance(source, EmptySource)


if __name__ == "__main__":
    unittest.main()
