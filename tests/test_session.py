from __future__ import annotations

import unittest

import httpx

from ig_scraper.config_schema import FetchConfig
from ig_scraper.errors import FetchError
from ig_scraper.retry import RetryConfig, RetryEvent
from ig_scraper.session import Session


def _session(handler, *, attempts: int = 3, events: list[RetryEvent] | None = None) -> Session:
    sleeps: list[float] = []
    return Session(
        FetchConfig(),
        retry=RetryConfig(max_attempts=attempts, base_delay_seconds=0.0, jitter_ratio=0.0),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        on_retry=events.append if events is not None else None,
        sleep_fn=sleeps.append,
    )


class TestSession(unittest.TestCase):
    def test_retries_throttled_response_then_succeeds(self) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(429, headers={"Retry-After": "0"})
            return httpx.Response(200, json={"ok": True})

        events: list[RetryEvent] = []
        with _session(handler, events=events) as s:
            status, body = s.get_json("https://www.instagram.com/api/v1/x/")

        self.assertEqual(status, 200)
        self.assertEqual(body, {"ok": True})
        self.assertEqual(calls["n"], 2)
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].reason, "http_429")
        self.assertEqual(events[0].context_url, "https://www.instagram.com/api/v1/x/")

    def test_exhausted_retries_raise_fetch_error_with_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        with _session(handler, attempts=2) as s:
            with self.assertRaises(FetchError) as cm:
                s.get_text("https://www.instagram.com/natgeo/")
        self.assertEqual(cm.exception.status_code, 503)

    def test_client_errors_are_returned_not_retried(self) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(404, text="nope")

        with _session(handler) as s:
            status, body = s.get_json("https://www.instagram.com/api/v1/x/")
        self.assertEqual((status, body), (404, None))
        self.assertEqual(calls["n"], 1)

    def test_malformed_json_body_is_none(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        with _session(handler) as s:
            status, body = s.post_json("https://www.instagram.com/api/v1/x/", data={"a": 1})
        self.assertEqual((status, body), (200, None))

    def test_transport_errors_become_fetch_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("boom", request=request)

        with _session(handler, attempts=2) as s:
            with self.assertRaises(FetchError) as cm:
                s.get_text("https://www.instagram.com/natgeo/")
        self.assertIsNone(cm.exception.status_code)

    def test_cookie_jar_persists_and_is_readable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="", headers={"Set-Cookie": "csrftoken=tok123; Path=/"})

        with _session(handler) as s:
            self.assertIsNone(s.get_cookie("csrftoken"))
            s.get_text("https://www.instagram.com/")
            self.assertEqual(s.get_cookie("csrftoken"), "tok123")

    def test_same_cookie_on_several_domains_prefers_site_domain(self) -> None:
        with _session(lambda r: httpx.Response(200)) as s:
            s.http.cookies.set("csrftoken", "other", domain="cdn.example.com")
            s.http.cookies.set("csrftoken", "site", domain=".instagram.com")
            self.assertEqual(s.get_cookie("csrftoken"), "site")

    def test_body_that_is_not_utf8_is_none(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b'{"a": "\xff\xfe"}')

        with _session(handler) as s:
            status, body = s.get_json("https://www.instagram.com/api/v1/x/")
        self.assertEqual((status, body), (200, None))

    def test_close_stops_every_browser_handle_when_one_fails(self) -> None:
        closed: list[str] = []

        class _Handle:
            def __init__(self, name: str, fail: bool = False) -> None:
                self.name = name
                self.fail = fail

            def close(self) -> None:
                closed.append(self.name)
                if self.fail:
                    raise RuntimeError(f"{self.name} already gone")

        s = _session(lambda r: httpx.Response(200))
        for handle in (_Handle("playwright"), _Handle("browser", fail=True), _Handle("context")):
            s.keep_browser_handle(handle)

        with self.assertRaises(RuntimeError):
            s.close()
        self.assertEqual(closed, ["context", "browser", "playwright"])
        self.assertTrue(s.http.is_closed)

    def test_page_is_created_lazily_once(self) -> None:
        made: list[object] = []

        def factory(session: Session) -> object:
            page = object()
            made.append(page)
            return page

        s = Session(
            FetchConfig(),
            client=httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200))),
            page_factory=factory,
        )
        self.assertEqual(made, [])
        first = s.page()
        self.assertIs(s.page(), first)
        self.assertEqual(len(made), 1)
        s.close()


if __name__ == "__main__":
    unittest.main()
