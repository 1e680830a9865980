from __future__ import annotations

import unittest

import httpx

from ig_scraper.config import config_from_mapping
from ig_scraper.config_schema import FetchConfig
from ig_scraper.fetchers import api_headers, browser_headers, build_fetcher
from ig_scraper.session import Session


class TestFetchers(unittest.TestCase):
    def test_build_fetcher_selects_strategy(self) -> None:
        for strategy in ("html", "api", "browser"):
            cfg = config_from_mapping({"input": {"search": "x"}, "fetch": {"strategy": strategy}})
            self.assertEqual(build_fetcher(cfg).name, strategy)

    def test_api_headers_add_csrf_token_when_present(self) -> None:
        fetch = FetchConfig(app_id="123")
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with Session(fetch, client=client) as s:
            headers = api_headers(fetch, s)
            self.assertEqual(headers["X-IG-App-ID"], "123")
            self.assertNotIn("X-CSRFToken", headers)

            s.http.cookies.set("csrftoken", "abc", domain="www.instagram.com")
            self.assertEqual(api_headers(fetch, s)["X-CSRFToken"], "abc")

    def test_browser_headers_use_configured_agent(self) -> None:
        headers = browser_headers(FetchConfig(user_agent="UA/1", accept_language="de-DE"))
        self.assertEqual(headers["User-Agent"], "UA/1")
        self.assertEqual(headers["Accept-Language"], "de-DE")


if __name__ == "__main__":
    unittest.main()
