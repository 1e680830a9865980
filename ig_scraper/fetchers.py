from __future__ import annotations

from typing import Any, Protocol

from .classify import ContentType, ScrapeTarget
from .config_schema import AppConfig, FetchConfig
from .document import SEARCH, Document, FetchFailure
from .errors import FetchError
from .paginate import ChildSource
from .run_log import EventLogger
from .session import Session

SITE_ROOT = "https://www.instagram.com"
TOPSEARCH_URL = f"{SITE_ROOT}/web/search/topsearch/"


class Fetcher(Protocol):
    """
    One retrieval strategy. Every strategy produces the same Document shape, so
    extraction and pagination never need to know which one is active.
    """

    name: str

    def fetch(self, target: ScrapeTarget, session: Session) -> Document | FetchFailure: ...

    def child_source(
        self,
        target: ScrapeTarget,
        document: Document,
        session: Session,
        child_type: ContentType,
    ) -> ChildSource: ...


def browser_headers(fetch: FetchConfig) -> dict[str, str]:
    return {
        "User-Agent": fetch.user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": fetch.accept_language,
        "Referer": f"{SITE_ROOT}/",
    }


def api_headers(fetch: FetchConfig, session: Session) -> dict[str, str]:
    headers = {
        "User-Agent": fetch.user_agent,
        "Accept": "*/*",
        "Accept-Language": fetch.accept_language,
        "Referer": f"{SITE_ROOT}/",
        "X-IG-App-ID": fetch.app_id,
        "X-Requested-With": "XMLHttpRequest",
    }
    token = session.get_cookie("csrftoken")
    if token:
        headers["X-CSRFToken"] = token
    return headers


def search_document(target: ScrapeTarget, search_type: str, payload: Any) -> Document:
    return Document(
        url=target.url,
        roots={
            SEARCH: {
                "query": target.identifier,
                "search_type": search_type,
                "payload": payload if isinstance(payload, dict) else {},
            }
        },
        raw=payload,
    )


def fetch_search_json(
    target: ScrapeTarget,
    session: Session,
    *,
    search_type: str,
    headers: dict[str, str],
) -> Document | FetchFailure:
    """Run a blended top-search query over HTTP."""
    params = {"context": "blended", "query": target.identifier, "include_reel": "true"}
    try:
        status, body = session.get_json(TOPSEARCH_URL, headers=headers, params=params)
    except FetchError as e:
        return FetchFailure(target=target, cause=f"request_failed: {e}", status_code=e.status_code)

    if body is None:
        cause = "malformed_json" if 200 <= status < 300 else "http_status"
        return FetchFailure(target=target, cause=cause, status_code=status)

    return search_document(target, search_type, body)


def build_fetcher(config: AppConfig, *, logger: EventLogger | None = None) -> Fetcher:
    strategy = config.fetch.strategy
    search_type = config.input.search_type

    if strategy == "api":
        from .fetch_api import ApiFetcher

        return ApiFetcher(config.fetch, search_type=search_type, logger=logger)

    if strategy == "browser":
        from .fetch_browser import BrowserFetcher

        return BrowserFetcher(config.fetch, search_type=search_type, logger=logger)

    from .fetch_html import HtmlFetcher

    return HtmlFetcher(config.fetch, search_type=search_type, logger=logger)
