"""Rendered-page strategy: drive a Playwright page and read fields from the live DOM."""

from __future__ import annotations

import re
from collections import deque
from datetime import datetime
from typing import Any, Callable, Mapping, Sequence
from urllib.parse import quote

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .classify import ContentType, ScrapeTarget
from .config_schema import FetchConfig
from .document import (
    HASHTAG,
    LOCATION,
    MEDIA,
    USER,
    Document,
    FetchFailure,
    coerce_str,
    parse_count,
)
from .fetchers import SITE_ROOT, TOPSEARCH_URL, search_document
from .paginate import ChildSource, EmptySource, RawItem
from .run_log import EventLogger, NullLogger
from .session import Session

MARKERS: Mapping[ContentType, str] = {
    ContentType.PROFILE: "header",
    ContentType.POST: "article",
    ContentType.HASHTAG: "main",
    ContentType.LOCATION: "main",
}

GRID_LINK = "a[href*='/p/'], a[href*='/reel/']"
COMMENT_ROW = "article ul li"

_DESCRIPTION_COUNTS = re.compile(
    r"(?P<followers>[\d.,]+[KMB]?)\s+Followers,\s*(?P<following>[\d.,]+[KMB]?)\s+Following,"
    r"\s*(?P<posts>[\d.,]+[KMB]?)\s+Posts",
    re.IGNORECASE,
)
_POSTS_COUNT = re.compile(r"([\d.,]+[KMB]?)\s+posts", re.IGNORECASE)
_LIKES_COUNT = re.compile(r"([\d.,]+[KMB]?)\s+likes?", re.IGNORECASE)
_COMMENTS_COUNT = re.compile(r"([\d.,]+[KMB]?)\s+comments?", re.IGNORECASE)
_SHORTCODE_IN_HREF = re.compile(r"/(?:p|reel)/([^/?#]+)")


def target_page_url(target: ScrapeTarget) -> str:
    ident = quote(target.identifier, safe="")
    if target.type is ContentType.PROFILE:
        return f"{SITE_ROOT}/{ident}/"
    if target.type is ContentType.POST:
        return f"{SITE_ROOT}/p/{ident}/"
    if target.type is ContentType.HASHTAG:
        return f"{SITE_ROOT}/explore/tags/{ident}/"
    if target.type is ContentType.LOCATION:
        return f"{SITE_ROOT}/explore/locations/{ident}/"
    return target.url


def _text(scope: Any, selector: str) -> str:
    node = scope.query_selector(selector)
    if node is None:
        return ""
    return coerce_str(node.inner_text())


def _attr(scope: Any, selector: str, name: str) -> str:
    node = scope.query_selector(selector)
    if node is None:
        return ""
    return coerce_str(node.get_attribute(name))


def _meta(page: Any, prop: str) -> str:
    return _attr(page, f"meta[property='{prop}']", "content") or _attr(
        page, f"meta[name='{prop}']", "content"
    )


def _epoch_seconds(iso_value: str) -> int | None:
    value = (iso_value or "").strip()
    if not value:
        return None
    try:
        return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp())
    except ValueError:
        return None


def read_profile(page: Any, target: ScrapeTarget) -> dict[str, Any] | None:
    header = page.query_selector("header")
    if header is None:
        return None

    user: dict[str, Any] = {
        "username": _text(header, "h2") or target.identifier,
        "full_name": _text(header, "section span[dir='auto']"),
        "biography": _text(header, "section h1") or _text(header, "section > div > span"),
        "is_verified": header.query_selector("svg[aria-label='Verified']") is not None,
        "is_private": page.query_selector("h2:has-text('This account is private')") is not None,
    }

    match = _DESCRIPTION_COUNTS.search(_meta(page, "og:description") or _meta(page, "description"))
    if match:
        user["follower_count"] = parse_count(match.group("followers"))
        user["following_count"] = parse_count(match.group("following"))
        user["media_count"] = parse_count(match.group("posts"))
    return user


def read_post(page: Any, target: ScrapeTarget) -> dict[str, Any] | None:
    article = page.query_selector("article")
    if article is None:
        return None

    media: dict[str, Any] = {
        "shortcode": target.identifier,
        "owner": {"username": _text(article, "header a[href^='/']")},
        "caption": _text(article, "h1"),
        "__typename": "GraphVideo" if article.query_selector("video") else "GraphImage",
    }

    likes_text = _text(article, "section a[href$='/liked_by/'] span") or _text(
        article, "section span:has-text('like')"
    )
    likes = _LIKES_COUNT.search(likes_text) or re.match(r"\s*([\d.,]+[KMB]?)\s*$", likes_text)
    if likes:
        media["like_count"] = parse_count(likes.group(1))

    comments = _COMMENTS_COUNT.search(_meta(page, "og:description"))
    if comments:
        media["comment_count"] = parse_count(comments.group(1))

    taken_at = _epoch_seconds(_attr(article, "time[datetime]", "datetime"))
    if taken_at is not None:
        media["taken_at"] = taken_at
    return media


def read_hashtag(page: Any, target: ScrapeTarget) -> dict[str, Any] | None:
    main = page.query_selector("main")
    if main is None:
        return None

    tag: dict[str, Any] = {"name": target.identifier}
    count = _POSTS_COUNT.search(_text(main, "header") or _meta(page, "og:description"))
    if count:
        tag["media_count"] = parse_count(count.group(1))
    return tag


def read_location(page: Any, target: ScrapeTarget) -> dict[str, Any] | None:
    main = page.query_selector("main")
    if main is None:
        return None

    return {
        "id": target.identifier,
        "name": _text(main, "h1") or _meta(page, "og:title"),
        "city": _meta(page, "place:location:locality"),
        "lat": _meta(page, "place:location:latitude"),
        "lng": _meta(page, "place:location:longitude"),
    }


_READERS: Mapping[ContentType, tuple[str, Callable[[Any, ScrapeTarget], dict[str, Any] | None]]] = {
    ContentType.PROFILE: (USER, read_profile),
    ContentType.POST: (MEDIA, read_post),
    ContentType.HASHTAG: (HASHTAG, read_hashtag),
    ContentType.LOCATION: (LOCATION, read_location),
}


def read_grid_items(page: Any, *, owner: str = "") -> list[RawItem]:
    out: list[RawItem] = []
    for link in page.query_selector_all(GRID_LINK):
        href = coerce_str(link.get_attribute("href"))
        match = _SHORTCODE_IN_HREF.search(href)
        if not match:
            continue
        item: dict[str, Any] = {
            "shortcode": match.group(1),
            "__typename": "GraphVideo" if "/reel/" in href else "GraphImage",
            "caption": _attr(link, "img", "alt"),
        }
        if owner:
            item["owner"] = {"username": owner}
        out.append(item)
    return out


def read_comment_rows(page: Any) -> list[RawItem]:
    out: list[RawItem] = []
    for row in page.query_selector_all(COMMENT_ROW):
        username = _text(row, "h3") or _text(row, "a[href^='/']")
        text = _text(row, "span[dir='auto']")
        if not username and not text:
            continue
        item: dict[str, Any] = {"owner": {"username": username}, "text": text}
        created = _epoch_seconds(_attr(row, "time[datetime]", "datetime"))
        if created is not None:
            item["created_at"] = created
        likes = _LIKES_COUNT.search(_text(row, "button span"))
        if likes:
            item["comment_like_count"] = parse_count(likes.group(1))
        out.append(item)
    return out


def _grid_key(item: RawItem) -> str:
    return coerce_str(item.get("shortcode"))


def _comment_key(item: RawItem) -> str:
    owner = item.get("owner") or {}
    username = owner.get("username") if isinstance(owner, Mapping) else ""
    return f"{username}|{item.get('created_at', '')}|{item.get('text', '')}"


class ScrollSource:
    """
    Child source that reveals items by scrolling the live page.

    One advance is scroll, settle, then re-read of the content height and DOM.
    Two consecutive reads with the same height mean the page has nothing more
    to load, even if the caller still wants items.
    """

    def __init__(
        self,
        page: Any,
        *,
        read_items: Callable[[Any], Sequence[RawItem]],
        key: Callable[[RawItem], str],
        settle_ms: int,
        max_rounds: int = 200,
        logger: EventLogger | None = None,
    ) -> None:
        self._page = page
        self._read_items = read_items
        self._key = key
        self._settle_ms = int(settle_ms)
        self._max_rounds = int(max_rounds)
        self._log = logger or NullLogger()
        self._seen: set[str] = set()
        self._pending: deque[RawItem] = deque()
        self._last_height: int | None = None
        self._stalled = False
        self.rounds = 0
        self.exhausted = False

    def _height(self) -> int:
        value = self._page.evaluate("() => document.body.scrollHeight")
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    def _collect(self) -> int:
        fresh = 0
        for item in self._read_items(self._page):
            key = self._key(item)
            if not key or key in self._seen:
                continue
            self._seen.add(key)
            self._pending.append(item)
            fresh += 1
        return fresh

    def _advance(self) -> None:
        while self.rounds < self._max_rounds:
            if self.rounds > 0:
                self._page.evaluate("() => window.scrollTo(0, document.body.scrollHeight)")
                self._page.wait_for_timeout(self._settle_ms)

            height = self._height()
            if self.rounds > 0 and height == self._last_height:
                self._stalled = True
            self._last_height = height
            self.rounds += 1

            if self._collect() or self._stalled:
                return

        self._stalled = True

    def next_batch(self, max_items: int) -> Sequence[RawItem]:
        if self.exhausted or max_items <= 0:
            return []

        if not self._pending and not self._stalled:
            try:
                self._advance()
            except PlaywrightError as e:
                self._log.warning("scroll_failed", cause=str(e))
                self._stalled = True

        out: list[RawItem] = []
        while self._pending and len(out) < max_items:
            out.append(self._pending.popleft())

        if self._stalled and not self._pending:
            self.exhausted = True
        return out


class BrowserFetcher:
    name = "browser"

    def __init__(
        self,
        fetch: FetchConfig,
        *,
        search_type: str = "hashtag",
        logger: EventLogger | None = None,
    ) -> None:
        self._fetch = fetch
        self._search_type = search_type
        self._log = logger or NullLogger()

    def _fetch_search(self, target: ScrapeTarget, page: Any) -> Document | FetchFailure:
        response = page.request.get(
            TOPSEARCH_URL,
            params={"context": "blended", "query": target.identifier, "include_reel": "true"},
            timeout=self._fetch.request_timeout_secs * 1000,
        )
        if not response.ok:
            return FetchFailure(target=target, cause="http_status", status_code=response.status)
        try:
            body = response.json()
        except ValueError:
            return FetchFailure(target=target, cause="malformed_json", status_code=response.status)
        return search_document(target, self._search_type, body)

    def fetch(self, target: ScrapeTarget, session: Session) -> Document | FetchFailure:
        try:
            page = session.page()

            if target.type is ContentType.SEARCH_RESULT:
                return self._fetch_search(target, page)

            reader = _READERS.get(target.type)
            if reader is None:
                return FetchFailure(target=target, cause="unsupported_type")
            root_name, read = reader

            response = page.goto(
                target_page_url(target),
                wait_until="domcontentloaded",
                timeout=self._fetch.navigation_timeout_secs * 1000,
            )
            if response is not None and response.status >= 400:
                return FetchFailure(target=target, cause="http_status", status_code=response.status)

            page.wait_for_selector(
                MARKERS[target.type],
                timeout=self._fetch.element_timeout_secs * 1000,
            )
            root = read(page, target)
        except PlaywrightTimeoutError:
            return FetchFailure(target=target, cause="timeout")
        except PlaywrightError as e:
            return FetchFailure(target=target, cause=f"browser_error: {e}")

        if root is None:
            return FetchFailure(target=target, cause="missing_root_element")
        return Document(url=target.url, roots={root_name: root}, raw=page)

    def child_source(
        self,
        target: ScrapeTarget,
        document: Document,
        session: Session,
        child_type: ContentType,
    ) -> ChildSource:
        page = document.raw
        if page is None:
            return EmptySource()

        if child_type is ContentType.POST:
            owner = target.identifier if target.type is ContentType.PROFILE else ""
            return ScrollSource(
                page,
                read_items=lambda p: read_grid_items(p, owner=owner),
                key=_grid_key,
                settle_ms=self._fetch.scroll_settle_ms,
                logger=self._log,
            )

        if child_type is ContentType.COMMENT:
            return ScrollSource(
                page,
                read_items=read_comment_rows,
                key=_comment_key,
                settle_ms=self._fetch.scroll_settle_ms,
                logger=self._log,
            )

        self._log.info("no_child_source", url=target.url, child_type=child_type.value)
        return EmptySource()
