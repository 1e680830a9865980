"""Static-page strategy: fetch the public page and read its embedded app-data JSON."""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import quote

from bs4 import BeautifulSoup

from .classify import ContentType, ScrapeTarget
from .config_schema import FetchConfig
from .document import HASHTAG, LOCATION, MEDIA, USER, Document, FetchFailure, dig, edge_nodes
from .errors import FetchError
from .fetchers import SITE_ROOT, browser_headers, fetch_search_json
from .paginate import ChildSource, EdgeListSource, EmptySource
from .run_log import EventLogger, NullLogger
from .session import Session

APP_DATA_SCRIPT_ID = "__A_APP_DATA"
FEED_PATH = "nativeState.feed"


def page_url(target: ScrapeTarget) -> str:
    ident = quote(target.identifier, safe="")
    if target.type is ContentType.PROFILE:
        return f"{SITE_ROOT}/{ident}/?__a=1&__w=1"
    if target.type is ContentType.POST:
        return f"{SITE_ROOT}/p/{ident}/?__a=1&__w=1"
    if target.type is ContentType.HASHTAG:
        return f"{SITE_ROOT}/explore/tags/{ident}/"
    if target.type is ContentType.LOCATION:
        return f"{SITE_ROOT}/explore/locations/{ident}/"
    return target.url


def find_embedded_json(html: str) -> Any | None:
    """
    Return the parsed app-data blob, or None when the marker script is absent.

    Raises json.JSONDecodeError when the script is present but malformed.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    script = soup.find("script", id=APP_DATA_SCRIPT_ID)
    if script is None:
        return None
    text = (script.string or script.get_text() or "").strip()
    if not text:
        return None
    return json.loads(text)


def document_from_app_data(url: str, data: Any) -> Document:
    feed = dig(data, FEED_PATH, {})
    return Document(
        url=url,
        roots={
            USER: dig(feed, "user_detail.user"),
            MEDIA: dig(feed, "post.media"),
            HASHTAG: dig(feed, "hashtag"),
            LOCATION: dig(feed, "location"),
        },
        raw=feed,
    )


class HtmlFetcher:
    name = "html"

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

    def fetch(self, target: ScrapeTarget, session: Session) -> Document | FetchFailure:
        headers = browser_headers(self._fetch)

        if target.type is ContentType.SEARCH_RESULT:
            return fetch_search_json(
                target, session, search_type=self._search_type, headers=headers
            )

        url = page_url(target)
        try:
            response = session.get_text(url, headers=headers)
        except FetchError as e:
            return FetchFailure(target=target, cause=f"request_failed: {e}", status_code=e.status_code)

        if not response.is_success:
            return FetchFailure(target=target, cause="http_status", status_code=response.status_code)

        try:
            data = find_embedded_json(response.text)
        except json.JSONDecodeError:
            return FetchFailure(target=target, cause="malformed_embedded_json")

        if data is None:
            return FetchFailure(target=target, cause="no_embedded_data")

        return document_from_app_data(target.url, data)

    def child_source(
        self,
        target: ScrapeTarget,
        document: Document,
        session: Session,
        child_type: ContentType,
    ) -> ChildSource:
        feed = document.raw
        batch = int(self._fetch.page_size)

        if child_type is ContentType.COMMENT:
            nodes = edge_nodes(feed, "post.comments.edges") or edge_nodes(
                document.root(MEDIA), "edge_media_to_parent_comment.edges"
            )
            return EdgeListSource(nodes, batch_size=batch)

        if child_type is ContentType.POST:
            if target.type is ContentType.PROFILE:
                nodes = edge_nodes(feed, "timeline.edges") or edge_nodes(
                    document.root(USER), "edge_owner_to_timeline_media.edges"
                )
            elif target.type is ContentType.HASHTAG:
                nodes = edge_nodes(document.root(HASHTAG), "edge_hashtag_to_media.edges")
            elif target.type is ContentType.LOCATION:
                nodes = edge_nodes(document.root(LOCATION), "edge_location_to_media.edges")
            else:
                nodes = []
            return EdgeListSource(nodes, batch_size=batch)

        self._log.info("no_child_source", url=target.url, child_type=child_type.value)
        return EmptySource()
