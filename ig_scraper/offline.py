from __future__ import annotations

from typing import Any

from .classify import ContentType, ScrapeTarget
from .config_schema import FetchConfig
from .document import Document, FetchFailure
from .fetch_html import HtmlFetcher, document_from_app_data
from .fetchers import search_document
from .paginate import ChildSource
from .session import Session

_OFFLINE_POSTS = 15
_OFFLINE_COMMENTS = 5
_BASE_TS = 1735689600  # 2025-01-01T00:00:00Z


def _post_node(index: int, *, owner: str) -> dict[str, Any]:
    node: dict[str, Any] = {
        "id": str(1000 + index),
        "shortcode": f"OFF{index:03d}",
        "__typename": "GraphVideo" if index % 3 == 0 else "GraphImage",
        "owner": {"username": owner},
        "edge_media_to_caption": {"edges": [{"node": {"text": f"Offline caption {index}"}}]},
        "edge_media_to_comment": {"count": index % 4},
        "taken_at_timestamp": _BASE_TS + index * 3600,
    }
    # Older items only carry the preview counter.
    if index % 2 == 0:
        node["edge_liked_by"] = {"count": 10 * index}
    else:
        node["edge_media_preview_like"] = {"count": 10 * index}
    return node


def _comment_node(index: int) -> dict[str, Any]:
    return {
        "id": str(5000 + index),
        "text": f"Offline comment {index}",
        "owner": {"username": f"commenter{index}"},
        "edge_liked_by": {"count": index},
        "created_at": _BASE_TS + index * 60,
    }


def offline_app_data(target: ScrapeTarget) -> dict[str, Any]:
    ident = target.identifier
    posts = [{"node": _post_node(i, owner=ident)} for i in range(1, _OFFLINE_POSTS + 1)]
    feed: dict[str, Any] = {}

    if target.type is ContentType.PROFILE:
        feed["user_detail"] = {
            "user": {
                "id": "4242",
                "username": ident,
                "full_name": f"Offline {ident}",
                "biography": "Deterministic offline profile.",
                "follower_count": 1200,
                "following_count": 180,
                "media_count": _OFFLINE_POSTS,
                "is_verified": False,
                "is_private": False,
            }
        }
        feed["timeline"] = {"edges": posts}
    elif target.type is ContentType.POST:
        media = _post_node(1, owner="offline_owner")
        media["shortcode"] = ident
        feed["post"] = {
            "media": media,
            "comments": {
                "edges": [{"node": _comment_node(i)} for i in range(1, _OFFLINE_COMMENTS + 1)]
            },
        }
    elif target.type is ContentType.HASHTAG:
        feed["hashtag"] = {
            "id": "777",
            "name": ident,
            "media_count": 123456,
            "edge_hashtag_to_media": {"edges": posts},
        }
    elif target.type is ContentType.LOCATION:
        feed["location"] = {
            "id": ident,
            "name": "Offline Plaza",
            "lat": 52.52,
            "lng": 13.405,
            "address_json": '{"city_name": "Berlin"}',
            "edge_location_to_media": {"edges": posts},
        }

    return {"nativeState": {"feed": feed}}


def offline_search_payload(query: str) -> dict[str, Any]:
    return {
        "hashtags": [
            {"hashtag": {"name": f"{query}{suffix}", "media_count": 100 * n}}
            for n, suffix in enumerate(("", "life", "daily"), start=1)
        ],
        "users": [{"user": {"username": f"{query}_fan", "full_name": "Offline Fan"}}],
        "places": [
            {"place": {"title": "Offline Plaza", "slug": "offline-plaza", "location": {"pk": "99"}}}
        ],
    }


class OfflineFetcher:
    """
    Network-free fetcher for smoke checks.

    Serves the same embedded-data shape the static strategy parses, so the
    extraction and pagination paths are exercised end to end.
    """

    name = "offline"

    def __init__(self, fetch: FetchConfig | None = None, *, search_type: str = "hashtag") -> None:
        self._search_type = search_type
        self._html = HtmlFetcher(fetch or FetchConfig(), search_type=search_type)
        self.fetched: list[ScrapeTarget] = []

    def fetch(self, target: ScrapeTarget, session: Session) -> Document | FetchFailure:
        self.fetched.append(target)
        if target.type is ContentType.SEARCH_RESULT:
            return search_document(target, self._search_type, offline_search_payload(target.identifier))
        return document_from_app_data(target.url, offline_app_data(target))

    def child_source(
        self,
        target: ScrapeTarget,
        document: Document,
        session: Session,
        child_type: ContentType,
    ) -> ChildSource:
        return self._html.child_source(target, document, session, child_type)
