"""JSON API strategy: call the web app's private endpoints with session headers."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence
from urllib.parse import quote

from .classify import ContentType, ScrapeTarget
from .config_schema import FetchConfig
from .document import HASHTAG, LOCATION, MEDIA, USER, Document, FetchFailure, coerce_str, dig
from .errors import FetchError
from .fetchers import SITE_ROOT, api_headers, fetch_search_json
from .paginate import ChildSource, EmptySource, RawItem
from .run_log import EventLogger, NullLogger
from .session import Session

API_ROOT = f"{SITE_ROOT}/api/v1"

_SHORTCODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"


def shortcode_to_media_id(shortcode: str) -> str:
    """
    Decode a post shortcode into the numeric media id the API expects.

    Shortcodes are base64url digits; anything past the first 11 characters
    belongs to private-share suffixes and is ignored.
    """
    code = (shortcode or "").strip()[:11]
    if not code:
        raise ValueError("shortcode must be non-empty")

    media_id = 0
    for ch in code:
        idx = _SHORTCODE_ALPHABET.find(ch)
        if idx < 0:
            raise ValueError(f"invalid shortcode character: {ch!r}")
        media_id = media_id * 64 + idx
    return str(media_id)


@dataclass(frozen=True)
class CursorPage:
    items: Sequence[RawItem] = ()
    next_cursor: str | None = None
    more: bool = False


PageLoader = Callable[[str | None], CursorPage]


class ApiCursorSource:
    """
    Child source that walks an API cursor one page per pull.

    A page can be larger than what the caller still needs; the remainder is
    buffered so no second request is made until it has been consumed.
    """

    def __init__(self, load_page: PageLoader, *, initial: CursorPage | None = None) -> None:
        self._load_page = load_page
        self._buffer: deque[RawItem] = deque()
        self._cursor: str | None = None
        self._no_more = False
        self._started = False
        self.pages_loaded = 0

        if initial is not None:
            self._accept(initial)
            self._started = True

    @property
    def exhausted(self) -> bool:
        return self._no_more and not self._buffer

    def _accept(self, page: CursorPage) -> None:
        self._buffer.extend(i for i in page.items if isinstance(i, Mapping))
        self._cursor = page.next_cursor
        if not page.more or not page.next_cursor:
            self._no_more = True

    def next_batch(self, max_items: int) -> Sequence[RawItem]:
        if max_items <= 0:
            return []

        if not self._buffer and not self._no_more:
            page = self._load_page(self._cursor if self._started else None)
            self._started = True
            self.pages_loaded += 1
            self._accept(page)

        out: list[RawItem] = []
        while self._buffer and len(out) < max_items:
            out.append(self._buffer.popleft())
        return out


def _section_medias(sections: Any) -> list[RawItem]:
    out: list[RawItem] = []
    if not isinstance(sections, list):
        return out
    for section in sections:
        for entry in dig(section, "layout_content.medias", []) or []:
            media = dig(entry, "media")
            if isinstance(media, Mapping):
                out.append(media)
    return out


class ApiFetcher:
    name = "api"

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

    def _get(
        self,
        target: ScrapeTarget,
        session: Session,
        url: str,
        params: Mapping[str, Any] | None = None,
    ) -> Any | FetchFailure:
        try:
            status, body = session.get_json(
                url, headers=api_headers(self._fetch, session), params=params
            )
        except FetchError as e:
            return FetchFailure(target=target, cause=f"request_failed: {e}", status_code=e.status_code)

        if body is None:
            cause = "malformed_json" if 200 <= status < 300 else "http_status"
            return FetchFailure(target=target, cause=cause, status_code=status)
        return body

    def _post(
        self,
        session: Session,
        url: str,
        data: Mapping[str, Any],
    ) -> Any | None:
        try:
            status, body = session.post_json(
                url, data=data, headers=api_headers(self._fetch, session)
            )
        except FetchError as e:
            self._log.warning("child_page_failed", url=url, cause=str(e))
            return None
        if body is None:
            self._log.warning("child_page_failed", url=url, status=status)
        return body

    def fetch(self, target: ScrapeTarget, session: Session) -> Document | FetchFailure:
        if target.type is ContentType.SEARCH_RESULT:
            return fetch_search_json(
                target,
                session,
                search_type=self._search_type,
                headers=api_headers(self._fetch, session),
            )

        if target.type is ContentType.PROFILE:
            body = self._get(
                target,
                session,
                f"{API_ROOT}/users/web_profile_info/",
                {"username": target.identifier},
            )
            if isinstance(body, FetchFailure):
                return body
            return Document(url=target.url, roots={USER: dig(body, "data.user")}, raw=body)

        if target.type is ContentType.POST:
            try:
                media_id = shortcode_to_media_id(target.identifier)
            except ValueError:
                return FetchFailure(target=target, cause="invalid_shortcode")
            body = self._get(target, session, f"{API_ROOT}/media/{media_id}/info/")
            if isinstance(body, FetchFailure):
                return body
            return Document(url=target.url, roots={MEDIA: dig(body, "items.0")}, raw=body)

        if target.type is ContentType.HASHTAG:
            body = self._get(
                target,
                session,
                f"{API_ROOT}/tags/web_info/",
                {"tag_name": target.identifier},
            )
            if isinstance(body, FetchFailure):
                return body
            return Document(url=target.url, roots={HASHTAG: dig(body, "data")}, raw=body)

        if target.type is ContentType.LOCATION:
            body = self._get(
                target,
                session,
                f"{API_ROOT}/locations/web_info/",
                {"location_id": target.identifier},
            )
            if isinstance(body, FetchFailure):
                return body
            info = dig(body, "native_location_data.location_info")
            return Document(url=target.url, roots={LOCATION: info}, raw=body)

        return FetchFailure(target=target, cause="unsupported_type")

    def child_source(
        self,
        target: ScrapeTarget,
        document: Document,
        session: Session,
        child_type: ContentType,
    ) -> ChildSource:
        if child_type is ContentType.COMMENT:
            try:
                media_id = coerce_str(dig(document.root(MEDIA), "pk")) or shortcode_to_media_id(
                    target.identifier
                )
            except ValueError:
                return EmptySource()
            return ApiCursorSource(load_page=self._comment_loader(target, session, media_id))

        if child_type is ContentType.POST and target.type is ContentType.PROFILE:
            user_id = coerce_str(dig(document.root(USER), "id"))
            if not user_id:
                self._log.warning("no_child_source", url=target.url, cause="missing_user_id")
                return EmptySource()
            return ApiCursorSource(load_page=self._user_feed_loader(target, session, user_id))

        if child_type is ContentType.POST and target.type is ContentType.HASHTAG:
            recent = dig(document.raw, "data.recent", {})
            ident = quote(target.identifier, safe="")
            return ApiCursorSource(
                load_page=self._sections_loader(session, f"{API_ROOT}/tags/{ident}/sections/"),
                initial=CursorPage(
                    items=_section_medias(dig(recent, "sections")),
                    next_cursor=coerce_str(dig(recent, "next_max_id")) or None,
                    more=bool(dig(recent, "more_available", False)),
                ),
            )

        if child_type is ContentType.POST and target.type is ContentType.LOCATION:
            recent = dig(document.raw, "native_location_data.recent", {})
            ident = quote(target.identifier, safe="")
            return ApiCursorSource(
                load_page=self._sections_loader(
                    session, f"{API_ROOT}/locations/{ident}/sections/"
                ),
                initial=CursorPage(
                    items=_section_medias(dig(recent, "sections")),
                    next_cursor=coerce_str(dig(recent, "next_max_id")) or None,
                    more=bool(dig(recent, "more_available", False)),
                ),
            )

        self._log.info("no_child_source", url=target.url, child_type=child_type.value)
        return EmptySource()

    def _user_feed_loader(
        self, target: ScrapeTarget, session: Session, user_id: str
    ) -> PageLoader:
        url = f"{API_ROOT}/feed/user/{user_id}/"

        def _load(cursor: str | None) -> CursorPage:
            params: dict[str, Any] = {"count": int(self._fetch.page_size)}
            if cursor:
                params["max_id"] = cursor
            body = self._get(target, session, url, params)
            if isinstance(body, FetchFailure):
                self._log.warning("child_page_failed", url=url, cause=body.cause, status=body.status_code)
                return CursorPage()
            items = dig(body, "items", [])
            return CursorPage(
                items=items if isinstance(items, list) else [],
                next_cursor=coerce_str(dig(body, "next_max_id")) or None,
                more=bool(dig(body, "more_available", False)),
            )

        return _load

    def _comment_loader(
        self, target: ScrapeTarget, session: Session, media_id: str
    ) -> PageLoader:
        url = f"{API_ROOT}/media/{media_id}/comments/"

        def _load(cursor: str | None) -> CursorPage:
            params: dict[str, Any] = {"can_support_threading": "true", "permalink_enabled": "false"}
            if cursor:
                params["min_id"] = cursor
            body = self._get(target, session, url, params)
            if isinstance(body, FetchFailure):
                self._log.warning("child_page_failed", url=url, cause=body.cause, status=body.status_code)
                return CursorPage()
            comments = dig(body, "comments", [])
            more = bool(
                dig(body, "has_more_headload_comments", False)
                or dig(body, "has_more_comments", False)
            )
            return CursorPage(
                items=comments if isinstance(comments, list) else [],
                next_cursor=coerce_str(dig(body, "next_min_id")) or None,
                more=more,
            )

        return _load

    def _sections_loader(self, session: Session, url: str) -> PageLoader:
        def _load(cursor: str | None) -> CursorPage:
            data: dict[str, Any] = {"tab": "recent", "page": 1}
            if cursor:
                data["max_id"] = cursor
            body = self._post(session, url, data)
            if body is None:
                return CursorPage()
            return CursorPage(
                items=_section_medias(dig(body, "sections")),
                next_cursor=coerce_str(dig(body, "next_max_id")) or None,
                more=bool(dig(body, "more_available", False)),
            )

        return _load
