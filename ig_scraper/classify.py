from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from urllib.parse import parse_qs, urlsplit

SITE_DOMAIN = "instagram.com"

# First path segments that belong to the site itself rather than to a user.
_RESERVED_SEGMENTS = frozenset(
    {"about", "accounts", "api", "direct", "explore", "reels", "stories", "tv", "web"}
)


class ContentType(str, Enum):
    POST = "post"
    PROFILE = "profile"
    HASHTAG = "hashtag"
    LOCATION = "location"
    COMMENT = "comment"
    SEARCH_RESULT = "search_result"


@dataclass(frozen=True)
class ScrapeTarget:
    url: str
    type: ContentType
    identifier: str


@dataclass(frozen=True)
class ClassificationMiss:
    url: str
    reason: str


def _split(url: str):
    value = (url or "").strip()
    if value and "://" not in value:
        value = f"https://{value}"
    return urlsplit(value)


def _host_matches(netloc: str) -> bool:
    host = (netloc or "").split("@")[-1].split(":")[0].casefold()
    return host == SITE_DOMAIN or host.endswith(f".{SITE_DOMAIN}")


def _segment_after(path: str, marker: str) -> str:
    rest = path.split(marker, 1)[1]
    return rest.split("/", 1)[0].strip()


def _segments(path: str) -> list[str]:
    return [s for s in path.strip("/").split("/") if s]


def classify(url: str) -> ScrapeTarget | ClassificationMiss:
    """
    Map a URL onto a content type and its identifier.

    Rules are checked in priority order and the first match wins. Query strings,
    fragments and trailing slashes never leak into identifiers.
    """
    try:
        parts = _split(url)
    except ValueError:
        return ClassificationMiss(url=url, reason="unparseable_url")

    path = parts.path or ""

    for marker in ("/p/", "/reel/"):
        if marker in path:
            code = _segment_after(path, marker)
            if code:
                return ScrapeTarget(url=url, type=ContentType.POST, identifier=code)
            return ClassificationMiss(url=url, reason="missing_shortcode")

    if "/explore/tags/" in path:
        segs = _segments(path.split("/explore/tags/", 1)[1])
        if segs:
            return ScrapeTarget(url=url, type=ContentType.HASHTAG, identifier=segs[-1])
        return ClassificationMiss(url=url, reason="missing_tag")

    if "/explore/locations/" in path:
        location_id = _segment_after(path, "/explore/locations/")
        if location_id:
            return ScrapeTarget(url=url, type=ContentType.LOCATION, identifier=location_id)
        return ClassificationMiss(url=url, reason="missing_location_id")

    if "/explore/search/" in path:
        query = (parse_qs(parts.query).get("q") or [""])[0].strip()
        if query:
            return ScrapeTarget(url=url, type=ContentType.SEARCH_RESULT, identifier=query)
        return ClassificationMiss(url=url, reason="missing_search_query")

    if _host_matches(parts.netloc) and "/explore/" not in f"{path}/":
        segs = _segments(path)
        if not segs:
            return ClassificationMiss(url=url, reason="no_path")
        username = segs[0].lstrip("@")
        if username and username.casefold() not in _RESERVED_SEGMENTS:
            return ScrapeTarget(url=url, type=ContentType.PROFILE, identifier=username)
        return ClassificationMiss(url=url, reason="reserved_path")

    return ClassificationMiss(url=url, reason="unrecognized_url")
