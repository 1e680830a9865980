from __future__ import annotations

import json
from typing import Any, Callable, Mapping

from .classify import ContentType, ScrapeTarget
from .config_schema import FieldPriorityConfig
from .document import (
    HASHTAG,
    LOCATION,
    MEDIA,
    SEARCH,
    USER,
    Document,
    coerce_bool,
    coerce_float,
    coerce_int,
    coerce_str,
    dig,
    first_present,
)
from .records import Extracted, ExtractResult, NormalizedRecord, ShapeMismatch

SITE_ROOT = "https://www.instagram.com"

_MEDIA_TYPE_CODES = {1: "GraphImage", 2: "GraphVideo", 8: "GraphSidecar"}

Extractor = Callable[..., ExtractResult]


def post_url(shortcode: str) -> str:
    return f"{SITE_ROOT}/p/{shortcode}/"


def media_type_of(node: Mapping[str, Any]) -> str:
    typename = coerce_str(node.get("__typename"))
    if typename:
        return typename
    code = node.get("media_type")
    if isinstance(code, int) and not isinstance(code, bool) and code in _MEDIA_TYPE_CODES:
        return _MEDIA_TYPE_CODES[code]
    return coerce_str(code) or "image"


def is_video_node(node: Mapping[str, Any]) -> bool:
    if coerce_bool(node.get("is_video")):
        return True
    if coerce_str(node.get("product_type")).casefold() == "clips":
        return True
    return "video" in media_type_of(node).casefold()


def shortcode_of(node: Mapping[str, Any]) -> str:
    return coerce_str(node.get("shortcode")) or coerce_str(node.get("code"))


def post_fields(
    node: Mapping[str, Any],
    *,
    priority: FieldPriorityConfig,
    fallback_username: str = "",
) -> dict[str, Any]:
    """
    Normalized post fields from a media node of any API generation.

    Counts resolve through the configured priority lists, so an authoritative
    counter is preferred over its preview variant when both are present.
    """
    username = coerce_str(first_present(node, priority.owner)) or fallback_username
    return {
        "username": username,
        "caption": coerce_str(first_present(node, priority.caption)),
        "likes": coerce_int(first_present(node, priority.likes)),
        "comments": coerce_int(first_present(node, priority.comments)),
        "timestamp": coerce_int(first_present(node, priority.timestamp)),
        "mediaType": media_type_of(node),
        "shortcode": shortcode_of(node),
        "id": coerce_str(node.get("id")) or coerce_str(node.get("pk")),
    }


def extract_profile(
    document: Document, target: ScrapeTarget, *, priority: FieldPriorityConfig
) -> ExtractResult:
    user = document.root(USER)
    if user is None:
        return ShapeMismatch(type=ContentType.PROFILE, reason="missing_user_object")

    fields = {
        "username": coerce_str(user.get("username")) or target.identifier,
        "name": coerce_str(user.get("full_name")),
        "bio": coerce_str(user.get("biography")),
        "followers": coerce_int(first_present(user, priority.followers)),
        "following": coerce_int(first_present(user, priority.following)),
        "posts": coerce_int(first_present(user, priority.posts)),
        "isVerified": coerce_bool(user.get("is_verified")),
        "isPrivate": coerce_bool(user.get("is_private")),
        "id": coerce_str(user.get("id")) or coerce_str(user.get("pk")),
        "externalUrl": coerce_str(user.get("external_url")),
    }
    return Extracted(
        NormalizedRecord(type=ContentType.PROFILE, source_url=target.url, fields=fields)
    )


def extract_post(
    document: Document, target: ScrapeTarget, *, priority: FieldPriorityConfig
) -> ExtractResult:
    media = document.root(MEDIA)
    if media is None:
        return ShapeMismatch(type=ContentType.POST, reason="missing_media_object")

    fields = post_fields(media, priority=priority)
    if not fields["shortcode"]:
        fields["shortcode"] = target.identifier
    return Extracted(NormalizedRecord(type=ContentType.POST, source_url=target.url, fields=fields))


def extract_hashtag(
    document: Document, target: ScrapeTarget, *, priority: FieldPriorityConfig
) -> ExtractResult:
    tag = document.root(HASHTAG)
    if tag is None:
        return ShapeMismatch(type=ContentType.HASHTAG, reason="missing_hashtag_object")

    fields = {
        "name": coerce_str(tag.get("name")) or target.identifier,
        "postsCount": coerce_int(
            first_present(tag, ["media_count", "edge_hashtag_to_media.count"])
        ),
        "id": coerce_str(tag.get("id")),
    }
    return Extracted(
        NormalizedRecord(type=ContentType.HASHTAG, source_url=target.url, fields=fields)
    )


def _address_city(location: Mapping[str, Any]) -> str:
    raw = location.get("address_json")
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return ""
        return coerce_str(dig(parsed, "city_name"))
    return coerce_str(dig(raw, "city_name"))


def extract_location(
    document: Document, target: ScrapeTarget, *, priority: FieldPriorityConfig
) -> ExtractResult:
    location = document.root(LOCATION)
    if location is None:
        return ShapeMismatch(type=ContentType.LOCATION, reason="missing_location_object")

    city = coerce_str(first_present(location, ["city", "city_name", "location_city"]))
    fields = {
        "name": coerce_str(location.get("name")),
        "city": city or _address_city(location),
        "latitude": coerce_float(first_present(location, ["lat", "latitude"])),
        "longitude": coerce_float(first_present(location, ["lng", "longitude"])),
        "id": coerce_str(first_present(location, ["id", "pk", "location_id"])) or target.identifier,
        "slug": coerce_str(location.get("slug")),
        "postsCount": coerce_int(
            first_present(location, ["media_count", "edge_location_to_media.count"])
        ),
    }
    return Extracted(
        NormalizedRecord(type=ContentType.LOCATION, source_url=target.url, fields=fields)
    )


EXTRACTORS: Mapping[ContentType, Extractor] = {
    ContentType.PROFILE: extract_profile,
    ContentType.POST: extract_post,
    ContentType.HASHTAG: extract_hashtag,
    ContentType.LOCATION: extract_location,
}


def extract(
    document: Document, target: ScrapeTarget, *, priority: FieldPriorityConfig
) -> ExtractResult:
    extractor = EXTRACTORS.get(target.type)
    if extractor is None:
        return ShapeMismatch(type=target.type, reason="no_extractor_for_type")
    return extractor(document, target, priority=priority)


def post_record_from_node(
    node: Mapping[str, Any],
    *,
    priority: FieldPriorityConfig,
    fallback_username: str = "",
) -> ExtractResult:
    fields = post_fields(node, priority=priority, fallback_username=fallback_username)
    if not fields["shortcode"] and not fields["id"]:
        return ShapeMismatch(type=ContentType.POST, reason="missing_post_identity")
    url = post_url(fields["shortcode"]) if fields["shortcode"] else None
    return Extracted(NormalizedRecord(type=ContentType.POST, source_url=url, fields=fields))


def comment_record_from_node(
    node: Mapping[str, Any],
    *,
    post_identifier: str,
    priority: FieldPriorityConfig,
) -> ExtractResult:
    text = node.get("text")
    if text is None and node.get("owner") is None and node.get("user") is None:
        return ShapeMismatch(type=ContentType.COMMENT, reason="empty_comment_node")

    fields = {
        "postIdentifier": post_identifier,
        "username": coerce_str(first_present(node, priority.owner)),
        "text": coerce_str(text),
        "likes": coerce_int(first_present(node, priority.comment_likes)),
        "timestamp": coerce_int(first_present(node, priority.timestamp)),
        "id": coerce_str(node.get("id")) or coerce_str(node.get("pk")),
    }
    return Extracted(
        NormalizedRecord(type=ContentType.COMMENT, source_url=post_url(post_identifier), fields=fields)
    )


def search_hits(document: Document) -> list[Mapping[str, Any]] | ShapeMismatch:
    """
    Flatten a search payload into hits of the configured search type.
    """
    search = document.root(SEARCH)
    if search is None:
        return ShapeMismatch(type=ContentType.SEARCH_RESULT, reason="missing_search_object")

    search_type = coerce_str(search.get("search_type")) or "hashtag"
    key = {"user": "users", "hashtag": "hashtags", "place": "places"}.get(search_type, "hashtags")
    hits = dig(search, f"payload.{key}", [])
    if not isinstance(hits, list):
        return []
    return [h for h in hits if isinstance(h, Mapping)]


def search_record_from_hit(
    hit: Mapping[str, Any], *, query: str, search_type: str
) -> ExtractResult:
    name = ""
    url = ""
    extra: dict[str, Any] = {}

    if search_type == "user":
        name = coerce_str(dig(hit, "user.username"))
        url = f"{SITE_ROOT}/{name}/" if name else ""
        extra["fullName"] = coerce_str(dig(hit, "user.full_name"))
        extra["isVerified"] = coerce_bool(dig(hit, "user.is_verified"))
    elif search_type == "place":
        location_id = coerce_str(first_present(hit, ["place.location.pk", "place.location.id"]))
        name = coerce_str(first_present(hit, ["place.title", "place.location.name"]))
        slug = coerce_str(dig(hit, "place.slug"))
        if location_id:
            url = f"{SITE_ROOT}/explore/locations/{location_id}/"
            if slug:
                url = f"{url}{slug}/"
        extra["locationId"] = location_id
    else:
        name = coerce_str(dig(hit, "hashtag.name"))
        url = f"{SITE_ROOT}/explore/tags/{name}/" if name else ""
        extra["postsCount"] = coerce_int(dig(hit, "hashtag.media_count"))

    if not name or not url:
        return ShapeMismatch(type=ContentType.SEARCH_RESULT, reason="incomplete_search_hit")

    fields = {"query": query, "searchType": search_type, "name": name, "url": url, **extra}
    return Extracted(NormalizedRecord(type=ContentType.SEARCH_RESULT, source_url=url, fields=fields))
