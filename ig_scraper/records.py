from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Union

from .classify import ContentType

Scalar = Union[str, int, float, bool, None]

REQUIRED_FIELDS: Mapping[ContentType, tuple[str, ...]] = MappingProxyType(
    {
        ContentType.PROFILE: (
            "username",
            "name",
            "bio",
            "followers",
            "following",
            "posts",
            "isVerified",
            "isPrivate",
        ),
        ContentType.POST: ("username", "caption", "likes", "comments", "timestamp", "mediaType"),
        ContentType.COMMENT: ("postIdentifier", "username", "text", "likes", "timestamp"),
        ContentType.HASHTAG: ("name",),
        ContentType.LOCATION: ("name", "city", "latitude", "longitude"),
        ContentType.SEARCH_RESULT: ("query", "searchType", "name", "url"),
    }
)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class NormalizedRecord:
    """A write-once extraction result, handed to the sink as a flat dataset item."""

    type: ContentType
    source_url: str | None
    fields: Mapping[str, Scalar]
    scraped_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        missing = [k for k in REQUIRED_FIELDS[self.type] if k not in self.fields]
        if missing:
            raise ValueError(f"{self.type.value} record missing fields: {', '.join(missing)}")
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def to_item(self) -> dict[str, Any]:
        item: dict[str, Any] = {"type": self.type.value}
        if self.source_url:
            item["url"] = self.source_url
        for key, value in self.fields.items():
            item.setdefault(key, value)
        item["scrapedAt"] = self.scraped_at
        return item


@dataclass(frozen=True)
class Extracted:
    record: NormalizedRecord


@dataclass(frozen=True)
class ShapeMismatch:
    """The payload parsed, but the root object this content type needs is absent."""

    type: ContentType
    reason: str


ExtractResult = Union[Extracted, ShapeMismatch]
