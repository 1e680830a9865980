from __future__ import annotations

import re
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

DEFAULT_RESULTS_LIMIT = 10
SITE_ROOT = "https://www.instagram.com/"


def _normalize_url_list(values: list[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()

    for item in values:
        raw = (item or "").strip()
        if not raw:
            continue
        url = raw if "instagram.com" in raw.casefold() else f"{SITE_ROOT}{raw.lstrip('/@')}"
        key = url.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(url)

    return out


def _normalize_path_list(values: list[str]) -> list[str]:
    out = [p.strip() for p in values if (p or "").strip()]
    if not out:
        raise ValueError("must contain at least one field path")
    return out


def _validate_env_var_name(value: str) -> str:
    name = (value or "").strip()
    if not _ENV_NAME_RE.fullmatch(name):
        raise ValueError("must be a valid environment variable name")
    return name


PositiveInt = Annotated[int, Field(ge=1)]
NonNegativeInt = Annotated[int, Field(ge=0)]
PathList = Annotated[list[str], Field(min_length=1)]


class InputConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    direct_urls: list[str] = Field(default_factory=list)
    search: str | None = None
    search_type: Literal["hashtag", "user", "place"] = "hashtag"
    search_limit: PositiveInt = 10
    results_type: Literal["posts", "reels", "comments"] = "posts"
    results_limit: NonNegativeInt = DEFAULT_RESULTS_LIMIT  # 0 falls back to the default

    @field_validator("direct_urls")
    @classmethod
    def _normalize_direct_urls(cls, v: list[str]) -> list[str]:
        return _normalize_url_list(v)

    @field_validator("search")
    @classmethod
    def _normalize_search(cls, v: str | None) -> str | None:
        q = (v or "").strip()
        return q or None

    @model_validator(mode="after")
    def _targets_or_search_required(self) -> "InputConfig":
        if not self.direct_urls and not self.search:
            raise ValueError("provide at least one Instagram URL in direct_urls or a search query")
        return self

    @property
    def effective_results_limit(self) -> int:
        return int(self.results_limit) or DEFAULT_RESULTS_LIMIT


class FetchConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    strategy: Literal["html", "api", "browser"] = "html"
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )
    accept_language: str = "en-US,en;q=0.5"
    app_id: str = "936619743392459"
    request_timeout_secs: PositiveInt = 30
    navigation_timeout_secs: PositiveInt = 30
    element_timeout_secs: PositiveInt = 10
    scroll_settle_ms: NonNegativeInt = 1500
    page_size: PositiveInt = 12
    headless: bool = True
    storage_state: str | None = None


class FieldPriorityConfig(BaseModel):
    """Dotted-path fallback chains; the first path holding a non-null value wins."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    likes: PathList = Field(
        default_factory=lambda: [
            "edge_liked_by.count",
            "edge_media_preview_like.count",
            "like_count",
        ]
    )
    comments: PathList = Field(
        default_factory=lambda: [
            "edge_media_to_comment.count",
            "edge_media_preview_comment.count",
            "comment_count",
        ]
    )
    followers: PathList = Field(
        default_factory=lambda: ["follower_count", "edge_followed_by.count"]
    )
    following: PathList = Field(default_factory=lambda: ["following_count", "edge_follow.count"])
    posts: PathList = Field(
        default_factory=lambda: ["media_count", "edge_owner_to_timeline_media.count"]
    )
    caption: PathList = Field(
        default_factory=lambda: [
            "edge_media_to_caption.edges.0.node.text",
            "caption.text",
            "caption",
        ]
    )
    timestamp: PathList = Field(
        default_factory=lambda: ["taken_at_timestamp", "taken_at", "created_at"]
    )
    comment_likes: PathList = Field(
        default_factory=lambda: ["edge_liked_by.count", "comment_like_count"]
    )
    owner: PathList = Field(default_factory=lambda: ["owner.username", "user.username"])

    @field_validator(
        "likes",
        "comments",
        "followers",
        "following",
        "posts",
        "caption",
        "timestamp",
        "comment_likes",
        "owner",
    )
    @classmethod
    def _strip_paths(cls, v: list[str]) -> list[str]:
        return _normalize_path_list(v)


class CrawlConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_requests_per_crawl: PositiveInt = 100
    max_request_retries: NonNegativeInt = 5
    max_concurrency: PositiveInt = 1


class SinkConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["jsonl", "apify"] = "jsonl"
    dataset_id: str | None = None
    token_env: str = "APIFY_TOKEN"
    batch_size: PositiveInt = 50

    @field_validator("token_env")
    @classmethod
    def _token_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)

    @model_validator(mode="after")
    def _apify_needs_dataset(self) -> "SinkConfig":
        if self.kind == "apify" and not (self.dataset_id or "").strip():
            raise ValueError("dataset_id is required when kind is 'apify'")
        return self


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    input: InputConfig
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    field_priority: FieldPriorityConfig = Field(default_factory=FieldPriorityConfig)
    crawl: CrawlConfig = Field(default_factory=CrawlConfig)
    sink: SinkConfig = Field(default_factory=SinkConfig)
