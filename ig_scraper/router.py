from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from .classify import ClassificationMiss, ContentType, ScrapeTarget, classify
from .config_schema import AppConfig, FieldPriorityConfig
from .crawl import Request
from .document import Document, FetchFailure
from .extract import (
    comment_record_from_node,
    extract,
    is_video_node,
    post_record_from_node,
    search_hits,
    search_record_from_hit,
)
from .fetchers import Fetcher
from .paginate import ChildSource, EdgeListSource, ItemTransform, paginate
from .records import Extracted, ExtractResult, NormalizedRecord, ShapeMismatch
from .run_log import EventLogger, NullLogger
from .session import Session
from .sinks import RecordSink

_POST_PARENTS = frozenset({ContentType.PROFILE, ContentType.HASHTAG, ContentType.LOCATION})

EnqueueFn = Callable[[Iterable[str]], int]


@dataclass(frozen=True)
class RunSettings:
    """Caller-owned knobs threaded into the router at construction time."""

    results_limit: int
    results_type: str
    search_limit: int
    search_type: str
    field_priority: FieldPriorityConfig

    @classmethod
    def from_config(cls, config: AppConfig) -> "RunSettings":
        return cls(
            results_limit=config.input.effective_results_limit,
            results_type=config.input.results_type,
            search_limit=int(config.input.search_limit),
            search_type=config.input.search_type,
            field_priority=config.field_priority,
        )


@dataclass(frozen=True)
class HandleOutcome:
    url: str
    status: str
    records: int = 0
    children: int = 0
    cause: str | None = None


def child_type_for(target_type: ContentType, results_type: str) -> ContentType | None:
    if target_type in _POST_PARENTS and results_type in ("posts", "reels"):
        return ContentType.POST
    if target_type is ContentType.POST and results_type == "comments":
        return ContentType.COMMENT
    return None


class DispatchRouter:
    """
    Per-URL handler: classify, fetch, extract, append, then page through the
    requested child collection. Every failure is logged and contained here.
    """

    def __init__(
        self,
        *,
        fetcher: Fetcher,
        sink: RecordSink,
        settings: RunSettings,
        logger: EventLogger | None = None,
        enqueue: EnqueueFn | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._sink = sink
        self._settings = settings
        self._log = logger or NullLogger()
        self._enqueue = enqueue

    def __call__(self, request: Request, session: Session) -> None:
        self.handle(request.url, session)

    def handle(self, url: str, session: Session) -> HandleOutcome:
        classified = classify(url)
        if isinstance(classified, ClassificationMiss):
            self._log.info("target_skipped", url=url, reason=classified.reason)
            return HandleOutcome(url=url, status="skipped", cause=classified.reason)

        target = classified
        try:
            return self._handle_target(target, session)
        except Exception as exc:
            self._log.exception(
                "target_failed",
                exc=exc,
                url=url,
                type=target.type.value,
                identifier=target.identifier,
            )
            return HandleOutcome(url=url, status="error", cause=type(exc).__name__)

    def _handle_target(self, target: ScrapeTarget, session: Session) -> HandleOutcome:
        self._log.info(
            "target_started",
            url=target.url,
            type=target.type.value,
            identifier=target.identifier,
            strategy=self._fetcher.name,
        )

        fetched = self._fetcher.fetch(target, session)
        if isinstance(fetched, FetchFailure):
            self._log.warning(
                "fetch_failed",
                url=target.url,
                identifier=target.identifier,
                cause=fetched.cause,
                status=fetched.status_code,
            )
            return HandleOutcome(url=target.url, status="fetch_failed", cause=fetched.cause)

        if target.type is ContentType.SEARCH_RESULT:
            return self._handle_search(target, fetched)

        outcome = extract(fetched, target, priority=self._settings.field_priority)
        if isinstance(outcome, ShapeMismatch):
            self._log.warning(
                "shape_mismatch",
                url=target.url,
                identifier=target.identifier,
                reason=outcome.reason,
            )
            return HandleOutcome(url=target.url, status="shape_mismatch", cause=outcome.reason)

        self._emit(outcome.record)

        child_type = child_type_for(target.type, self._settings.results_type)
        children = 0
        if child_type is not None:
            source = self._fetcher.child_source(target, fetched, session, child_type)
            children = self._drain(
                target,
                source,
                self._settings.results_limit,
                self._child_transform(target, outcome.record, child_type),
            )

        return HandleOutcome(url=target.url, status="emitted", records=1, children=children)

    def _handle_search(self, target: ScrapeTarget, document: Document) -> HandleOutcome:
        hits = search_hits(document)
        if isinstance(hits, ShapeMismatch):
            self._log.warning("shape_mismatch", url=target.url, reason=hits.reason)
            return HandleOutcome(url=target.url, status="shape_mismatch", cause=hits.reason)

        search_type = self._settings.search_type
        discovered: list[str] = []

        def _transform(hit: Mapping[str, Any]) -> ExtractResult:
            result = search_record_from_hit(hit, query=target.identifier, search_type=search_type)
            if isinstance(result, Extracted):
                discovered.append(str(result.record.fields["url"]))
            return result

        found = self._drain(
            target,
            EdgeListSource(hits, batch_size=max(1, self._settings.search_limit)),
            self._settings.search_limit,
            _transform,
        )

        if discovered and self._enqueue is not None:
            added = self._enqueue(discovered)
            self._log.info("search_urls_enqueued", url=target.url, found=len(discovered), added=added)

        return HandleOutcome(url=target.url, status="emitted", records=0, children=found)

    def _child_transform(
        self,
        target: ScrapeTarget,
        parent: NormalizedRecord,
        child_type: ContentType,
    ) -> ItemTransform:
        priority = self._settings.field_priority

        if child_type is ContentType.COMMENT:
            return lambda node: comment_record_from_node(
                node, post_identifier=target.identifier, priority=priority
            )

        owner = str(parent.fields.get("username") or "") if target.type is ContentType.PROFILE else ""
        reels_only = self._settings.results_type == "reels"

        def _post(node: Mapping[str, Any]) -> ExtractResult:
            if reels_only and not is_video_node(node):
                return ShapeMismatch(type=ContentType.POST, reason="not_a_reel")
            return post_record_from_node(node, priority=priority, fallback_username=owner)

        return _post

    def _drain(
        self,
        target: ScrapeTarget,
        source: ChildSource,
        limit: int,
        transform: ItemTransform,
    ) -> int:
        count = 0
        for record in paginate(
            target.identifier,
            source,
            limit,
            transform=transform,
            on_skip=self._log_child_skip,
        ):
            self._emit(record)
            count += 1

        self._log.info(
            "children_collected",
            url=target.url,
            identifier=target.identifier,
            count=count,
            limit=limit,
            exhausted=bool(getattr(source, "exhausted", False)),
        )
        return count

    def _log_child_skip(self, parent_identifier: str, outcome: ExtractResult) -> None:
        reason = outcome.reason if isinstance(outcome, ShapeMismatch) else "unknown"
        self._log.info("child_skipped", parent=parent_identifier, reason=reason)

    def _emit(self, record: NormalizedRecord) -> None:
        self._sink.append(record)
        self._log.info("record_emitted", url=record.source_url, type=record.type.value)
