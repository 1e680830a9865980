from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Iterable
from urllib.parse import urlsplit, urlunsplit

from .config_schema import CrawlConfig
from .run_log import EventLogger, NullLogger
from .session import Session


def canonicalize_url(url: str) -> str:
    value = (url or "").strip()
    if not value:
        return ""

    try:
        parts = urlsplit(value)
    except ValueError:
        return value.rstrip("/")

    if not parts.scheme or not parts.netloc:
        return value.rstrip("/")

    scheme = parts.scheme.lower()
    netloc = parts.netloc.lower()
    if netloc.startswith("www."):
        netloc = netloc[4:]

    path = (parts.path or "").rstrip("/")
    if not path:
        path = "/"

    return urlunsplit((scheme, netloc, path, "", ""))


@dataclass(frozen=True)
class Request:
    url: str
    unique_key: str = ""

    def key(self) -> str:
        return (self.unique_key or "").strip() or canonicalize_url(self.url)


class RequestQueue:
    """
    FIFO queue of requests, deduped on unique key for the lifetime of the crawl.

    Search URLs carry their query in the query string, so callers should pass an
    explicit unique_key for them.
    """

    def __init__(self, initial: Iterable[Request | str] | None = None) -> None:
        self._queue: deque[Request] = deque()
        self._seen: set[str] = set()

        if initial is not None:
            self.add_many(initial)

    def __len__(self) -> int:
        return len(self._queue)

    def add(self, request: Request | str) -> bool:
        req = Request(url=request) if isinstance(request, str) else request
        if not (req.url or "").strip():
            return False

        key = req.key()
        if key in self._seen:
            return False

        self._seen.add(key)
        self._queue.append(req)
        return True

    def add_many(self, requests: Iterable[Request | str]) -> int:
        added = 0
        for r in requests:
            if self.add(r):
                added += 1
        return added

    def pop(self) -> Request | None:
        if not self._queue:
            return None
        return self._queue.popleft()


@dataclass
class CrawlStats:
    handled: int = 0
    failed: int = 0
    enqueued: int = 0
    stopped_by_request_cap: bool = False
    failures: list[str] = field(default_factory=list)


RequestHandler = Callable[[Request, Session], None]


class Crawler:
    """
    Sequential crawl loop: pop a request, hand it to the handler with the
    shared session, repeat until the queue drains or the request cap is hit.
    """

    def __init__(
        self,
        *,
        crawl: CrawlConfig,
        session: Session,
        logger: EventLogger | None = None,
    ) -> None:
        self._crawl = crawl
        self._session = session
        self._log = logger or NullLogger()
        self._queue = RequestQueue()
        self.stats = CrawlStats()

    @property
    def session(self) -> Session:
        return self._session

    def add_requests(self, requests: Iterable[Request | str]) -> int:
        added = self._queue.add_many(requests)
        self.stats.enqueued += added
        return added

    def run(self, handler: RequestHandler) -> CrawlStats:
        cap = int(self._crawl.max_requests_per_crawl)
        # Requests run one at a time; max_concurrency is recorded for the run log only.
        self._log.info(
            "crawl_started",
            queued=len(self._queue),
            max_requests=cap,
            max_concurrency=int(self._crawl.max_concurrency),
        )

        while True:
            if self.stats.handled >= cap:
                if len(self._queue):
                    self.stats.stopped_by_request_cap = True
                    self._log.warning(
                        "crawl_request_cap_reached",
                        max_requests=cap,
                        remaining=len(self._queue),
                    )
                break

            request = self._queue.pop()
            if request is None:
                break

            self.stats.handled += 1
            try:
                handler(request, self._session)
            except Exception as exc:
                self.stats.failed += 1
                self.stats.failures.append(request.url)
                self._log.exception("request_failed", exc=exc, url=request.url)

        self._log.info(
            "crawl_finished",
            handled=self.stats.handled,
            failed=self.stats.failed,
            enqueued=self.stats.enqueued,
        )
        return self.stats
