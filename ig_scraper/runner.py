from __future__ import annotations

import sys
from collections import Counter
from dataclasses import dataclass, field
from importlib.metadata import PackageNotFoundError, version
from urllib.parse import quote_plus

from .config import config_sha256
from .config_schema import AppConfig
from .crawl import Crawler, Request
from .fetchers import SITE_ROOT, Fetcher, build_fetcher
from .records import NormalizedRecord
from .retry import RetryConfig, RetryEvent
from .router import DispatchRouter, RunSettings
from .run_log import EventLogger, NullLogger
from .session import Session
from .sinks import RecordSink


@dataclass(frozen=True)
class ScrapeResult:
    status: str
    handled: int
    records: int
    records_by_type: dict[str, int] = field(default_factory=dict)
    skipped: int = 0
    fetch_failures: int = 0
    shape_mismatches: int = 0
    errors: int = 0
    sink_dropped: int = 0


def _pkg_version(name: str) -> str:
    try:
        return version(name)
    except PackageNotFoundError:
        return "unknown"


def search_url(query: str) -> str:
    return f"{SITE_ROOT}/explore/search/keyword/?q={quote_plus(query)}"


def start_requests(config: AppConfig) -> list[Request]:
    requests = [Request(url=u) for u in config.input.direct_urls]
    query = (config.input.search or "").strip()
    if query:
        requests.append(Request(url=search_url(query), unique_key=f"search:{query.casefold()}"))
    return requests


class _CountingSink:
    def __init__(self, inner: RecordSink) -> None:
        self._inner = inner
        self.by_type: Counter[str] = Counter()

    def append(self, record: NormalizedRecord) -> None:
        self._inner.append(record)
        self.by_type[record.type.value] += 1

    def close(self) -> None:
        self._inner.close()


def run_scrape(
    config: AppConfig,
    *,
    sink: RecordSink,
    logger: EventLogger | None = None,
    fetcher: Fetcher | None = None,
    session: Session | None = None,
) -> ScrapeResult:
    """
    Crawl every direct URL (plus the search page, when a query is configured)
    and append the normalized records to `sink`.

    The sink is not closed here; the caller owns it.
    """
    log = logger or NullLogger()

    log.info(
        "run_started",
        config_sha256=config_sha256(config),
        strategy=config.fetch.strategy if fetcher is None else fetcher.name,
        versions={
            "python": sys.version.split()[0],
            "httpx": _pkg_version("httpx"),
            "pydantic": _pkg_version("pydantic"),
            "playwright": _pkg_version("playwright"),
        },
    )

    def _on_retry(ev: RetryEvent) -> None:
        log.warning("request_retry", url=ev.context_url, **ev.log_data())

    owns_session = session is None
    active_session = session or Session(
        config.fetch,
        retry=RetryConfig.for_request_retries(config.crawl.max_request_retries),
        on_retry=_on_retry,
    )
    active_fetcher = fetcher or build_fetcher(config, logger=log)
    counting = _CountingSink(sink)
    outcomes: Counter[str] = Counter()

    crawler = Crawler(crawl=config.crawl, session=active_session, logger=log)
    router = DispatchRouter(
        fetcher=active_fetcher,
        sink=counting,
        settings=RunSettings.from_config(config),
        logger=log,
        enqueue=crawler.add_requests,
    )

    def _handle(request: Request, sess: Session) -> None:
        outcome = router.handle(request.url, sess)
        outcomes[outcome.status] += 1

    crawler.add_requests(start_requests(config))
    try:
        stats = crawler.run(_handle)
    finally:
        if owns_session:
            active_session.close()

    result = ScrapeResult(
        status="request_cap_reached" if stats.stopped_by_request_cap else "completed",
        handled=stats.handled,
        records=sum(counting.by_type.values()),
        records_by_type=dict(counting.by_type),
        skipped=outcomes["skipped"],
        fetch_failures=outcomes["fetch_failed"],
        shape_mismatches=outcomes["shape_mismatch"],
        errors=outcomes["error"] + stats.failed,
        sink_dropped=int(getattr(sink, "dropped", 0) or 0),
    )

    log.info(
        "run_finished",
        status=result.status,
        handled=result.handled,
        records=result.records,
        records_by_type=result.records_by_type,
    )
    return result
