from __future__ import annotations

import queue
import threading
from typing import Any

from apify_client import ApifyClient
from apify_client.errors import ApifyApiError

from .errors import SinkError
from .records import NormalizedRecord
from .retry import OnRetryFn, RetryConfig, SleepFn, call_with_retries
from .run_log import EventLogger, NullLogger

_STOP = object()

_DEFAULT_APIFY_RETRY = RetryConfig(
    # Mirrors the Apify client's documented default behavior: ~8 retries after the first attempt.
    max_attempts=9,
    base_delay_seconds=0.5,
    max_delay_seconds=20.0,
    jitter_ratio=0.0,
    retry_after_cap_seconds=0.0,
)


def _extract_status_code(exc: BaseException) -> int | None:
    for attr in ("status_code", "statusCode", "status", "http_status", "httpStatusCode"):
        val = getattr(exc, attr, None)
        if val is None:
            continue
        try:
            return int(val)
        except (TypeError, ValueError):
            continue
    return None


def is_retryable_apify_exception(exc: BaseException) -> tuple[bool, float | None, str | None]:
    """
    Apify retry policy aligned with client behavior:
    - network/connection errors
    - HTTP 500+
    - HTTP 429
    """
    if isinstance(exc, ApifyApiError):
        code = _extract_status_code(exc)
        reason = f"http_{code}" if code is not None else "http_status"
        if code == 429 or (isinstance(code, int) and code >= 500):
            return True, None, reason
        return False, None, reason

    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True, None, "network_error"

    name = type(exc).__name__.casefold()
    if "timeout" in name or "connect" in name:
        return True, None, "network_error"

    return False, None, None


class ApifyDatasetSink:
    """
    Buffers records and pushes them to an Apify dataset in batches.

    Full batches are pushed, with retries, by one background worker, so append()
    never waits on the network. flush() and close() wait for the worker. Push
    failures are logged and counted in `dropped`; read `pushed` and `dropped`
    after close().
    """

    def __init__(
        self,
        token: str,
        dataset: str,
        *,
        batch_size: int = 50,
        client: ApifyClient | None = None,
        retry: RetryConfig | None = None,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
        logger: EventLogger | None = None,
    ) -> None:
        name = (dataset or "").strip()
        if not name:
            raise SinkError("dataset must be a non-empty dataset id or name")
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self._dataset = name
        self._dataset_id: str | None = None
        self._batch_size = int(batch_size)
        self._retry = retry or _DEFAULT_APIFY_RETRY
        self._on_retry = on_retry
        self._sleep_fn = sleep_fn
        self._log = logger or NullLogger()
        self._buffer: list[dict[str, Any]] = []
        self._queue: queue.Queue[Any] = queue.Queue()
        self._worker: threading.Thread | None = None
        self._closed = False
        self.pushed = 0
        self.dropped = 0

        if client is not None:
            self._client = client
        else:
            # Disable client-level retries so we can apply our own policy uniformly.
            self._client = ApifyClient(token=token, max_retries=0)

    def _resolve_dataset_id(self) -> str:
        if self._dataset_id is not None:
            return self._dataset_id

        def _do_get_or_create() -> Any:
            return self._client.datasets().get_or_create(name=self._dataset)

        result = call_with_retries(
            _do_get_or_create,
            cfg=self._retry,
            is_retryable=is_retryable_apify_exception,
            operation=f"apify.datasets.get_or_create:{self._dataset}",
            on_retry=self._on_retry,
            sleep_fn=self._sleep_fn,
        )
        dataset_id = str((result or {}).get("id") or "").strip()
        if not dataset_id:
            raise SinkError(f"Apify dataset response missing id: {result}")

        self._dataset_id = dataset_id
        return dataset_id

    def append(self, record: NormalizedRecord) -> None:
        """Buffer a record; full batches go to the push worker without waiting."""
        if self._closed:
            raise SinkError("append on a closed dataset sink")
        self._buffer.append(record.to_item())
        if len(self._buffer) >= self._batch_size:
            self._submit()

    def flush(self) -> None:
        """Hand the buffer to the worker and wait until every queued batch is done."""
        self._submit()
        self._queue.join()

    def close(self) -> None:
        if self._closed:
            return
        self.flush()
        self._closed = True
        if self._worker is not None:
            self._queue.put(_STOP)
            self._worker.join()
            self._worker = None

    def _submit(self) -> None:
        if not self._buffer:
            return
        batch, self._buffer = self._buffer, []
        if self._worker is None:
            self._worker = threading.Thread(target=self._drain, name="apify-dataset-push", daemon=True)
            self._worker.start()
        self._queue.put(batch)

    def _drain(self) -> None:
        while True:
            batch = self._queue.get()
            try:
                if batch is _STOP:
                    return
                self._push(batch)
            finally:
                self._queue.task_done()

    def _push(self, batch: list[dict[str, Any]]) -> None:
        try:
            dataset_id = self._resolve_dataset_id()
            call_with_retries(
                lambda: self._client.dataset(dataset_id).push_items(batch),
                cfg=self._retry,
                is_retryable=is_retryable_apify_exception,
                operation=f"apify.dataset.push_items:{dataset_id}",
                on_retry=self._on_retry,
                sleep_fn=self._sleep_fn,
            )
        except (ApifyApiError, SinkError) as e:
            self.dropped += len(batch)
            self._log.error("sink_push_failed", dataset=self._dataset, items=len(batch), cause=str(e))
            return
        except Exception as e:
            self.dropped += len(batch)
            self._log.exception("sink_push_failed", exc=e, dataset=self._dataset, items=len(batch))
            return

        self.pushed += len(batch)
        self._log.info("sink_pushed", dataset=self._dataset, items=len(batch))
