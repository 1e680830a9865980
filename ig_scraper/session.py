from __future__ import annotations

from typing import Any, Callable, Mapping

import httpx

from .classify import SITE_DOMAIN
from .config_schema import FetchConfig
from .errors import FetchError
from .retry import OnRetryFn, RetryConfig, SleepFn, call_with_retries, parse_retry_after

CHROME_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-dev-shm-usage",
]

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class _RetryableStatus(Exception):
    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


def is_retryable_request_exception(exc: BaseException) -> tuple[bool, float | None, str | None]:
    """
    Retry policy for page and API requests:
    - connection errors and timeouts
    - HTTP 429 and 5xx
    """
    if isinstance(exc, _RetryableStatus):
        code = exc.response.status_code
        return True, parse_retry_after(exc.response.headers.get("retry-after")), f"http_{code}"

    if isinstance(exc, httpx.TimeoutException):
        return True, None, "timeout"

    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError)):
        return True, None, "network_error"

    return False, None, None


class Session:
    """
    Per-crawl session: a persistent cookie jar, retried HTTP calls and an
    optional browser page for the rendered strategy.
    """

    def __init__(
        self,
        fetch: FetchConfig,
        *,
        retry: RetryConfig | None = None,
        client: httpx.Client | None = None,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
        page_factory: Callable[["Session"], Any] | None = None,
    ) -> None:
        self._fetch = fetch
        self._retry = retry or RetryConfig()
        self._on_retry = on_retry
        self._sleep_fn = sleep_fn
        self._client = client or httpx.Client(
            timeout=float(fetch.request_timeout_secs),
            follow_redirects=True,
        )
        self._page_factory = page_factory
        self._page: Any = None
        self._browser_handles: list[Any] = []

    @property
    def fetch_config(self) -> FetchConfig:
        return self._fetch

    @property
    def http(self) -> httpx.Client:
        return self._client

    def get_cookie(self, name: str) -> str | None:
        """
        First non-empty cookie called `name`, site-domain cookies first.

        The jar can hold one name on several domains; `Cookies.get` raises then.
        """
        matches = [c for c in self._client.cookies.jar if c.name == name and c.value]
        matches.sort(key=lambda c: not (c.domain or "").lstrip(".").endswith(SITE_DOMAIN))
        if matches:
            return str(matches[0].value)

        if self._page is not None:
            for cookie in self._page.context.cookies():
                if cookie.get("name") == name and cookie.get("value"):
                    return str(cookie["value"])
        return None

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Send a request, retrying transport errors and throttling responses.

        Non-retryable error statuses are returned to the caller as-is; exhausted
        retries raise FetchError.
        """

        def _do_request() -> httpx.Response:
            response = self._client.request(
                method,
                url,
                headers=dict(headers or {}),
                params=dict(params) if params else None,
                data=dict(data) if data else None,
            )
            if response.status_code in _RETRYABLE_STATUS:
                raise _RetryableStatus(response)
            return response

        try:
            return call_with_retries(
                _do_request,
                cfg=self._retry,
                is_retryable=is_retryable_request_exception,
                operation=f"http.{method.lower()}",
                on_retry=self._on_retry,
                sleep_fn=self._sleep_fn,
                context_url=url,
            )
        except _RetryableStatus as e:
            raise FetchError(
                f"HTTP {e.response.status_code} for {url}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(f"Request failed for {url}: {e}") from e

    def get_text(self, url: str, *, headers: Mapping[str, str] | None = None) -> httpx.Response:
        return self.request("GET", url, headers=headers)

    def get_json(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> tuple[int, Any]:
        """
        GET a JSON endpoint. Returns (status, body); body is None when the
        status is not a success or the payload is not valid JSON.
        """
        response = self.request("GET", url, headers=headers, params=params)
        return _json_body(response)

    def post_json(
        self,
        url: str,
        *,
        data: Mapping[str, Any],
        headers: Mapping[str, str] | None = None,
    ) -> tuple[int, Any]:
        response = self.request("POST", url, headers=headers, data=data)
        return _json_body(response)

    def page(self) -> Any:
        """Return the session's browser page, launching the browser on first use."""
        if self._page is None:
            factory = self._page_factory or _launch_playwright_page
            self._page = factory(self)
        return self._page

    def keep_browser_handle(self, handle: Any) -> None:
        self._browser_handles.append(handle)

    def close(self) -> None:
        errors: list[Exception] = []
        for handle in reversed(self._browser_handles):
            stop = getattr(handle, "stop", None) or getattr(handle, "close")
            try:
                stop()
            except Exception as e:
                errors.append(e)
        self._browser_handles.clear()
        self._page = None
        self._client.close()
        if errors:
            raise errors[0]

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()


def _json_body(response: httpx.Response) -> tuple[int, Any]:
    if not response.is_success:
        return response.status_code, None
    try:
        return response.status_code, response.json()
    except ValueError:
        # Covers JSONDecodeError and bodies that are not valid UTF-8.
        return response.status_code, None


def _launch_playwright_page(session: Session) -> Any:
    from playwright.sync_api import sync_playwright

    cfg = session.fetch_config
    pw = sync_playwright().start()
    session.keep_browser_handle(pw)

    browser = pw.chromium.launch(headless=cfg.headless, args=CHROME_ARGS)
    session.keep_browser_handle(browser)

    context = browser.new_context(
        storage_state=cfg.storage_state or None,
        user_agent=cfg.user_agent,
        viewport={"width": 1366, "height": 900},
        locale="en-US",
    )
    session.keep_browser_handle(context)

    page = context.new_page()
    page.set_default_navigation_timeout(cfg.navigation_timeout_secs * 1000)
    return page
