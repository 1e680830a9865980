from __future__ import annotations

import json
import traceback
import uuid
from collections import Counter
from pathlib import Path
from threading import Lock
from typing import Any, Protocol, TextIO

from .records import utc_now_iso

_MESSAGE_LIMIT = 2000
_TRACEBACK_LIMIT = 12000


def _clip(text: str, limit: int) -> str:
    s = str(text or "")
    return s if len(s) <= limit else s[: max(0, limit - 1)] + "…"


def describe_exception(exc: BaseException) -> dict[str, str]:
    return {
        "type": type(exc).__name__,
        "message": _clip(str(exc), _MESSAGE_LIMIT),
        "traceback": _clip(
            "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            _TRACEBACK_LIMIT,
        ),
    }


class EventLogger(Protocol):
    def info(self, event: str, *, url: str | None = None, **data: Any) -> None: ...

    def warning(self, event: str, *, url: str | None = None, **data: Any) -> None: ...

    def error(self, event: str, *, url: str | None = None, **data: Any) -> None: ...

    def exception(
        self, event: str, *, exc: BaseException, url: str | None = None, **data: Any
    ) -> None: ...


class NullLogger:
    def info(self, event: str, *, url: str | None = None, **data: Any) -> None:
        return None

    def warning(self, event: str, *, url: str | None = None, **data: Any) -> None:
        return None

    def error(self, event: str, *, url: str | None = None, **data: Any) -> None:
        return None

    def exception(
        self, event: str, *, exc: BaseException, url: str | None = None, **data: Any
    ) -> None:
        return None


class RunLogger:
    """
    Append-only JSONL event log for one scrape run.

    Every line holds ts, level, event and session_id, plus run_id, url and a
    `data` object when present. Lines are counted per level so the run summary
    can report warning and error totals without re-reading the file.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        overwrite: bool = True,
        run_id: str | None = None,
        session_id: str | None = None,
    ) -> None:
        self._path = Path(path)
        self._overwrite = bool(overwrite)
        self._run_id = (run_id or "").strip() or None
        self._session_id = (session_id or "").strip() or uuid.uuid4().hex
        self._fp: TextIO | None = None
        self._lock = Lock()
        self._has_opened = False
        self.counts: Counter[str] = Counter()

    @classmethod
    def open(cls, path: str | Path, **kwargs: Any) -> "RunLogger":
        logger = cls(path, **kwargs)
        logger._open()
        return logger

    @property
    def path(self) -> Path:
        return self._path

    @property
    def session_id(self) -> str:
        return self._session_id

    def count(self, level: str) -> int:
        return int(self.counts.get(level.upper(), 0))

    def __enter__(self) -> "RunLogger":
        self._open()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            fp, self._fp = self._fp, None
        if fp is not None:
            fp.close()

    def info(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("INFO", event, url=url, **data)

    def warning(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("WARN", event, url=url, **data)

    def error(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("ERROR", event, url=url, **data)

    def exception(
        self, event: str, *, exc: BaseException, url: str | None = None, **data: Any
    ) -> None:
        self.log("ERROR", event, url=url, error=describe_exception(exc), **data)

    def log(self, level: str, event: str, *, url: str | None = None, **data: Any) -> None:
        lvl = (level or "").strip().upper() or "INFO"
        line: dict[str, Any] = {
            "ts": utc_now_iso(),
            "level": lvl,
            "event": (event or "").strip() or "event",
            "session_id": self._session_id,
        }
        if self._run_id:
            line["run_id"] = self._run_id
        if (url or "").strip():
            line["url"] = url.strip()  # type: ignore[union-attr]

        if data:
            line["data"] = data

        self._write(lvl, line)

    def _open(self) -> None:
        with self._lock:
            if self._fp is not None:
                return
            self._path.parent.mkdir(parents=True, exist_ok=True)
            # Only the first open of a run may truncate; later reopens append.
            mode = "w" if self._overwrite and not self._has_opened else "a"
            self._fp = self._path.open(mode, encoding="utf-8", newline="\n")
            self._has_opened = True

    def _write(self, level: str, line: dict[str, Any]) -> None:
        payload = json.dumps(
            line, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str
        )
        self._open()
        with self._lock:
            self.counts[level] += 1
            if self._fp is None:
                return
            self._fp.write(payload + "\n")
            self._fp.flush()
