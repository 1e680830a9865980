from __future__ import annotations

import json
from pathlib import Path
from threading import Lock
from typing import Any, Protocol, TextIO

from .records import NormalizedRecord


class RecordSink(Protocol):
    """Append-only record store. `append` must not block on durability."""

    def append(self, record: NormalizedRecord) -> None: ...

    def close(self) -> None: ...


class MemorySink:
    def __init__(self) -> None:
        self.records: list[NormalizedRecord] = []

    def append(self, record: NormalizedRecord) -> None:
        self.records.append(record)

    def items(self) -> list[dict[str, Any]]:
        return [r.to_item() for r in self.records]

    def close(self) -> None:
        return None


class JsonlSink:
    """
    Writes each record as one JSON line, flushed per line so a crash loses at most
    the record being written.
    """

    def __init__(self, path: str | Path, *, overwrite: bool = True) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._fp: TextIO | None = self._path.open(
            "w" if overwrite else "a", encoding="utf-8", newline="\n"
        )
        self._lock = Lock()
        self.count = 0

    @property
    def path(self) -> Path:
        return self._path

    def append(self, record: NormalizedRecord) -> None:
        payload = json.dumps(
            record.to_item(),
            ensure_ascii=False,
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )
        with self._lock:
            if self._fp is None:
                raise ValueError(f"sink already closed: {self._path}")
            self._fp.write(payload + "\n")
            self._fp.flush()
            self.count += 1

    def close(self) -> None:
        with self._lock:
            if self._fp is not None:
                self._fp.close()
                self._fp = None

    def __enter__(self) -> "JsonlSink":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()
