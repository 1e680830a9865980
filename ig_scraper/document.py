from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from .classify import ScrapeTarget

USER = "user"
MEDIA = "media"
HASHTAG = "hashtag"
LOCATION = "location"
SEARCH = "search"


@dataclass(frozen=True)
class Document:
    """
    Strategy-neutral payload handed to extractors.

    `roots` holds the type-level objects (user, media, hashtag, location, search)
    in whatever field vocabulary the source used; extractors resolve fields
    through priority lists. `raw` keeps the strategy-specific payload so the
    same fetcher can build child sources from it later.
    """

    url: str
    roots: Mapping[str, Any] = field(default_factory=dict)
    raw: Any = None

    def root(self, name: str) -> Mapping[str, Any] | None:
        value = self.roots.get(name)
        return value if isinstance(value, Mapping) else None


@dataclass(frozen=True)
class FetchFailure:
    target: ScrapeTarget
    cause: str
    status_code: int | None = None


def dig(obj: Any, path: str, default: Any = None) -> Any:
    """
    Read a dotted path ("a.b.0.c") without raising on missing keys or indexes.
    """
    cur = obj
    for part in (path or "").split("."):
        if not part:
            continue
        if isinstance(cur, Mapping):
            if part not in cur:
                return default
            cur = cur[part]
        elif isinstance(cur, Sequence) and not isinstance(cur, (str, bytes)):
            try:
                cur = cur[int(part)]
            except (ValueError, IndexError):
                return default
        else:
            return default
    return default if cur is None else cur


def first_present(obj: Any, paths: Sequence[str]) -> Any:
    for path in paths:
        value = dig(obj, path)
        if value is not None:
            return value
    return None


def coerce_str(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def coerce_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        return parse_count(value)
    return 0


def coerce_float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return 0.0
    return 0.0


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().casefold() in {"true", "1", "yes"}
    if isinstance(value, (int, float)):
        return value != 0
    return False


_SUFFIXES = {"k": 1_000, "m": 1_000_000, "b": 1_000_000_000}


def parse_count(text: str) -> int:
    """
    Parse display counts such as "1,234", "12.5K" or "3M" into integers.
    """
    s = (text or "").strip().replace(",", "").replace(" ", "").casefold()
    if not s:
        return 0

    mult = 1
    if s[-1] in _SUFFIXES:
        mult = _SUFFIXES[s[-1]]
        s = s[:-1]

    try:
        return int(round(float(s) * mult))
    except ValueError:
        return 0


def edge_nodes(obj: Any, path: str) -> list[Mapping[str, Any]]:
    """
    Return the `node` objects of a GraphQL-style edge list, skipping malformed edges.
    """
    edges = dig(obj, path)
    if not isinstance(edges, Sequence) or isinstance(edges, (str, bytes)):
        return []

    out: list[Mapping[str, Any]] = []
    for edge in edges:
        node = edge.get("node") if isinstance(edge, Mapping) else None
        if isinstance(node, Mapping):
            out.append(node)
    return out
