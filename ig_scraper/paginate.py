from __future__ import annotations

from typing import Any, Callable, Iterator, Mapping, Protocol, Sequence

from .records import Extracted, ExtractResult, NormalizedRecord

RawItem = Mapping[str, Any]
ItemTransform = Callable[[RawItem], ExtractResult]


class ChildSource(Protocol):
    """
    One parent's child collection, read forward only.

    `next_batch` returns at most `max_items` raw items; an empty batch or
    `exhausted == True` means the source has nothing more to give.
    """

    exhausted: bool

    def next_batch(self, max_items: int) -> Sequence[RawItem]: ...


class EdgeListSource:
    """Child source over an already-fetched list, served in fixed-size slices."""

    def __init__(self, items: Sequence[RawItem], *, batch_size: int = 12) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._items = list(items)
        self._offset = 0
        self._batch_size = int(batch_size)
        self.exhausted = not self._items
        self.calls = 0

    def next_batch(self, max_items: int) -> Sequence[RawItem]:
        self.calls += 1
        if self.exhausted or max_items <= 0:
            return []

        size = min(self._batch_size, int(max_items))
        batch = self._items[self._offset : self._offset + size]
        self._offset += len(batch)
        if self._offset >= len(self._items):
            self.exhausted = True
        return batch


class EmptySource:
    exhausted = True

    def next_batch(self, max_items: int) -> Sequence[RawItem]:
        return []


def paginate(
    parent_identifier: str,
    source: ChildSource,
    limit: int,
    *,
    transform: ItemTransform,
    on_skip: Callable[[str, ExtractResult], None] | None = None,
) -> Iterator[NormalizedRecord]:
    """
    Lazily emit child records for one parent until `limit` or source exhaustion.

    The stop condition is checked before every pull, so the source is never asked
    for more than is still needed. Items whose transform reports a shape mismatch
    are skipped and do not count toward the limit.
    """
    if limit <= 0:
        return

    emitted = 0
    while emitted < limit and not source.exhausted:
        batch = source.next_batch(limit - emitted)
        if not batch:
            return

        for raw in batch:
            outcome = transform(raw)
            if not isinstance(outcome, Extracted):
                if on_skip is not None:
                    on_skip(parent_identifier, outcome)
                continue

            yield outcome.record
            emitted += 1
            if emitted >= limit:
                return
