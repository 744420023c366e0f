"""Sequence generator for new column IDs."""

from __future__ import annotations

from collections.abc import Iterator


class Sequencer:
    """Hands out consecutive integers from ``start`` for ``count`` values."""

    def __init__(self, start: int, count: int) -> None:
        self.start = start
        self.count = count
        self.current = start
        self.index = 0  # position in a server-side sequencer queue

    def next(self) -> int | None:
        """Return the next value, or None once the range is used up."""
        if self.current < self.start + self.count:
            value = self.current
            self.current += 1
            return value
        return None

    def is_fully_subscribed(self) -> bool:
        """True when every value in the range has been handed out."""
        return not self.current < self.start + self.count

    def maximum(self) -> int:
        """The largest value this sequencer will hand out."""
        return self.start + self.count - 1

    def __iter__(self) -> Iterator[int]:
        while (value := self.next()) is not None:
            yield value