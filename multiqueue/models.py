from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Generic, NamedTuple, TypeVar

from .codec import Codec

Q = TypeVar("Q")
J = TypeVar("J")


class Dispatch(NamedTuple, Generic[Q, J]):
    """A job handed out by pop_any, with the queue it came from."""

    queue: Q
    job: J


class QueueDepths(Mapping[Q, int]):
    """Read-only per-queue counts keyed by queue id.

    Lookups go through the canonical encoding, so dict and list queue ids
    work as keys even though they are unhashable.
    """

    def __init__(self, counts: dict[str, int], codec: Codec):
        self._counts = counts
        self._codec = codec

    def __getitem__(self, queue: Q) -> int:
        return self._counts[self._codec.encode(queue)]

    def __iter__(self) -> Iterator[Q]:
        for encoded in self._counts:
            yield self._codec.decode(encoded)

    def __len__(self) -> int:
        return len(self._counts)

    def encoded(self) -> dict[str, int]:
        """Get counts keyed by canonical encoding."""
        return dict(self._counts)

    def total(self) -> int:
        """Sum of counts across all queues."""
        return sum(self._counts.values())

    def __repr__(self) -> str:
        return f"QueueDepths({self._counts!r})"
