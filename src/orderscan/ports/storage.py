# orderscan/ports/storage.py
from __future__ import annotations

from typing import Protocol, Sequence
from ..domain.models import ChunkRec, OrderEvent


class EventSink(Protocol):
    """Port for the durable output artifact (e.g., CSV)."""

    def initialize(self) -> None:
        """Create or truncate the artifact and write its header."""

    def append(self, events: Sequence[OrderEvent]) -> None:
        """Persist one chunk's events, in order, durably."""


class ManifestSink(Protocol):
    """Port for appending run/chunk status records (e.g., JSONL manifest)."""

    def append(self, rec: ChunkRec) -> None:
        """Append a manifest record durably."""
