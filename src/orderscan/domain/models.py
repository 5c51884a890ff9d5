from __future__ import annotations
from dataclasses import dataclass
from .value_types import Address, EventKind, Topic0, TxHash, Status

@dataclass(slots=True, frozen=True)
class BlockRange:
    start: int
    end: int
    def span(self) -> int: return self.end - self.start + 1

@dataclass(slots=True, frozen=True)
class EventSignatures:
    take_order: Topic0
    clear: Topic0

    def for_kind(self, kind: EventKind) -> Topic0:
        return self.take_order if kind is EventKind.TAKE_ORDER else self.clear

@dataclass(slots=True, frozen=True)
class EventFilter:
    contract_address: Address
    topic0s: tuple[Topic0, ...]

@dataclass(slots=True, frozen=True)
class RawLog:
    address: Address
    topics: tuple[Topic0, ...]
    block_number: int
    tx_hash: TxHash
    log_index: int
    block_timestamp: int | None = None

@dataclass(slots=True, frozen=True)
class OrderEvent:
    origin: Address          # tx sender, not the emitting contract
    event_type: EventKind
    txn_hash: TxHash
    timestamp: int

@dataclass(slots=True, frozen=True)
class ChunkRec:
    from_block: int
    to_block: int
    status: Status
    attempts: int = 1
    error: str | None = None
    logs: int = 0
    events: int = 0
    updated_at: float = 0.0
