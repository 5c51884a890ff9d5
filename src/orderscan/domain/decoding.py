from __future__ import annotations

from typing import Sequence

from eth_utils import is_address, to_normalized_address

from .errors import ConfigError
from .models import EventFilter, EventSignatures, OrderEvent, RawLog
from .value_types import Address, EventKind, Topic0, TxHash

DEFAULT_SELECTOR = "default"

# ---------- hex normalization -------------------------------------------------

def normalize_address(value: str) -> Address:
    """Lowercase 0x-address; raises ConfigError on anything that is not 20 bytes."""
    if not is_address(value):
        raise ConfigError(f"Invalid address: {value!r}")
    return Address(to_normalized_address(value))

def normalize_hash(value: str | bytes) -> str:
    """Lowercase 0x-prefixed 32-byte hash."""
    s = value.hex() if isinstance(value, (bytes, bytearray)) else str(value)
    s = s.strip().lower()
    if not s.startswith("0x"):
        s = "0x" + s
    if len(s) != 66 or any(c not in "0123456789abcdef" for c in s[2:]):
        raise ValueError(f"Invalid 32-byte hash: {value!r}")
    return s

# ---------- filter / classification -------------------------------------------

def parse_selector(selector: str | None) -> EventKind | None:
    """Map a user-facing event selector to a kind; None means both kinds."""
    s = (selector or "").strip()
    if not s or s.lower() == DEFAULT_SELECTOR:
        return None
    for kind in EventKind:
        if s == kind.value:
            return kind
    choices = ", ".join(k.value for k in EventKind)
    raise ConfigError(f"Unknown event type {selector!r} (expected one of: {choices}, or empty for both)")

def build_event_filter(contract: str, signatures: EventSignatures, selector: str | None) -> EventFilter:
    kind = parse_selector(selector)
    if kind is None:
        topic0s: tuple[Topic0, ...] = (signatures.take_order, signatures.clear)
    else:
        topic0s = (signatures.for_kind(kind),)
    return EventFilter(contract_address=normalize_address(contract), topic0s=topic0s)

def classify(topic0: str, signatures: EventSignatures) -> EventKind:
    # binary: anything the filter let through that is not TakeOrderV2 is ClearV2
    return EventKind.TAKE_ORDER if topic0.lower() == signatures.take_order else EventKind.CLEAR

def build_order_event(log: RawLog, kind: EventKind, *, origin: str, timestamp: int) -> OrderEvent:
    return OrderEvent(
        origin=normalize_address(origin),
        event_type=kind,
        txn_hash=TxHash(normalize_hash(log.tx_hash)),
        timestamp=int(timestamp),
    )

# ---------- CSV rows ----------------------------------------------------------

CSV_HEADER: tuple[str, ...] = ("tx.origin", "event type", "txn hash", "timestamp")

def format_row(event: OrderEvent) -> list[str]:
    return [
        str(event.origin).lower(),
        event.event_type.value,
        str(event.txn_hash).lower(),
        str(int(event.timestamp)),
    ]

def format_rows(events: Sequence[OrderEvent]) -> list[list[str]]:
    return [format_row(e) for e in events]
