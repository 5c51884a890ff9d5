from __future__ import annotations
import logging

from ..domain.decoding import build_order_event, classify
from ..domain.errors import OrderScanError
from ..domain.models import EventSignatures, OrderEvent, RawLog
from ..ports.rpc import RPCClient

log = logging.getLogger(__name__)

_MISSING = object()


class EventExtractor:
    """
    RawLog -> OrderEvent, resolving the block timestamp and the transaction sender.

    Lookups are memoized for the extractor's lifetime; the orchestrator builds
    one extractor per chunk so logs sharing a block or a transaction cost a
    single round trip. Unresolvable logs are dropped, never raised.
    """
    def __init__(self, rpc: RPCClient, signatures: EventSignatures) -> None:
        self.rpc = rpc
        self.signatures = signatures
        self._timestamps: dict[int, int | None] = {}
        self._senders: dict[str, str | None] = {}
        self.dropped = 0

    async def _timestamp(self, log_: RawLog) -> int | None:
        if log_.block_timestamp is not None:
            return log_.block_timestamp
        cached = self._timestamps.get(log_.block_number, _MISSING)
        if cached is not _MISSING:
            return cached  # type: ignore[return-value]
        try:
            ts = await self.rpc.block_timestamp(log_.block_number)
        except OrderScanError as e:
            log.debug("block %s lookup failed: %s", log_.block_number, e)
            ts = None
        self._timestamps[log_.block_number] = ts
        return ts

    async def _sender(self, tx_hash: str) -> str | None:
        cached = self._senders.get(tx_hash, _MISSING)
        if cached is not _MISSING:
            return cached  # type: ignore[return-value]
        try:
            sender = await self.rpc.transaction_sender(tx_hash)
        except OrderScanError as e:
            log.debug("tx %s lookup failed: %s", tx_hash, e)
            sender = None
        self._senders[tx_hash] = sender
        return sender

    async def extract(self, log_: RawLog) -> OrderEvent | None:
        if not log_.topics:
            self.dropped += 1
            return None
        kind = classify(log_.topics[0], self.signatures)

        ts = await self._timestamp(log_)
        if ts is None:
            log.debug("dropping %s log in tx %s: block %s unavailable", kind.value, log_.tx_hash, log_.block_number)
            self.dropped += 1
            return None

        origin = await self._sender(log_.tx_hash)
        if origin is None:
            log.debug("dropping %s log in tx %s: transaction unavailable", kind.value, log_.tx_hash)
            self.dropped += 1
            return None

        try:
            return build_order_event(log_, kind, origin=origin, timestamp=ts)
        except (OrderScanError, ValueError) as e:
            log.debug("dropping malformed %s log in tx %s: %s", kind.value, log_.tx_hash, e)
            self.dropped += 1
            return None
