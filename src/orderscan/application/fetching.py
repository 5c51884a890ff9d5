from __future__ import annotations
from ..domain.errors import FetchError
from ..domain.models import BlockRange, EventFilter, RawLog
from ..ports.rpc import RPCClient


class LogFetcher:
    """One eth_getLogs query per block range. Never retries; callers own the retry policy."""

    def __init__(self, rpc: RPCClient) -> None:
        self.rpc = rpc

    async def fetch(self, block_range: BlockRange, flt: EventFilter) -> list[RawLog]:
        try:
            return await self.rpc.get_logs(flt.contract_address, list(flt.topic0s),
                                           block_range.start, block_range.end)
        except Exception as e:
            raise FetchError(block_range, e) from e
