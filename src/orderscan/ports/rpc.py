# orderscan/ports/rpc.py
from __future__ import annotations

from typing import Protocol, Sequence
from ..domain.models import RawLog
from ..domain.value_types import Address, Topic0


class RPCClient(Protocol):
    """Port defining the contract for an Ethereum JSON-RPC client."""

    async def get_logs(
        self,
        address: Address,
        topic0s: Sequence[Topic0],
        from_block: int,
        to_block: int,
    ) -> list[RawLog]:
        """Return normalized, typed logs for [from_block, to_block] inclusive."""

    async def latest_block(self) -> int:
        """Return the latest block number as an integer."""

    async def block_timestamp(self, block_number: int) -> int | None:
        """Return the block's Unix timestamp, or None if the node does not know the block."""

    async def transaction_sender(self, tx_hash: str) -> str | None:
        """Return the `from` address of a transaction, or None if it cannot be found."""
