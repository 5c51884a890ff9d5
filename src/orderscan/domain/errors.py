from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import BlockRange


class OrderScanError(Exception):
    """Base class for every error raised by orderscan."""


class InvalidRange(OrderScanError, ValueError):
    pass


class ConfigError(OrderScanError):
    pass


class SignatureError(OrderScanError):
    pass


class EtherscanError(OrderScanError):
    pass


class SinkError(OrderScanError):
    pass


class CollectorError(OrderScanError):
    pass


class RpcError(OrderScanError):
    """A JSON-RPC call failed.

    `retryable` is True for failures that may succeed on a later attempt
    (timeouts, dropped connections, HTTP 5xx, rate limiting).
    """
    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class RateLimited(RpcError):
    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message, retryable=True)
        self.retry_after = retry_after


class FetchError(OrderScanError):
    """Fetching logs for one block range failed."""
    def __init__(self, block_range: BlockRange, cause: BaseException) -> None:
        super().__init__(f"blocks {block_range.start}-{block_range.end}: {type(cause).__name__}: {cause}")
        self.block_range = block_range
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return bool(getattr(self.cause, "retryable", False))

    @property
    def retry_after(self) -> float | None:
        return getattr(self.cause, "retry_after", None)
