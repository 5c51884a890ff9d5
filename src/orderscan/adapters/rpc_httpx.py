from __future__ import annotations
import httpx
from typing import Any, Sequence
from ..domain.errors import RateLimited, RpcError
from ..domain.models import RawLog
from ..domain.value_types import Address, Topic0, TxHash
from ..ports.rpc import RPCClient

def _to_hex_block(n: int) -> str: return hex(int(n))
def _is_topic_hash(x: str) -> bool: return isinstance(x, str) and x.startswith("0x") and len(x)==66
def _normalize_topic0_list(t0s: Sequence[Topic0]) -> list[str]:
    out: list[str] = []
    for t in t0s:
        s = str(t).strip().lower()
        out.append(s)
    return out

def _build_topics_param(topic0s: Sequence[Topic0]) -> list[list[str]]:
    t0s = _normalize_topic0_list(topic0s)
    if not t0s or not all(_is_topic_hash(x) for x in t0s):
        raise ValueError(f"Invalid topic0(s): {t0s}")
    return [t0s]

def _quantity(v: Any) -> int | None:
    if v is None: return None
    if isinstance(v, int): return v
    s = str(v)
    return int(s, 16) if s.lower().startswith("0x") else int(s)

def _parse_retry_after(value: str | None) -> float | None:
    if not value: return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None

def _parse_log(rl: dict[str, Any]) -> RawLog:
    return RawLog(
        address=Address(rl["address"].lower()),
        topics=tuple(Topic0(t.lower()) for t in rl.get("topics", [])),
        block_number=int(rl["blockNumber"], 16),
        tx_hash=TxHash(rl["transactionHash"].lower()),
        log_index=_quantity(rl.get("logIndex")) or 0,
        block_timestamp=_quantity(rl.get("blockTimestamp")),
    )

class HttpxRPC(RPCClient):
    def __init__(
        self,
        rpc_url: str,
        timeout_s: int = 20,
        max_conn: int = 8,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self._next_id = 0
        self.client = httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max(1, max_conn//2)),
            transport=transport,
        )

    async def _call(self, method: str, params: list[Any]) -> Any:
        self._next_id += 1
        payload = {"jsonrpc":"2.0","id":self._next_id,"method":method,"params":params}
        try:
            r = await self.client.post(self.rpc_url, json=payload)
        except httpx.TransportError as e:
            raise RpcError(f"{method} transport error: {type(e).__name__}: {e}", retryable=True) from e
        if r.status_code == 429:
            raise RateLimited(f"{method} rate limited (HTTP 429)",
                              retry_after=_parse_retry_after(r.headers.get("Retry-After")))
        if r.status_code >= 400:
            raise RpcError(f"{method} HTTP {r.status_code}", retryable=r.status_code >= 500)
        try:
            data = r.json()
        except ValueError as e:
            raise RpcError(f"{method} returned malformed JSON") from e
        if not isinstance(data, dict):
            raise RpcError(f"{method} returned unexpected payload: {data!r}")
        if "error" in data:
            err = data["error"]
            if isinstance(err, dict):
                code, msg = err.get("code"), err.get("message")
            else:
                code, msg = None, str(err)
            raise RpcError(f"{method} RPC error code={code} message={msg}")
        return data.get("result")

    async def latest_block(self) -> int:
        res = await self._call("eth_blockNumber", [])
        if res is None:
            raise RpcError("eth_blockNumber returned no result")
        try:
            return int(res, 16) if isinstance(res, str) else int(res)
        except (TypeError, ValueError) as e:
            raise RpcError(f"eth_blockNumber returned a malformed block number: {res!r}") from e

    async def get_logs(self, address: Address, topic0s: Sequence[Topic0], from_block: int, to_block: int) -> list[RawLog]:
        res = await self._call("eth_getLogs", [{
            "address": str(address),
            "fromBlock": _to_hex_block(from_block),
            "toBlock": _to_hex_block(to_block),
            "topics": _build_topics_param(topic0s),
        }])
        try:
            return [_parse_log(rl) for rl in (res or [])]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise RpcError(f"eth_getLogs returned a malformed log: {e}") from e

    async def block_timestamp(self, block_number: int) -> int | None:
        block = await self._call("eth_getBlockByNumber", [_to_hex_block(block_number), False])
        if not block:
            return None
        try:
            return _quantity(block.get("timestamp"))
        except (AttributeError, TypeError, ValueError) as e:
            raise RpcError(f"eth_getBlockByNumber returned a malformed block: {e}") from e

    async def transaction_sender(self, tx_hash: str) -> str | None:
        tx = await self._call("eth_getTransactionByHash", [tx_hash])
        if not tx:
            return None
        try:
            sender = tx.get("from")
        except AttributeError as e:
            raise RpcError(f"eth_getTransactionByHash returned a malformed transaction: {e}") from e
        return sender.lower() if isinstance(sender, str) else None

    async def aclose(self) -> None:
        await self.client.aclose()
