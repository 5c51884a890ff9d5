from __future__ import annotations
import httpx
from ..domain.errors import EtherscanError

DEFAULT_BASE_URL = "https://api.etherscan.io"


class EtherscanClient:
    """Minimal Etherscan-style API client (contract creation lookup only)."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_s: int = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_s), transport=transport)

    async def contract_creation_block(self, address: str) -> int:
        params = {
            "module": "contract",
            "action": "getcontractcreation",
            "contractaddresses": address,
            "apikey": self.api_key,
        }
        try:
            r = await self.client.get(f"{self.base_url}/api", params=params)
            r.raise_for_status()
            data = r.json()
        except httpx.HTTPError as e:
            raise EtherscanError(f"getcontractcreation request failed: {e}") from e
        except ValueError as e:
            raise EtherscanError("getcontractcreation returned malformed JSON") from e

        if not isinstance(data, dict):
            raise EtherscanError(f"getcontractcreation returned unexpected payload: {data!r}")
        if data.get("status") != "1":
            raise EtherscanError(f"Etherscan error: {data.get('message') or data.get('result')}")

        result = data.get("result")
        first = result[0] if isinstance(result, list) and result else None
        block_str = first.get("blockNumber") if isinstance(first, dict) else None
        if block_str is None:
            raise EtherscanError("Block number not found in contract creation details.")
        try:
            return int(str(block_str))
        except ValueError as e:
            raise EtherscanError(f"Failed to parse block number {block_str!r}") from e

    async def aclose(self) -> None:
        await self.client.aclose()
