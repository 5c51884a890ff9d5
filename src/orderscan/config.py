from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from dotenv import dotenv_values

from .domain.errors import ConfigError


DEFAULT_CONTRACT_ADDRESS = "0x0ea6d458488d1cf51695e1d6e4744e6fb715d37c"
DEFAULT_ABI_PATH = "./IOrderBookV4.json"
DEFAULT_OUTPUT_PATH = "order_events.csv"
DEFAULT_CHUNK_SIZE = 1_000_000
DEFAULT_ETHERSCAN_BASE_URL = "https://api.etherscan.io"

ETHERSCAN_API_KEY_ENV = "ETHERSCAN_API_KEY"
ETHERSCAN_BASE_URL_ENV = "ETHERSCAN_BASE_URL"


class Network(str, Enum):
    BASE = "Base"
    MAINNET = "Mainnet"
    FLARE = "Flare"
    ARBITRUM = "Arbitrum"
    OPTIMISM = "Optimism"
    LINEA = "Linea"


@dataclass(frozen=True)
class NetworkConfig:
    rpc_url_env: str


NETWORKS: dict[Network, NetworkConfig] = {
    Network.BASE:     NetworkConfig("BASE_RPC_URL"),
    Network.MAINNET:  NetworkConfig("MAINNET_RPC_URL"),
    Network.FLARE:    NetworkConfig("FLARE_RPC_URL"),
    Network.ARBITRUM: NetworkConfig("ARBITRUM_RPC_URL"),
    Network.OPTIMISM: NetworkConfig("OPTIMISM_RPC_URL"),
    Network.LINEA:    NetworkConfig("LINEA_RPC_URL"),
}


class FailurePolicy(str, Enum):
    """What the collector does when a chunk's log query fails."""
    SKIP = "skip"    # record the range as failed and move on
    RETRY = "retry"  # bounded exponential backoff for retryable errors, then skip
    ABORT = "abort"  # stop the run


@dataclass(frozen=True)
class Settings:
    """Endpoints and credentials resolved from the environment."""
    network: Network
    rpc_url: str
    etherscan_api_key: str | None
    etherscan_base_url: str


@dataclass(frozen=True)
class CollectorConfig:
    """Configuration for one collector run."""
    contract: str = DEFAULT_CONTRACT_ADDRESS
    event_type: str = ""
    chunk_size: int = DEFAULT_CHUNK_SIZE
    failure_policy: FailurePolicy = FailurePolicy.RETRY
    max_attempts: int = 3
    backoff_base_s: float = 1.0
    backoff_max_s: float = 30.0


def parse_network(name: str) -> Network:
    for net in Network:
        if net.value.lower() == name.strip().lower():
            return net
    raise ConfigError(f"Unsupported network: {name}")


def load_settings(
    network: Network | str,
    *,
    environ: Mapping[str, str] | None = None,
    env_file: str | None = None,
    require_etherscan: bool = True,
) -> Settings:
    """
    Resolve settings for `network`.

    Values from `env_file` (dotenv format) are used only where the process
    environment (or the explicit `environ` mapping) does not define them.
    """
    net = network if isinstance(network, Network) else parse_network(network)
    env: dict[str, str] = {}
    if env_file:
        env.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    env.update(os.environ if environ is None else environ)

    rpc_env = NETWORKS[net].rpc_url_env
    rpc_url = env.get(rpc_env)
    if not rpc_url:
        raise ConfigError(f"{rpc_env} not set")

    api_key = env.get(ETHERSCAN_API_KEY_ENV) or None
    if require_etherscan and not api_key:
        raise ConfigError(f"{ETHERSCAN_API_KEY_ENV} not set")

    return Settings(
        network=net,
        rpc_url=rpc_url,
        etherscan_api_key=api_key,
        etherscan_base_url=env.get(ETHERSCAN_BASE_URL_ENV) or DEFAULT_ETHERSCAN_BASE_URL,
    )
