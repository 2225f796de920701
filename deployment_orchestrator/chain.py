"""Web3 client factory and helpers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from web3 import HTTPProvider, Web3
from web3.middleware import ExtraDataToPOAMiddleware

from .config import NetworkConfig
from .errors import ConfigError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Web3Config:
    rpc_url: str
    chain_id: Optional[int] = None
    enable_poa: bool = False
    request_timeout: float = 30.0
    connect_attempts: int = 3

    @classmethod
    def from_network(cls, network: NetworkConfig) -> "Web3Config":
        if not network.rpc_url:
            raise ConfigError(
                f"Network {network.name!r} has no rpc_url; set it in the configuration or DEPLOYER_RPC_URL"
            )
        return cls(
            rpc_url=network.rpc_url,
            chain_id=network.chain_id,
            enable_poa=network.enable_poa,
            request_timeout=network.request_timeout,
            connect_attempts=network.connect_attempts,
        )


def _connect(config: Web3Config) -> Web3:
    provider = HTTPProvider(config.rpc_url, request_kwargs={"timeout": config.request_timeout})
    web3 = Web3(provider)
    if config.enable_poa:
        web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    if not web3.is_connected():
        raise ConnectionError(f"Failed to connect to RPC endpoint: {config.rpc_url}")
    return web3


def get_web3(config: Web3Config) -> Web3:
    """Connect to the RPC endpoint and check it serves the expected chain.

    Only the connection is retried. No transaction has been sent at this point.
    """

    LOGGER.debug(
        "Initialising Web3 client",
        extra={"event": "web3_connect", "data": {"rpc_url": config.rpc_url, "chain_id": config.chain_id}},
    )
    retrying = Retrying(
        stop=stop_after_attempt(config.connect_attempts),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(ConnectionError),
        reraise=True,
    )
    web3 = retrying(_connect, config)
    chain_id = web3.eth.chain_id
    if config.chain_id is not None and chain_id != config.chain_id:
        raise ConfigError(f"Chain ID mismatch: expected {config.chain_id} got {chain_id}")
    return web3


__all__ = ["Web3Config", "get_web3"]
