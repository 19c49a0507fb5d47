"""
Prioritized JSON-RPC endpoint pool for the Story IP Monitor.

Holds an ordered list of candidate endpoints and exposes exactly one
active AsyncWeb3 connection. Every chain read is time-boxed; a failed or
timed-out read raises ``ConnectivityFault`` and marks the pool not live so
the controller re-runs ``connect()`` before its next tick.

Usage:
    pool = RpcEndpointPool()
    if await pool.connect():
        height = await pool.block_number()
        block = await pool.get_block(height)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_RPC_CALL_TIMEOUT,
    MAX_CONNECT_TIMEOUT,
    MIN_CONNECT_TIMEOUT,
)
from shared.types import ConnectionState, RpcEndpoint

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


class ConnectivityFault(Exception):
    """Raised when the active RPC endpoint is unreachable or a call times out."""


def _build_web3(url: str) -> AsyncWeb3:
    return AsyncWeb3(AsyncHTTPProvider(url))


class RpcEndpointPool:
    """
    Ordered RPC endpoints with a single active connection.

    ``connect()`` walks the endpoints in priority order and keeps the first
    one that answers a block-height query within the connect timeout.
    """

    def __init__(
        self,
        endpoints: list[RpcEndpoint] | None = None,
        web3_factory: Callable[[str], Any] | None = None,
    ) -> None:
        cfg = get_config()
        rpc_timing = cfg.get_timing_config().get("rpc", {})

        connect_timeout = float(rpc_timing.get("connect_timeout_seconds", DEFAULT_CONNECT_TIMEOUT))
        self._connect_timeout = min(max(connect_timeout, MIN_CONNECT_TIMEOUT), MAX_CONNECT_TIMEOUT)
        self._call_timeout = float(rpc_timing.get("call_timeout_seconds", DEFAULT_RPC_CALL_TIMEOUT))

        if endpoints is None:
            endpoints = [
                RpcEndpoint(url=e["url"], priority=int(e.get("priority", 0)))
                for e in cfg.get_rpc_endpoints()
            ]
        self._endpoints: list[RpcEndpoint] = sorted(endpoints, key=lambda e: e.priority)
        self._web3_factory = web3_factory or _build_web3

        self._w3: Any | None = None
        self._state = ConnectionState()

        self._logger = setup_module_logger("rpc_pool", "rpc_pool.log", module_folder="RPC_Logs")

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @property
    def endpoints(self) -> list[RpcEndpoint]:
        return list(self._endpoints)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_live(self) -> bool:
        return self._state.is_live and self._w3 is not None

    @property
    def active_endpoint(self) -> RpcEndpoint | None:
        if self._state.active_index is None:
            return None
        return self._endpoints[self._state.active_index]

    @property
    def w3(self) -> Any:
        if self._w3 is None:
            raise ConnectivityFault("No active RPC endpoint")
        return self._w3

    async def connect(self) -> bool:
        """
        Try endpoints in priority order; the first to report a block height wins.

        Returns False (and leaves the pool without a connection) when every
        endpoint fails.
        """
        self._state.is_live = False

        for index, endpoint in enumerate(self._endpoints):
            self._logger.info("Trying RPC %s (priority %d)", endpoint.url, endpoint.priority)
            try:
                w3 = self._web3_factory(endpoint.url)
                height = await asyncio.wait_for(
                    w3.eth.get_block_number(), timeout=self._connect_timeout
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.warning("RPC %s failed: %s", endpoint.url, exc)
                continue

            self._w3 = w3
            self._state.active_index = index
            self._state.last_block_height = int(height)
            self._state.is_live = True
            self._logger.info("Connected to %s at block %d", endpoint.url, height)
            return True

        self._w3 = None
        self._state.active_index = None
        self._logger.error("All %d RPC endpoints failed", len(self._endpoints))
        return False

    # ------------------------------------------------------------------
    # Time-boxed chain reads
    # ------------------------------------------------------------------

    async def _call(self, label: str, request: Callable[[Any], Awaitable[Any]]) -> Any:
        """Run one RPC request under the call timeout; wrap any failure."""
        w3 = self.w3
        try:
            return await asyncio.wait_for(request(w3), timeout=self._call_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._state.is_live = False
            endpoint = self.active_endpoint
            url = endpoint.url if endpoint else "?"
            self._logger.error("%s failed on %s: %s", label, url, exc)
            raise ConnectivityFault(f"{label} failed on {url}: {exc}") from exc

    async def block_number(self) -> int:
        height = int(await self._call("eth_blockNumber", lambda w3: w3.eth.get_block_number()))
        self._state.last_block_height = height
        return height

    async def get_block(self, block_number: int, full_transactions: bool = True) -> Any:
        block = await self._call(
            f"eth_getBlockByNumber({block_number})",
            lambda w3: w3.eth.get_block(block_number, full_transactions=full_transactions),
        )
        if block is None:
            self._state.is_live = False
            raise ConnectivityFault(f"Block {block_number} not available")
        return block

    async def get_transaction(self, tx_hash: Any) -> Any:
        return await self._call(
            "eth_getTransactionByHash", lambda w3: w3.eth.get_transaction(tx_hash)
        )

    async def get_transaction_receipt(self, tx_hash: Any) -> Any:
        return await self._call(
            "eth_getTransactionReceipt", lambda w3: w3.eth.get_transaction_receipt(tx_hash)
        )

    def contract(self, address: str, abi: list) -> Any:
        """Bind a contract to the active connection (no network I/O)."""
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def read_call(self, contract_function: Any, timeout: float) -> Any:
        """
        Time-boxed read-only contract call.

        Failures propagate unchanged: a missing view function or a slow
        token contract is not an endpoint fault.
        """
        return await asyncio.wait_for(contract_function.call(), timeout=timeout)
