"""
Raw log and transaction decoding for the Story IP Monitor.

Two paths:
- ERC-20 ``Transfer(address,address,uint256)`` logs -> ``TransferEvent``
- asset-creation transactions (sent to a registry contract or calling a
  configured creation function) -> ``AssetCreationEvent`` decoded from the
  receipt logs using the event layouts in ``config/chains/<id>.json``

Anything that does not match is "not of interest" and decodes to None.
Token metadata (name/symbol/decimals) is read through the RPC pool with a
per-field timeout and sentinel fallbacks.

Usage:
    decoder = EventDecoder(pool)
    transfer = decoder.decode_transfer(log, block_timestamp)
    if decoder.is_creation_candidate(tx):
        events = decoder.decode_asset_creations(tx, receipt, block_timestamp)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import TYPE_CHECKING, Any

from eth_abi.abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from hexbytes import HexBytes
from web3 import Web3

from bot_logging.logger_manager import setup_module_logger
from config.loader import DEFAULT_CHAIN_ID, get_config
from shared.constants import (
    AMOUNT_QUANTUM,
    DEFAULT_METADATA_TIMEOUT,
    DEFAULT_TOKEN_DECIMALS,
    TRANSFER_EVENT_TOPIC,
    TRANSFER_TOPIC_COUNT,
    UNKNOWN_TOKEN_NAME,
    UNKNOWN_TOKEN_SYMBOL,
)
from shared.types import AssetCreationEvent, TokenMetadata, TransferEvent

if TYPE_CHECKING:
    from execution.rpc_pool import RpcEndpointPool

_WORD_SIZE = 32
_ADDRESS_PADDING = 12

_DECODE_ERRORS = (DecodingError, KeyError, TypeError, ValueError, OverflowError)


def _to_hex(value: Any) -> str:
    """Normalize HexBytes / bytes / str to a lower-case 0x-prefixed string."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


def _topic_to_address(topic: Any) -> str:
    raw = bytes(HexBytes(topic))
    if len(raw) != _WORD_SIZE:
        raise ValueError(f"topic is {len(raw)} bytes, expected {_WORD_SIZE}")
    return "0x" + raw[_ADDRESS_PADDING:].hex()


@dataclass(frozen=True)
class _CreationEventLayout:
    """One configured asset-creation event and the roles of its fields."""

    name: str
    topic: str
    indexed: tuple[tuple[str, str], ...]
    data: tuple[tuple[str, str], ...]
    roles: dict[str, str]

    @classmethod
    def from_config(cls, entry: dict[str, Any]) -> _CreationEventLayout:
        return cls(
            name=entry.get("name", entry["signature"].split("(")[0]),
            topic=Web3.to_hex(Web3.keccak(text=entry["signature"])).lower(),
            indexed=tuple((n, t) for n, t in entry.get("indexed", [])),
            data=tuple((n, t) for n, t in entry.get("data", [])),
            roles=dict(entry.get("roles", {})),
        )


class EventDecoder:
    """
    Stateless decoding plus a cache of fully resolved token metadata.
    """

    def __init__(self, pool: RpcEndpointPool, chain_id: int = DEFAULT_CHAIN_ID) -> None:
        cfg = get_config()
        chain = cfg.get_chain_config(chain_id)
        timing = cfg.get_timing_config()

        self._pool = pool
        self._metadata_timeout = float(
            timing.get("metadata", {}).get("call_timeout_seconds", DEFAULT_METADATA_TIMEOUT)
        )
        self._erc20_abi = cfg.get_abi("erc20")

        self._registries: frozenset[str] = frozenset(
            r["address"].lower() for r in chain.get("asset_registries", [])
        )
        self._selectors: frozenset[str] = frozenset(
            Web3.to_hex(Web3.keccak(text=sig))[:10].lower()
            for sig in chain.get("creation_functions", [])
        )
        layouts = [_CreationEventLayout.from_config(e) for e in chain.get("creation_events", [])]
        self._creation_events: dict[str, _CreationEventLayout] = {l.topic: l for l in layouts}

        self._metadata_cache: dict[str, TokenMetadata] = {}

        self._logger = setup_module_logger(
            "event_decoder", "event_decoder.log", module_folder="Decoder_Logs"
        )
        self._logger.info(
            "EventDecoder initialized: registries=%d selectors=%d creation_events=%s",
            len(self._registries),
            len(self._selectors),
            [l.name for l in layouts],
        )

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def decode_transfer(self, log: Any, timestamp: int) -> TransferEvent | None:
        """
        Decode an ERC-20 Transfer log.

        Returns None for any other event, for Transfer logs whose topic count
        is not exactly 3 (ERC-721 indexes the token id) and for malformed data.
        """
        try:
            topics = log.get("topics") or []
            if len(topics) != TRANSFER_TOPIC_COUNT:
                return None
            if _to_hex(topics[0]) != TRANSFER_EVENT_TOPIC:
                return None

            data = bytes(HexBytes(log.get("data") or b""))
            if len(data) < _WORD_SIZE:
                return None

            return TransferEvent(
                token_address=_to_hex(log["address"]),
                from_address=_topic_to_address(topics[1]),
                to_address=_topic_to_address(topics[2]),
                raw_amount=int.from_bytes(data[:_WORD_SIZE], "big"),
                tx_hash=_to_hex(log["transactionHash"]),
                block_number=int(log["blockNumber"]),
                timestamp=int(timestamp),
                log_index=int(log.get("logIndex") or 0),
            )
        except _DECODE_ERRORS as exc:
            self._logger.debug("Undecodable transfer log: %s", exc)
            return None

    # ------------------------------------------------------------------
    # Asset creation
    # ------------------------------------------------------------------

    def is_creation_candidate(self, tx: Any) -> bool:
        """True when the tx targets a registry contract or calls a creation function."""
        to = tx.get("to")
        if to and _to_hex(to) in self._registries:
            return True
        try:
            call_data = bytes(HexBytes(tx.get("input") or b""))
        except _DECODE_ERRORS:
            return False
        return len(call_data) >= 4 and "0x" + call_data[:4].hex() in self._selectors

    def decode_asset_creations(
        self, tx: Any, receipt: Any, block_timestamp: int
    ) -> list[AssetCreationEvent]:
        """Decode every configured creation event found in the receipt logs, in log order."""
        events: list[AssetCreationEvent] = []
        for log in receipt.get("logs") or []:
            topics = log.get("topics") or []
            if not topics:
                continue
            layout = self._creation_events.get(_to_hex(topics[0]))
            if layout is None:
                continue
            try:
                event = self._decode_creation_log(layout, log, tx, receipt, block_timestamp)
            except _DECODE_ERRORS as exc:
                self._logger.debug("Undecodable %s log in %s: %s", layout.name, tx.get("hash"), exc)
                continue
            events.append(event)
        return events

    def _decode_creation_log(
        self,
        layout: _CreationEventLayout,
        log: Any,
        tx: Any,
        receipt: Any,
        block_timestamp: int,
    ) -> AssetCreationEvent:
        topics = log["topics"]
        if len(topics) != 1 + len(layout.indexed):
            raise ValueError(f"{layout.name}: expected {1 + len(layout.indexed)} topics")

        fields: dict[str, Any] = {}
        for (name, abi_type), topic in zip(layout.indexed, topics[1:]):
            fields[name] = abi_decode([abi_type], bytes(HexBytes(topic)))[0]
        if layout.data:
            values = abi_decode(
                [t for _, t in layout.data], bytes(HexBytes(log.get("data") or b""))
            )
            fields.update(zip((n for n, _ in layout.data), values))

        def role(key: str) -> Any:
            field_name = layout.roles.get(key)
            return fields.get(field_name) if field_name else None

        address = role("address") or log["address"]
        creator = role("creator") or tx.get("from") or ""
        name = role("name")
        if isinstance(name, bytes):
            name = name.rstrip(b"\x00").decode("utf-8", errors="replace")
        created_at = role("created_at") or block_timestamp

        return AssetCreationEvent(
            address=_to_hex(address),
            name=str(name or ""),
            creator=_to_hex(creator) if creator else "",
            initial_supply=int(role("supply") or 0),
            created_at=int(created_at),
            tx_hash=_to_hex(tx.get("hash") or receipt["transactionHash"]),
            block_number=int(receipt.get("blockNumber") or tx["blockNumber"]),
        )

    # ------------------------------------------------------------------
    # Token metadata
    # ------------------------------------------------------------------

    async def resolve_token_metadata(self, token_address: str) -> TokenMetadata:
        """
        Read name/symbol/decimals, each under its own timeout.

        A failing field falls back to its sentinel; only metadata whose three
        fields all resolved is cached.
        """
        key = token_address.lower()
        cached = self._metadata_cache.get(key)
        if cached is not None:
            return cached

        contract = self._pool.contract(key, self._erc20_abi)
        name, name_ok = await self._read_field(contract, "name", UNKNOWN_TOKEN_NAME, key)
        symbol, symbol_ok = await self._read_field(contract, "symbol", UNKNOWN_TOKEN_SYMBOL, key)
        decimals, decimals_ok = await self._read_field(
            contract, "decimals", DEFAULT_TOKEN_DECIMALS, key
        )

        resolved = name_ok and symbol_ok and decimals_ok
        metadata = TokenMetadata(
            address=key,
            name=str(name),
            symbol=str(symbol),
            decimals=int(decimals),
            resolved=resolved,
        )
        if resolved:
            self._metadata_cache[key] = metadata
        else:
            self._logger.warning(
                "Partial metadata for %s: name=%s symbol=%s decimals=%s",
                key,
                metadata.name,
                metadata.symbol,
                metadata.decimals,
            )
        return metadata

    async def _read_field(
        self, contract: Any, fn_name: str, fallback: Any, token: str
    ) -> tuple[Any, bool]:
        try:
            value = await self._pool.read_call(
                getattr(contract.functions, fn_name)(), timeout=self._metadata_timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.debug("%s() failed for %s: %s", fn_name, token, exc)
            return fallback, False

        # Some older tokens return bytes32 for name/symbol
        if isinstance(value, bytes):
            value = value.rstrip(b"\x00").decode("utf-8", errors="replace")
        return value, True

    # ------------------------------------------------------------------
    # Amounts
    # ------------------------------------------------------------------

    @staticmethod
    def to_token_units(raw_amount: int, decimals: int) -> Decimal:
        """Scale a base-unit amount by ``decimals`` and round to 0.01."""
        with localcontext() as ctx:
            ctx.prec = 100
            return (Decimal(raw_amount).scaleb(-int(decimals))).quantize(
                AMOUNT_QUANTUM, rounding=ROUND_HALF_UP
            )
