"""Swap event decoding and normalization.

Three pool generations report trades with different event layouts:

- V2 pools emit four unsigned legs (``amount0In``, ``amount1In``,
  ``amount0Out``, ``amount1Out``).
- V3 and V4 pools emit two signed net deltas from the pool's point of view;
  a positive delta means the asset entered the pool, a negative delta means
  it left.

Raw logs are decoded into the tagged union :data:`RawSwap` and mapped through
:func:`normalize` into a :class:`CanonicalSwap` before any filtering runs.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from eth_abi import decode as abi_decode
from web3 import Web3

from dex_buy_tracker.errors import MalformedInputError
from dex_buy_tracker.tracker.models import (
    BuyLegs,
    CanonicalSwap,
    PairRuntime,
    ProtocolVersion,
    RawSwap,
    V2Swap,
    V3Swap,
    V4Swap,
)

logger = logging.getLogger(__name__)

SWAP_SIGNATURES: dict[ProtocolVersion, str] = {
    ProtocolVersion.V2: "Swap(address,uint256,uint256,uint256,uint256,address)",
    ProtocolVersion.V3: "Swap(address,address,int256,int256,uint160,uint128,int24)",
    ProtocolVersion.V4: "Swap(address,address,int256,int256,uint160,uint128,int24,uint256)",
}


def _topic(signature: str) -> str:
    return "0x" + bytes(Web3.keccak(text=signature)).hex()


SWAP_TOPICS: dict[ProtocolVersion, str] = {
    version: _topic(signature) for version, signature in SWAP_SIGNATURES.items()
}
VERSION_BY_TOPIC: dict[str, ProtocolVersion] = {
    topic: version for version, topic in SWAP_TOPICS.items()
}

# Non-indexed fields carried in the log data, per version.
_DATA_TYPES: dict[ProtocolVersion, list[str]] = {
    ProtocolVersion.V2: ["uint256", "uint256", "uint256", "uint256"],
    ProtocolVersion.V3: ["int256", "int256", "uint160", "uint128", "int24"],
    ProtocolVersion.V4: [
        "address",
        "address",
        "int256",
        "int256",
        "uint160",
        "uint128",
        "int24",
        "uint256",
    ],
}
# Indexed topics expected after topic0, per version.
_INDEXED_COUNT: dict[ProtocolVersion, int] = {
    ProtocolVersion.V2: 2,
    ProtocolVersion.V3: 2,
    ProtocolVersion.V4: 0,
}


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        text = value[2:] if value[:2].lower() == "0x" else value
        try:
            return bytes.fromhex(text)
        except ValueError as e:
            raise MalformedInputError(f"Invalid hex value: {value!r}") from e
    raise MalformedInputError(f"Unsupported log field type: {type(value).__name__}")


def _to_hex(value: Any) -> str:
    if isinstance(value, str):
        return value if value.startswith("0x") else "0x" + value
    return "0x" + _to_bytes(value).hex()


def _topic_address(topic: Any) -> str:
    raw = _to_bytes(topic)
    if len(raw) != 32:
        raise MalformedInputError(f"Indexed address topic has {len(raw)} bytes")
    return Web3.to_checksum_address(raw[-20:])


def _block_number(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16) if value.startswith("0x") else int(value)
        except ValueError as e:
            raise MalformedInputError(f"Invalid block number: {value!r}") from e
    raise MalformedInputError("Log is missing blockNumber")


def swap_version(log: Mapping[str, Any]) -> ProtocolVersion | None:
    """Return the protocol version a log's topic0 belongs to, if any."""
    topics = log.get("topics") or []
    if not topics:
        return None
    return VERSION_BY_TOPIC.get(_to_hex(topics[0]).lower())


def decode_swap_log(
    log: Mapping[str, Any],
    version: ProtocolVersion | None = None,
) -> RawSwap:
    """Decode a raw swap log into its version-specific record.

    Args:
        log: Log object as returned by ``eth_getLogs`` or a ``logs``
            subscription (hex strings or bytes are both accepted).
        version: Expected protocol version. Inferred from topic0 when omitted.

    Returns:
        A V2Swap, V3Swap or V4Swap.

    Raises:
        MalformedInputError: If the log is not a recognised swap event or its
            payload cannot be decoded.
    """
    detected = swap_version(log)
    if detected is None:
        raise MalformedInputError("Log topic0 is not a known swap event")
    if version is not None and detected is not version:
        raise MalformedInputError(
            f"Log topic0 is a {detected.value} swap, expected {version.value}"
        )

    topics = list(log.get("topics") or [])
    if len(topics) < 1 + _INDEXED_COUNT[detected]:
        raise MalformedInputError(f"{detected.value} swap log is missing indexed topics")

    try:
        values = abi_decode(_DATA_TYPES[detected], _to_bytes(log.get("data") or b""))
    except MalformedInputError:
        raise
    except Exception as e:
        raise MalformedInputError(f"Failed to decode {detected.value} swap data: {e}") from e

    pool_address = str(log.get("address") or "")
    tx_hash = _to_hex(log.get("transactionHash") or b"")
    block_number = _block_number(log.get("blockNumber"))

    if detected is ProtocolVersion.V2:
        amount0_in, amount1_in, amount0_out, amount1_out = values
        return V2Swap(
            pool_address=pool_address,
            tx_hash=tx_hash,
            block_number=block_number,
            sender=_topic_address(topics[1]),
            recipient=_topic_address(topics[2]),
            amount0_in=amount0_in,
            amount1_in=amount1_in,
            amount0_out=amount0_out,
            amount1_out=amount1_out,
        )

    if detected is ProtocolVersion.V3:
        amount0, amount1, sqrt_price_x96, liquidity, tick = values
        return V3Swap(
            pool_address=pool_address,
            tx_hash=tx_hash,
            block_number=block_number,
            sender=_topic_address(topics[1]),
            recipient=_topic_address(topics[2]),
            amount0=amount0,
            amount1=amount1,
            sqrt_price_x96=sqrt_price_x96,
            liquidity=liquidity,
            tick=tick,
        )

    sender, recipient, amount0, amount1, sqrt_price_x96, liquidity, tick, fee = values
    return V4Swap(
        pool_address=pool_address,
        tx_hash=tx_hash,
        block_number=block_number,
        sender=Web3.to_checksum_address(sender),
        recipient=Web3.to_checksum_address(recipient),
        amount0=amount0,
        amount1=amount1,
        sqrt_price_x96=sqrt_price_x96,
        liquidity=liquidity,
        tick=tick,
        protocol_fee=fee,
    )


def _split_delta(delta: int) -> tuple[int, int]:
    """Split a signed pool delta into (in, out) unsigned legs."""
    if delta > 0:
        return delta, 0
    return 0, -delta


def normalize(swap: RawSwap, chain: str) -> CanonicalSwap:
    """Map any swap variant onto the four-unsigned-leg canonical record."""
    if isinstance(swap, V2Swap):
        amount0_in, amount1_in = swap.amount0_in, swap.amount1_in
        amount0_out, amount1_out = swap.amount0_out, swap.amount1_out
    else:
        amount0_in, amount0_out = _split_delta(swap.amount0)
        amount1_in, amount1_out = _split_delta(swap.amount1)

    return CanonicalSwap(
        chain=chain,
        pool_address=swap.pool_address,
        tx_hash=swap.tx_hash,
        block_number=swap.block_number,
        counterparty=Web3.to_checksum_address(swap.recipient),
        amount0_in=amount0_in,
        amount1_in=amount1_in,
        amount0_out=amount0_out,
        amount1_out=amount1_out,
    )


def classify_buy(swap: CanonicalSwap, pair: PairRuntime) -> BuyLegs | None:
    """Return the buy legs when the swap bought the pool's tracked token.

    The tracked side is found by comparing the pool's asset addresses with the
    tracked-token address, case-insensitively. Anything other than base in and
    tracked token out (both strictly positive) is not a buy.
    """
    tracked = pair.tracked_token.lower()
    if pair.token0.lower() == tracked:
        base_in, token_out = swap.amount1_in, swap.amount0_out
    elif pair.token1.lower() == tracked:
        base_in, token_out = swap.amount0_in, swap.amount1_out
    else:
        logger.debug(
            "Pool %s does not hold tracked token %s", pair.address, pair.tracked_token
        )
        return None

    if base_in <= 0 or token_out <= 0:
        return None
    return BuyLegs(base_in=base_in, token_out=token_out)
