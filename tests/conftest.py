"""Pytest configuration and fixtures."""

from __future__ import annotations

import itertools
from collections.abc import Mapping
from types import SimpleNamespace
from typing import Any

import pytest
from eth_abi import encode

from dex_buy_tracker.config import ChainEndpoint
from dex_buy_tracker.errors import ConnectionLostError, TransientLookupError
from dex_buy_tracker.tracker.decoder import SWAP_TOPICS
from dex_buy_tracker.tracker.models import AlertConfig, ProtocolVersion, TransportKind

TOKEN = "0x" + "11" * 20
WBNB = "0x" + "22" * 20
POOL = "0x" + "33" * 20
POOL_B = "0x" + "55" * 20
BUYER = "0x" + "44" * 20
ROUTER = "0x" + "66" * 20
TX_HASH = "0x" + "ab" * 32


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeConfigStore:
    """In-memory AlertConfigSource that counts mark_dirty() calls."""

    def __init__(self, configs: Mapping[int, AlertConfig] | None = None) -> None:
        self.configs: dict[int, AlertConfig] = dict(configs or {})
        self.dirty_marks = 0

    def items(self) -> list[tuple[int, AlertConfig]]:
        return list(self.configs.items())

    def mark_dirty(self) -> None:
        self.dirty_marks += 1


class FakeChainHandle:
    """ChainHandle double with scriptable reads and manual log emission."""

    def __init__(
        self,
        chain: str,
        *,
        tokens: dict[str, tuple[str, str]] | None = None,
        decimals: int = 18,
        balance: int | Exception = 0,
        transport: TransportKind = TransportKind.STREAMING,
    ) -> None:
        self.chain = chain
        self.transport = transport
        self.tokens = tokens if tokens is not None else {}
        self.decimals = decimals
        self.balance = balance
        self.alive = True
        self.closed = False
        self.subscriptions: dict[str, tuple[str, str, Any]] = {}
        self.balance_calls: list[tuple[str, str, int]] = []
        self._ids = itertools.count(1)

    def is_alive(self) -> bool:
        return self.alive and not self.closed

    async def subscribe(self, address: str, topic: str, callback: Any) -> str:
        if not self.is_alive():
            raise ConnectionLostError(f"{self.chain} handle is down")
        subscription_id = f"{self.chain}-{id(self)}-{next(self._ids)}"
        self.subscriptions[subscription_id] = (address.lower(), topic, callback)
        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> None:
        self.subscriptions.pop(subscription_id, None)

    async def pair_tokens(self, pool_address: str) -> tuple[str, str]:
        tokens = self.tokens.get(pool_address.lower())
        if tokens is None:
            raise TransientLookupError(f"token0/token1 call failed for {pool_address}")
        return tokens

    async def token_decimals(self, token: str) -> int:
        return self.decimals

    async def balance_of(self, token: str, holder: str, block: int) -> int:
        self.balance_calls.append((token, holder, block))
        if isinstance(self.balance, Exception):
            raise self.balance
        return self.balance

    async def close(self) -> None:
        self.closed = True

    async def emit(self, address: str, topic: str, log: Mapping[str, Any]) -> int:
        """Deliver ``log`` to every matching subscription; returns deliveries."""
        delivered = 0
        for sub_address, sub_topic, callback in list(self.subscriptions.values()):
            if sub_address == address.lower() and sub_topic == topic:
                await callback(log)
                delivered += 1
        return delivered


class FakeHandleFactory:
    """HandleFactory that hands out FakeChainHandles and can fail on demand."""

    def __init__(self, tokens: dict[str, tuple[str, str]] | None = None) -> None:
        self.tokens = tokens if tokens is not None else {}
        self.handles: list[FakeChainHandle] = []
        self.failures_left = 0
        self.balance: int | Exception = 0

    async def __call__(self, endpoint: ChainEndpoint) -> FakeChainHandle:
        if self.failures_left > 0:
            self.failures_left -= 1
            raise ConnectionLostError(f"cannot reach {endpoint.rpc_url}")
        handle = FakeChainHandle(endpoint.chain, tokens=self.tokens, balance=self.balance)
        self.handles.append(handle)
        return handle

    @property
    def last(self) -> FakeChainHandle:
        return self.handles[-1]


def _address_topic(address: str) -> str:
    return "0x" + "00" * 12 + address[2:].lower()


def build_v2_log(
    pool: str = POOL,
    *,
    sender: str = ROUTER,
    recipient: str = BUYER,
    amount0_in: int = 0,
    amount1_in: int = 0,
    amount0_out: int = 0,
    amount1_out: int = 0,
    block_number: int = 100,
    tx_hash: str = TX_HASH,
) -> dict[str, Any]:
    data = encode(
        ["uint256", "uint256", "uint256", "uint256"],
        [amount0_in, amount1_in, amount0_out, amount1_out],
    )
    return {
        "address": pool,
        "topics": [SWAP_TOPICS[ProtocolVersion.V2], _address_topic(sender), _address_topic(recipient)],
        "data": "0x" + data.hex(),
        "blockNumber": block_number,
        "transactionHash": tx_hash,
    }


def build_v3_log(
    pool: str = POOL,
    *,
    sender: str = ROUTER,
    recipient: str = BUYER,
    amount0: int = 0,
    amount1: int = 0,
    block_number: int = 100,
    tx_hash: str = TX_HASH,
) -> dict[str, Any]:
    data = encode(
        ["int256", "int256", "uint160", "uint128", "int24"],
        [amount0, amount1, 2**96, 10**18, -120],
    )
    return {
        "address": pool,
        "topics": [SWAP_TOPICS[ProtocolVersion.V3], _address_topic(sender), _address_topic(recipient)],
        "data": "0x" + data.hex(),
        "blockNumber": hex(block_number),
        "transactionHash": tx_hash,
    }


def build_v4_log(
    pool: str = POOL,
    *,
    sender: str = ROUTER,
    recipient: str = BUYER,
    amount0: int = 0,
    amount1: int = 0,
    protocol_fee: int = 30,
    block_number: int = 100,
    tx_hash: str = TX_HASH,
) -> dict[str, Any]:
    data = encode(
        ["address", "address", "int256", "int256", "uint160", "uint128", "int24", "uint256"],
        [sender, recipient, amount0, amount1, 2**96, 10**18, 60, protocol_fee],
    )
    return {
        "address": pool,
        "topics": [SWAP_TOPICS[ProtocolVersion.V4]],
        "data": bytes.fromhex(data.hex()),
        "blockNumber": block_number,
        "transactionHash": bytes.fromhex(tx_hash[2:]),
    }


@pytest.fixture
def addresses() -> SimpleNamespace:
    """Well-known addresses shared by the tests."""
    return SimpleNamespace(
        token=TOKEN,
        wbnb=WBNB,
        pool=POOL,
        pool_b=POOL_B,
        buyer=BUYER,
        router=ROUTER,
        tx_hash=TX_HASH,
    )


@pytest.fixture
def swap_logs() -> SimpleNamespace:
    """Builders for encoded V2/V3/V4 swap logs."""
    return SimpleNamespace(v2=build_v2_log, v3=build_v3_log, v4=build_v4_log)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def alert_config() -> AlertConfig:
    """Config tracking TOKEN through POOL on bsc."""
    return AlertConfig(chain="bsc", token_address=TOKEN, pair_addresses=[POOL])


@pytest.fixture
def config_store(alert_config: AlertConfig) -> FakeConfigStore:
    return FakeConfigStore({-100: alert_config})


@pytest.fixture
def empty_config_store() -> FakeConfigStore:
    return FakeConfigStore()


@pytest.fixture
def handle_factory() -> FakeHandleFactory:
    """Factory whose handles know POOL and POOL_B as TOKEN/WBNB pools."""
    return FakeHandleFactory({POOL: (TOKEN, WBNB), POOL_B: (WBNB, TOKEN)})


@pytest.fixture
def fake_handle() -> FakeChainHandle:
    return FakeChainHandle("bsc", tokens={POOL: (TOKEN, WBNB)})


@pytest.fixture
def endpoints() -> dict[str, ChainEndpoint]:
    return {"bsc": ChainEndpoint("bsc", "wss://bsc.example/ws", "https://bscscan.com")}
