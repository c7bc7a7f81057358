"""Per-chain network handles and the connection manager.

This module provides:
- ``StreamingChainHandle``: ``eth_subscribe("logs")`` over a websocket
- ``PollingChainHandle``: ``eth_getLogs`` polling over HTTP
- ``ConnectionManager``: lazy creation, health checks and reconnection with
  bounded exponential backoff, reattaching every tracked pool to the new
  handle
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import itertools
import logging
import random
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import websockets
from web3 import AsyncWeb3
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider, WebSocketProvider

from dex_buy_tracker.config import ChainEndpoint
from dex_buy_tracker.errors import ConnectionLostError
from dex_buy_tracker.tracker.decoder import SWAP_TOPICS
from dex_buy_tracker.tracker.models import ChainRuntime, PairRuntime, ProtocolVersion, TransportKind

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 4.0
DEFAULT_POLL_MAX_BLOCK_SPAN = 500
DEFAULT_RECONNECT_INITIAL_DELAY = 1.0
DEFAULT_RECONNECT_MAX_DELAY = 60.0
DEFAULT_RECONNECT_JITTER = 0.2

PAIR_ABI: list[dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [],
        "name": "token0",
        "outputs": [{"name": "", "type": "address"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "token1",
        "outputs": [{"name": "", "type": "address"}],
        "type": "function",
    },
]

ERC20_ABI: list[dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
]

LogCallback = Callable[[Mapping[str, Any]], Awaitable[None]]
PoolLogHandler = Callable[[str, str, ProtocolVersion, Mapping[str, Any]], Awaitable[None]]


class ChainHandle(Protocol):
    """One network handle per chain."""

    chain: str
    transport: TransportKind

    def is_alive(self) -> bool: ...

    async def subscribe(self, address: str, topic: str, callback: LogCallback) -> str: ...

    async def unsubscribe(self, subscription_id: str) -> None: ...

    async def pair_tokens(self, pool_address: str) -> tuple[str, str]: ...

    async def token_decimals(self, token: str) -> int: ...

    async def balance_of(self, token: str, holder: str, block: int) -> int: ...

    async def close(self) -> None: ...


HandleFactory = Callable[[ChainEndpoint], Awaitable[ChainHandle]]


@dataclass
class _Subscription:
    address: str
    topic: str
    callback: LogCallback


class Web3ChainHandle:
    """Contract reads and callback dispatch shared by both transports."""

    transport: TransportKind

    def __init__(self, chain: str, w3: AsyncWeb3[Any]) -> None:
        self.chain = chain
        self._w3 = w3
        self._subscriptions: dict[str, _Subscription] = {}
        self._callback_tasks: set[asyncio.Task[None]] = set()
        self._closed = False
        _inject_poa_middleware(w3, chain=chain)

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def _dispatch(self, callback: LogCallback, log: Mapping[str, Any]) -> None:
        # Each log is handled in its own task so a slow lookup never stalls the stream.
        task = asyncio.create_task(callback(log))
        self._callback_tasks.add(task)
        task.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, task: asyncio.Task[None]) -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Log callback failed on %s: %s", self.chain, exc)

    async def pair_tokens(self, pool_address: str) -> tuple[str, str]:
        contract = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(pool_address),
            abi=PAIR_ABI,
        )
        token0 = await contract.functions.token0().call()
        token1 = await contract.functions.token1().call()
        return str(token0).lower(), str(token1).lower()

    async def token_decimals(self, token: str) -> int:
        contract = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(token),
            abi=ERC20_ABI,
        )
        return int(await contract.functions.decimals().call())

    async def balance_of(self, token: str, holder: str, block: int) -> int:
        contract = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(token),
            abi=ERC20_ABI,
        )
        # web3's AsyncContractFunction supports block_identifier for historical state
        balance = await contract.functions.balanceOf(
            AsyncWeb3.to_checksum_address(holder)
        ).call(block_identifier=block)
        return int(balance)


class StreamingChainHandle(Web3ChainHandle):
    """Websocket handle: one ``logs`` subscription per pool and topic."""

    transport = TransportKind.STREAMING

    def __init__(self, chain: str, w3: AsyncWeb3[Any]) -> None:
        super().__init__(chain, w3)
        self._reader: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.create_task(self._read(), name=f"logs-{self.chain}")

    def is_alive(self) -> bool:
        return not self._closed and self._reader is not None and not self._reader.done()

    async def _read(self) -> None:
        try:
            async for message in self._w3.socket.process_subscriptions():
                subscription_id = message.get("subscription")
                entry = self._subscriptions.get(str(subscription_id))
                if entry is None:
                    logger.debug("Dropping log for unknown subscription %s", subscription_id)
                    continue
                self._dispatch(entry.callback, message.get("result") or {})
        except asyncio.CancelledError:
            raise
        except websockets.ConnectionClosed as e:
            logger.warning("Log stream for %s closed (code=%s)", self.chain, e.rcvd.code if e.rcvd else None)
        except Exception as e:
            logger.warning("Log stream for %s ended: %s", self.chain, e)

    async def subscribe(self, address: str, topic: str, callback: LogCallback) -> str:
        if not self.is_alive():
            raise ConnectionLostError(f"{self.chain} stream is not open")
        subscription_id = await self._w3.eth.subscribe(
            "logs",
            {"address": AsyncWeb3.to_checksum_address(address), "topics": [topic]},
        )
        key = str(subscription_id)
        self._subscriptions[key] = _Subscription(address.lower(), topic, callback)
        return key

    async def unsubscribe(self, subscription_id: str) -> None:
        entry = self._subscriptions.pop(subscription_id, None)
        if entry is None or not self.is_alive():
            return
        try:
            await self._w3.eth.unsubscribe(subscription_id)
        except Exception as e:
            logger.debug("Unsubscribe %s on %s failed: %s", subscription_id, self.chain, e)

    async def close(self) -> None:
        if self._closed:
            return
        for subscription_id in list(self._subscriptions):
            await self.unsubscribe(subscription_id)
        self._closed = True
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
        with contextlib.suppress(Exception):
            await self._w3.provider.disconnect()


class PollingChainHandle(Web3ChainHandle):
    """HTTP handle: polls ``eth_getLogs`` for every registered pool and topic."""

    transport = TransportKind.POLLING

    def __init__(
        self,
        chain: str,
        w3: AsyncWeb3[Any],
        *,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_block_span: int = DEFAULT_POLL_MAX_BLOCK_SPAN,
    ) -> None:
        super().__init__(chain, w3)
        self._poll_interval = poll_interval_seconds
        self._max_block_span = max_block_span
        self._ids = itertools.count(1)
        self._last_block: int | None = None
        self._stop_event = asyncio.Event()
        self._poller: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._poller is None:
            self._poller = asyncio.create_task(self._poll_loop(), name=f"poll-{self.chain}")

    def is_alive(self) -> bool:
        return not self._closed

    async def subscribe(self, address: str, topic: str, callback: LogCallback) -> str:
        if self._closed:
            raise ConnectionLostError(f"{self.chain} poller is closed")
        subscription_id = f"poll-{next(self._ids)}"
        self._subscriptions[subscription_id] = _Subscription(address.lower(), topic, callback)
        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> None:
        self._subscriptions.pop(subscription_id, None)

    async def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("Log poll failed on %s: %s", self.chain, e)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
            except TimeoutError:
                pass
            except asyncio.CancelledError:
                break

    async def poll_once(self) -> int:
        """Fetch logs for the next block range; returns the number routed."""
        latest = int(await self._w3.eth.block_number)
        if self._last_block is None:
            self._last_block = latest
            return 0
        if latest <= self._last_block:
            return 0

        from_block = self._last_block + 1
        to_block = min(latest, from_block + self._max_block_span - 1)
        routes: dict[tuple[str, str], list[LogCallback]] = {}
        for entry in self._subscriptions.values():
            routes.setdefault((entry.address, entry.topic), []).append(entry.callback)

        routed = 0
        if routes:
            addresses = sorted({address for address, _ in routes})
            topics = sorted({topic for _, topic in routes})
            logs = await self._w3.eth.get_logs(
                {
                    "fromBlock": from_block,
                    "toBlock": to_block,
                    "address": [AsyncWeb3.to_checksum_address(a) for a in addresses],
                    "topics": [topics],
                }
            )
            for log in logs:
                topics_in_log = log.get("topics") or []
                if not topics_in_log:
                    continue
                topic0 = _hex(topics_in_log[0]).lower()
                key = (str(log.get("address") or "").lower(), topic0)
                for callback in routes.get(key, []):
                    self._dispatch(callback, log)
                    routed += 1

        self._last_block = to_block
        return routed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._subscriptions.clear()
        self._stop_event.set()
        if self._poller is not None:
            self._poller.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poller


def _hex(value: Any) -> str:
    if isinstance(value, str):
        return value if value.startswith("0x") else "0x" + value
    return "0x" + bytes(value).hex()


def _inject_poa_middleware(client: AsyncWeb3[Any], *, chain: str) -> None:
    try:
        client.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    except Exception as e:
        logger.warning("Failed to inject PoA middleware (chain=%s): %s", chain, e)


async def create_chain_handle(
    endpoint: ChainEndpoint,
    *,
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    poll_max_block_span: int = DEFAULT_POLL_MAX_BLOCK_SPAN,
) -> ChainHandle:
    """Open a handle for ``endpoint``: streaming for ws(s), polling otherwise.

    Raises:
        ConnectionLostError: If the endpoint cannot be reached.
    """
    if endpoint.is_streaming:
        try:
            w3 = await AsyncWeb3(WebSocketProvider(endpoint.rpc_url))
        except Exception as e:
            raise ConnectionLostError(f"Failed to open stream for {endpoint.chain}: {e}") from e
        streaming = StreamingChainHandle(endpoint.chain, w3)
        streaming.start()
        return streaming

    w3_http = AsyncWeb3(AsyncHTTPProvider(endpoint.rpc_url))
    if not await w3_http.is_connected():
        raise ConnectionLostError(f"RPC endpoint for {endpoint.chain} is unreachable")
    polling = PollingChainHandle(
        endpoint.chain,
        w3_http,
        poll_interval_seconds=poll_interval_seconds,
        max_block_span=poll_max_block_span,
    )
    polling.start()
    return polling


class ReconnectBackoff:
    """Bounded exponential backoff with jitter and no attempt cap."""

    def __init__(
        self,
        *,
        initial_delay: float = DEFAULT_RECONNECT_INITIAL_DELAY,
        max_delay: float = DEFAULT_RECONNECT_MAX_DELAY,
        jitter: float = DEFAULT_RECONNECT_JITTER,
        rng: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._initial = initial_delay
        self._max = max_delay
        self._jitter = jitter
        self._rng = rng
        self._clock = clock
        self.failures = 0
        self.next_attempt_at = 0.0

    def ready(self) -> bool:
        return self._clock() >= self.next_attempt_at

    def record_failure(self) -> float:
        """Register a failed attempt and return the delay before the next one."""
        self.failures += 1
        base = min(self._max, self._initial * 2 ** (self.failures - 1))
        delay = max(0.0, base * (1 + self._jitter * (2 * self._rng() - 1)))
        self.next_attempt_at = self._clock() + delay
        return delay

    def reset(self) -> None:
        self.failures = 0
        self.next_attempt_at = 0.0


class ConnectionManager:
    """Owns one ChainRuntime per chain and keeps its handle alive.

    Example:
        ```python
        manager = ConnectionManager(settings.chains.endpoints(), on_log=handler.handle_log)
        runtime = await manager.ensure("bsc")
        await manager.check_health()
        ```
    """

    def __init__(
        self,
        endpoints: Mapping[str, ChainEndpoint],
        *,
        on_log: PoolLogHandler,
        handle_factory: HandleFactory = create_chain_handle,
        reconnect_initial_delay: float = DEFAULT_RECONNECT_INITIAL_DELAY,
        reconnect_max_delay: float = DEFAULT_RECONNECT_MAX_DELAY,
        reconnect_jitter: float = DEFAULT_RECONNECT_JITTER,
        rng: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._endpoints = dict(endpoints)
        self._on_log = on_log
        self._handle_factory = handle_factory
        self._backoff_args = {
            "initial_delay": reconnect_initial_delay,
            "max_delay": reconnect_max_delay,
            "jitter": reconnect_jitter,
            "rng": rng,
            "clock": clock,
        }
        self._runtimes: dict[str, ChainRuntime] = {}
        self._backoffs: dict[str, ReconnectBackoff] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def runtimes(self) -> dict[str, ChainRuntime]:
        return self._runtimes

    @property
    def configured_chains(self) -> list[str]:
        return list(self._endpoints)

    def get(self, chain: str) -> ChainRuntime | None:
        return self._runtimes.get(chain)

    def backoff_for(self, chain: str) -> ReconnectBackoff:
        backoff = self._backoffs.get(chain)
        if backoff is None:
            backoff = ReconnectBackoff(**self._backoff_args)
            self._backoffs[chain] = backoff
        return backoff

    def _lock_for(self, chain: str) -> asyncio.Lock:
        lock = self._locks.get(chain)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[chain] = lock
        return lock

    async def _open(self, chain: str) -> ChainHandle | None:
        endpoint = self._endpoints.get(chain)
        if endpoint is None:
            logger.debug("No endpoint configured for chain %s", chain)
            return None
        backoff = self.backoff_for(chain)
        if not backoff.ready():
            return None
        try:
            handle = await self._handle_factory(endpoint)
        except Exception as e:
            delay = backoff.record_failure()
            logger.warning(
                "Failed to connect to %s (attempt %d), retrying in %.1fs: %s",
                chain,
                backoff.failures,
                delay,
                e,
            )
            return None
        backoff.reset()
        return handle

    async def ensure(self, chain: str) -> ChainRuntime | None:
        """Return the chain's runtime, creating its handle on first use.

        Returns None when the chain has no endpoint or the connection attempt
        failed; the caller retries on its next cycle.
        """
        runtime = self._runtimes.get(chain)
        if runtime is not None:
            return runtime

        async with self._lock_for(chain):
            runtime = self._runtimes.get(chain)
            if runtime is not None:
                return runtime
            handle = await self._open(chain)
            if handle is None:
                return None
            endpoint = self._endpoints[chain]
            runtime = ChainRuntime(
                chain=chain,
                rpc_url=endpoint.rpc_url,
                transport=handle.transport,
                handle=handle,
            )
            self._runtimes[chain] = runtime
            logger.info("Connected to %s via %s transport", chain, handle.transport.value)
            return runtime

    def callback_for(self, chain: str, address: str, version: ProtocolVersion) -> LogCallback:
        return functools.partial(self._on_log, chain, address, version)

    async def subscribe_pair(self, handle: ChainHandle, chain: str, pair: PairRuntime) -> dict[ProtocolVersion, str]:
        """Subscribe every protocol version's swap topic for one pool."""
        subscriptions: dict[ProtocolVersion, str] = {}
        try:
            for version, topic in SWAP_TOPICS.items():
                subscriptions[version] = await handle.subscribe(
                    pair.address, topic, self.callback_for(chain, pair.address, version)
                )
        except Exception:
            for subscription_id in subscriptions.values():
                with contextlib.suppress(Exception):
                    await handle.unsubscribe(subscription_id)
            raise
        return subscriptions

    async def unsubscribe_pair(self, handle: ChainHandle, pair: PairRuntime) -> None:
        for subscription_id in list(pair.subscriptions.values()):
            try:
                await handle.unsubscribe(subscription_id)
            except Exception as e:
                logger.debug("Unsubscribe %s failed: %s", subscription_id, e)
        pair.subscriptions.clear()

    async def check_health(self) -> list[str]:
        """Replace dead streaming handles, reattaching every tracked pool.

        Returns:
            Chains whose handle was replaced this cycle.
        """
        repaired: list[str] = []
        for chain, runtime in list(self._runtimes.items()):
            if runtime.transport is not TransportKind.STREAMING or runtime.handle.is_alive():
                continue
            async with self._lock_for(chain):
                if await self._reconnect(chain, runtime):
                    repaired.append(chain)
        return repaired

    async def _reconnect(self, chain: str, runtime: ChainRuntime) -> bool:
        logger.warning("Connection to %s is down, reconnecting", chain)
        new_handle = await self._open(chain)
        if new_handle is None:
            return False

        if self._runtimes.get(chain) is not runtime:
            # Runtime was cleared while connecting.
            await new_handle.close()
            return False

        pairs = list(runtime.pairs.values())
        attached: dict[str, dict[ProtocolVersion, str]] = {}
        try:
            for pair in pairs:
                attached[pair.address] = await self.subscribe_pair(new_handle, chain, pair)
        except Exception as e:
            delay = self.backoff_for(chain).record_failure()
            logger.warning(
                "Failed to reattach pools on %s, retrying in %.1fs: %s", chain, delay, e
            )
            with contextlib.suppress(Exception):
                await new_handle.close()
            return False

        if self._runtimes.get(chain) is not runtime:
            with contextlib.suppress(Exception):
                await new_handle.close()
            return False

        old_handle = runtime.handle
        runtime.handle = new_handle
        runtime.transport = new_handle.transport
        for pair in pairs:
            if runtime.pairs.get(pair.address) is pair:
                pair.subscriptions = attached[pair.address]
            else:
                for subscription_id in attached[pair.address].values():
                    with contextlib.suppress(Exception):
                        await new_handle.unsubscribe(subscription_id)
        with contextlib.suppress(Exception):
            await old_handle.close()

        logger.info("Reconnected %s and reattached %d pools", chain, len(pairs))
        return True

    async def close_all(self) -> None:
        """Remove every subscription and close every handle."""
        runtimes = list(self._runtimes.values())
        self._runtimes.clear()
        self._backoffs.clear()
        for runtime in runtimes:
            for pair in runtime.pairs.values():
                await self.unsubscribe_pair(runtime.handle, pair)
            runtime.pairs.clear()
            try:
                await runtime.handle.close()
            except Exception as e:
                logger.warning("Failed to close %s handle: %s", runtime.chain, e)
