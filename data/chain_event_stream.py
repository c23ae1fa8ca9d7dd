"""
Chain event stream - live subscription to MedicalRecords contract logs.

Purpose:
    Keep one WebSocket log subscription to the contract alive, decode each log
    into a ChainEvent, and hand it to the dispatcher. Transport faults never
    escape: construction errors (bad endpoint), subscribe errors, dropped
    connections and a silently ended stream all lead to the same loop of
    log, wait a fixed delay, reconnect. There is no retry limit.

Subscription lifecycle:
    DISCONNECTED -> CONNECTING -> SUBSCRIBED -> DISCONNECTED -> ...
    Entering SUBSCRIBED always issues a fresh eth_subscribe built from the
    decoder's topic set; nothing from a previous connection is reused.

Only web3's public persistent-provider API is used (AsyncWeb3 +
WebSocketProvider, eth.subscribe, socket.process_subscriptions).

Checkpointing:
    None. Events emitted while disconnected are not replayed.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

from web3 import AsyncWeb3, Web3, WebSocketProvider

from chain.events import ChainEvent, ContractEventDecoder, EventDecodeError
from indexer_logging.logger_manager import setup_module_logger
from shared.constants import DEFAULT_RECONNECT_DELAY_SECONDS
from shared.types import SubscriptionState


class EventSource(Protocol):
    """
    One connection's worth of subscription. Used as an async context manager;
    ``subscribe`` is called once after entering, then ``events`` is iterated
    until the connection drops.
    """

    async def __aenter__(self) -> "EventSource": ...

    async def __aexit__(self, exc_type, exc, tb) -> None: ...

    async def subscribe(self) -> str: ...

    def events(self) -> AsyncIterator[ChainEvent]: ...


def build_log_filter(contract_address: str, topics: list[str]) -> dict[str, Any]:
    """eth_subscribe("logs") filter: the contract address, topic0 in any indexed event."""
    return {
        "address": Web3.to_checksum_address(contract_address),
        "topics": [list(topics)],
    }


# ============================================================================
# WEB3 WEBSOCKET SOURCE
# ============================================================================


class Web3EventSource:
    """Log subscription over web3's persistent WebSocketProvider."""

    def __init__(
        self,
        ws_url: str,
        contract_address: str,
        decoder: ContractEventDecoder,
    ) -> None:
        self._ws_url = ws_url
        self._contract_address = contract_address
        self._decoder = decoder
        self._w3: AsyncWeb3 | None = None
        self._logger = setup_module_logger(
            "event_stream", "event_stream.log", module_folder="Event_Stream_Logs"
        )

    async def __aenter__(self) -> "Web3EventSource":
        self._w3 = await AsyncWeb3(WebSocketProvider(self._ws_url))
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._w3 is None:
            return
        try:
            await self._w3.provider.disconnect()
        except Exception as e:
            self._logger.warning("[WEBSOCKET] Error while disconnecting: %s", e)
        finally:
            self._w3 = None

    async def subscribe(self) -> str:
        log_filter = build_log_filter(self._contract_address, self._decoder.topics)
        subscription_id = await self._w3.eth.subscribe("logs", log_filter)
        return str(subscription_id)

    async def events(self) -> AsyncIterator[ChainEvent]:
        async for response in self._w3.socket.process_subscriptions():
            log = response.get("result") if isinstance(response, dict) else None
            if not log:
                continue
            try:
                event = self._decoder.decode(log)
            except EventDecodeError as e:
                self._logger.warning(
                    "[WEBSOCKET] Skipping undecodable log: %s",
                    e,
                    extra={
                        "tx_hash": str(log.get("transactionHash", "")),
                        "block_number": log.get("blockNumber"),
                        "error": str(e),
                    },
                )
                continue
            if event is not None:
                yield event


# ============================================================================
# CONNECTION MANAGER
# ============================================================================


class ConnectionManager:
    """
    Owns the live subscription and its reconnect loop.

    ``source_factory`` builds a fresh EventSource per attempt; construction
    failures are handled exactly like runtime transport faults.
    """

    def __init__(
        self,
        source_factory: Callable[[], EventSource],
        on_event: Callable[[ChainEvent], Awaitable[None]],
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source_factory = source_factory
        self._on_event = on_event
        self._reconnect_delay = reconnect_delay
        self._sleep = sleep

        self._state = SubscriptionState.DISCONNECTED
        self._running = False
        self._connections = 0
        self._failures = 0

        self._logger = setup_module_logger(
            "connection_manager", "connection_manager.log", module_folder="Event_Stream_Logs"
        )

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def connections(self) -> int:
        """Number of times the subscription reached SUBSCRIBED."""
        return self._connections

    @property
    def failures(self) -> int:
        return self._failures

    def _set_state(self, state: SubscriptionState) -> None:
        if state is self._state:
            return
        self._logger.info(
            "Subscription state %s -> %s",
            self._state.value,
            state.value,
            extra={"subscription_state": state.value},
        )
        self._state = state

    async def run(self) -> None:
        """Reconnect loop - designed to be launched as an asyncio.Task."""
        self._running = True
        while self._running:
            self._set_state(SubscriptionState.CONNECTING)
            try:
                source = self._source_factory()
                async with source:
                    await self._enter_subscribed(source)
                    async for event in source.events():
                        await self._on_event(event)
                    if self._running:
                        raise ConnectionError("subscription stream ended")
            except asyncio.CancelledError:
                self._set_state(SubscriptionState.DISCONNECTED)
                raise
            except Exception as e:
                self._failures += 1
                self._logger.error(
                    "[WEBSOCKET] Subscription failed: %s. Retrying in %s seconds...",
                    e,
                    self._reconnect_delay,
                )
            self._set_state(SubscriptionState.DISCONNECTED)
            if self._running:
                await self._sleep(self._reconnect_delay)

    def stop(self) -> None:
        self._running = False

    async def _enter_subscribed(self, source: EventSource) -> None:
        subscription_id = await source.subscribe()
        self._connections += 1
        self._set_state(SubscriptionState.SUBSCRIBED)
        if self._connections == 1:
            self._logger.info("[WEBSOCKET] Connected. Subscription ID: %s", subscription_id)
        else:
            self._logger.info(
                "[WEBSOCKET] Re-connected (connection #%d). Subscription ID: %s",
                self._connections,
                subscription_id,
            )
