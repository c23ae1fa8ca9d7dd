"""
Chain event model and contract log decoder.

Every event the indexer projects is a member of the closed EventKind
enumeration. Raw logs delivered by the subscription are matched on topic0
and decoded against the contract ABI into ChainEvent values, which carry
the decoded arguments, the originating transaction hash, and an on-demand
accessor for the containing block's timestamp.

Usage:
    decoder = ContractEventDecoder(contract, block_timestamp_fetcher=reader.get_block_timestamp)
    event = decoder.decode(raw_log)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Mapping

from web3 import Web3


class EventKind(Enum):
    REGISTRATION_REQUESTED = "RegistrationRequested"
    HOSPITAL_VERIFIED = "HospitalVerified"
    HOSPITAL_REVOKED = "HospitalRevoked"
    ROLE_ASSIGNED = "RoleAssigned"
    ROLE_REVOKED = "RoleRevoked"
    PUBLIC_KEY_SAVED = "PublicKeySaved"
    RECORD_ADDED = "RecordAdded"
    PROFESSIONAL_ACCESS_REQUESTED = "ProfessionalAccessRequested"
    ACCESS_GRANTED = "AccessGranted"
    ACCESS_REVOKED = "AccessRevoked"


class EventDecodeError(Exception):
    """Raised when a log matches a known topic but its payload cannot be decoded."""


BlockTimestampFetcher = Callable[[int], Awaitable["int | None"]]


@dataclass(frozen=True)
class ChainEvent:
    kind: EventKind
    args: Mapping[str, Any]
    tx_hash: str
    block_number: int | None = None
    log_index: int | None = None
    fetch_block_timestamp: Callable[[], Awaitable[int | None]] | None = field(
        default=None, compare=False, repr=False
    )

    @property
    def name(self) -> str:
        return self.kind.value

    async def get_block_timestamp(self) -> int | None:
        """Resolve the containing block's timestamp (epoch seconds), or None if unavailable."""
        if self.fetch_block_timestamp is None:
            return None
        return await self.fetch_block_timestamp()


def to_hex_str(value: Any) -> str:
    """Normalize bytes / HexBytes / hex string to a lower-case 0x-prefixed string."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


def event_signature(event_abi: Mapping[str, Any]) -> str:
    types = ",".join(_canonical_type(i) for i in event_abi.get("inputs", []))
    return f"{event_abi['name']}({types})"


def _canonical_type(abi_input: Mapping[str, Any]) -> str:
    abi_type = abi_input["type"]
    if abi_type.startswith("tuple"):
        inner = ",".join(_canonical_type(c) for c in abi_input.get("components", []))
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


def event_topics(abi: list) -> dict[str, EventKind]:
    """Map topic0 hashes to EventKind for every indexed event declared in the ABI."""
    known = {kind.value: kind for kind in EventKind}
    topics: dict[str, EventKind] = {}
    for entry in abi:
        if entry.get("type") != "event" or entry.get("name") not in known:
            continue
        topic0 = to_hex_str(Web3.keccak(text=event_signature(entry)))
        topics[topic0] = known[entry["name"]]
    return topics


class ContractEventDecoder:
    """
    Decode raw contract logs into ChainEvent values.

    Holds no connection of its own: ``process_log`` is local ABI decoding, so
    the same decoder survives subscription reconnects.
    """

    def __init__(
        self,
        contract: Any,
        block_timestamp_fetcher: BlockTimestampFetcher | None = None,
    ) -> None:
        self._contract = contract
        self._block_timestamp_fetcher = block_timestamp_fetcher
        self._topic_to_kind = event_topics(contract.abi)

        missing = set(EventKind) - set(self._topic_to_kind.values())
        if missing:
            raise EventDecodeError(
                "Contract ABI is missing events: " + ", ".join(sorted(k.value for k in missing))
            )

    @property
    def topics(self) -> list[str]:
        """All topic0 hashes to subscribe to."""
        return list(self._topic_to_kind)

    def decode(self, log: Mapping[str, Any]) -> ChainEvent | None:
        """
        Decode a single log entry.

        Returns None for logs whose topic0 is not an indexed event.
        Raises EventDecodeError when a known event fails to decode.
        """
        topics = log.get("topics") or []
        if not topics:
            return None
        kind = self._topic_to_kind.get(to_hex_str(topics[0]))
        if kind is None:
            return None

        try:
            event_data = getattr(self._contract.events, kind.value)().process_log(log)
        except Exception as e:
            raise EventDecodeError(f"Failed to decode {kind.value}: {e}") from e

        block_number = event_data.get("blockNumber")
        fetcher = None
        if self._block_timestamp_fetcher is not None and block_number is not None:
            fetcher = partial(self._block_timestamp_fetcher, int(block_number))

        return ChainEvent(
            kind=kind,
            args=dict(event_data["args"]),
            tx_hash=to_hex_str(event_data.get("transactionHash", "")),
            block_number=int(block_number) if block_number is not None else None,
            log_index=event_data.get("logIndex"),
            fetch_block_timestamp=fetcher,
        )
