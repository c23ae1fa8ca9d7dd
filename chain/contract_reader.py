"""
Read-only MedicalRecords contract client.

Owns its own HTTP connection, independent of the WebSocket subscription, so
reads issued from projection handlers (current public key, block timestamps)
are unaffected by subscription reconnects.

Usage:
    from web3 import AsyncWeb3, AsyncHTTPProvider
    from chain.contract_reader import ContractReader

    w3 = AsyncWeb3(AsyncHTTPProvider(provider_url))
    reader = ContractReader(w3, contract_address, abi)
    key = await reader.get_public_key(user_address)
"""

from __future__ import annotations

from typing import Any

from web3 import AsyncWeb3, Web3
from web3.exceptions import BlockNotFound

from indexer_logging.logger_manager import setup_module_logger


class ContractReaderError(Exception):
    """Raised when a read-only contract or block call fails."""


class ContractReader:
    """
    Async read wrapper for the MedicalRecords contract.

    Accepts an AsyncWeb3 instance via dependency injection so tests can
    substitute a fake provider.
    """

    def __init__(self, w3: AsyncWeb3, contract_address: str, abi: list) -> None:
        self._w3 = w3
        self._contract = w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=abi,
        )
        self._user_fields = _output_names(abi, "users")
        self._logger = setup_module_logger(
            "contract_reader", "contract_reader.log", module_folder="Contract_Reader_Logs"
        )

    @property
    def contract(self) -> Any:
        return self._contract

    async def is_connected(self) -> bool:
        try:
            return bool(await self._w3.is_connected())
        except Exception as e:
            self._logger.warning("HTTP provider connectivity check failed: %s", e)
            return False

    async def get_user(self, address: str) -> dict[str, Any]:
        """
        Read the on-chain ``users(address)`` struct.

        Returns a dict keyed by the ABI output names; positional results are
        mapped by index so struct layout changes only require an ABI update.
        """
        try:
            checksum = Web3.to_checksum_address(address)
            result = await self._contract.functions.users(checksum).call()
        except Exception as e:
            self._logger.error("Failed to read users(%s): %s", address, e)
            raise ContractReaderError(f"users({address}) failed: {e}") from e

        if isinstance(result, dict):
            return dict(result)
        if not isinstance(result, (list, tuple)):
            result = (result,)
        return {name: value for name, value in zip(self._user_fields, result)}

    async def get_public_key(self, address: str) -> str:
        """Current on-chain public key for a user ("" when none saved)."""
        user = await self.get_user(address)
        public_key = user.get("publicKey") or ""
        if isinstance(public_key, (bytes, bytearray)):
            public_key = "0x" + bytes(public_key).hex() if public_key else ""
        return public_key

    async def get_block_timestamp(self, block_number: int) -> int | None:
        """
        Timestamp (epoch seconds) of a block, or None when the node does not
        return the block.
        """
        try:
            block = await self._w3.eth.get_block(block_number)
        except BlockNotFound:
            self._logger.warning("Block %s not found", block_number)
            return None
        except Exception as e:
            self._logger.error("Failed to get block %s: %s", block_number, e)
            raise ContractReaderError(f"get_block({block_number}) failed: {e}") from e
        if not block:
            return None
        timestamp = block.get("timestamp")
        return int(timestamp) if timestamp is not None else None


def _output_names(abi: list, function_name: str) -> list[str]:
    for entry in abi:
        if entry.get("type") == "function" and entry.get("name") == function_name:
            return [o.get("name") or f"_{i}" for i, o in enumerate(entry.get("outputs", []))]
    return []
