"""
Unit tests for chain/contract_reader.py.

All tests mock the AsyncWeb3 instance and contract calls to avoid real RPC
connections. Tests verify users() struct mapping by ABI output names,
public-key extraction, block timestamp lookup, and error wrapping.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from web3.exceptions import BlockNotFound

from chain.contract_reader import ContractReader, ContractReaderError
from config.loader import get_config

CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
SAMPLE_USER = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"

# users(address) -> (name, role, hospitalId, isVerified, publicKey)
SAMPLE_USER_STRUCT = ("Dana", 1, 3, True, "0x04deadbeef")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_w3():
    w3 = MagicMock()
    w3.is_connected = AsyncMock(return_value=True)
    w3.eth.get_block = AsyncMock(return_value={"number": 100, "timestamp": 1_700_000_000})

    contract = MagicMock()
    contract.functions.users.return_value.call = AsyncMock(return_value=SAMPLE_USER_STRUCT)
    w3.eth.contract.return_value = contract
    return w3


@pytest.fixture
def reader(mock_w3):
    with patch("chain.contract_reader.setup_module_logger") as mock_logger:
        mock_logger.return_value = MagicMock()
        return ContractReader(mock_w3, CONTRACT.lower(), get_config().get_abi("medical_records"))


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_contract_built_with_checksum_address(self, reader, mock_w3):
        kwargs = mock_w3.eth.contract.call_args.kwargs
        assert kwargs["address"] == CONTRACT
        assert reader.contract is mock_w3.eth.contract.return_value

    def test_user_fields_from_abi(self, reader):
        assert reader._user_fields == ["name", "role", "hospitalId", "isVerified", "publicKey"]

    @pytest.mark.asyncio
    async def test_is_connected_swallows_transport_error(self, reader, mock_w3):
        mock_w3.is_connected.side_effect = OSError("refused")
        assert await reader.is_connected() is False


# ---------------------------------------------------------------------------
# users(address)
# ---------------------------------------------------------------------------


class TestGetUser:
    @pytest.mark.asyncio
    async def test_maps_tuple_by_output_names(self, reader, mock_w3):
        user = await reader.get_user(SAMPLE_USER.lower())

        assert user == {
            "name": "Dana",
            "role": 1,
            "hospitalId": 3,
            "isVerified": True,
            "publicKey": "0x04deadbeef",
        }
        mock_w3.eth.contract.return_value.functions.users.assert_called_once_with(SAMPLE_USER)

    @pytest.mark.asyncio
    async def test_call_failure_wrapped(self, reader, mock_w3):
        call = mock_w3.eth.contract.return_value.functions.users.return_value.call
        call.side_effect = ValueError("execution reverted")

        with pytest.raises(ContractReaderError, match="execution reverted"):
            await reader.get_user(SAMPLE_USER)
        reader._logger.error.assert_called_once()

    @pytest.mark.asyncio
    async def test_invalid_address_wrapped(self, reader):
        with pytest.raises(ContractReaderError):
            await reader.get_user("not-an-address")


class TestGetPublicKey:
    @pytest.mark.asyncio
    async def test_returns_key(self, reader):
        assert await reader.get_public_key(SAMPLE_USER) == "0x04deadbeef"

    @pytest.mark.asyncio
    async def test_empty_key(self, reader, mock_w3):
        call = mock_w3.eth.contract.return_value.functions.users.return_value.call
        call.return_value = ("Dana", 0, 0, False, "")
        assert await reader.get_public_key(SAMPLE_USER) == ""


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------


class TestGetBlockTimestamp:
    @pytest.mark.asyncio
    async def test_returns_timestamp(self, reader, mock_w3):
        assert await reader.get_block_timestamp(100) == 1_700_000_000
        mock_w3.eth.get_block.assert_awaited_once_with(100)

    @pytest.mark.asyncio
    async def test_block_not_found_returns_none(self, reader, mock_w3):
        mock_w3.eth.get_block.side_effect = BlockNotFound("Block with id: '0x64' not found.")

        assert await reader.get_block_timestamp(100) is None
        reader._logger.warning.assert_called_once()
        reader._logger.error.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_block_returns_none(self, reader, mock_w3):
        mock_w3.eth.get_block.return_value = None
        assert await reader.get_block_timestamp(100) is None

    @pytest.mark.asyncio
    async def test_rpc_failure_wrapped(self, reader, mock_w3):
        mock_w3.eth.get_block.side_effect = TimeoutError("rpc timeout")
        with pytest.raises(ContractReaderError):
            await reader.get_block_timestamp(100)
