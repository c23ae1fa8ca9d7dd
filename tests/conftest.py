"""
Shared pytest configuration and fixtures for the indexer tests.

Provides a real SQLite projection store, a fake read-only chain client,
projection handlers wired to both, and a ChainEvent factory.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from chain.events import ChainEvent, EventKind

SAMPLE_TX_HASH = "0x" + "ab" * 32


# ---------------------------------------------------------------------------
# Store / reader / handlers
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_path):
    """ProjectionStore on a temp SQLite file, logger patched out."""
    with patch("core.projection_store.setup_module_logger") as mock_logger:
        mock_logger.return_value = MagicMock()
        from core.projection_store import ProjectionStore

        s = ProjectionStore(str(tmp_path / "projection.db"))
    yield s
    s.close()


@pytest.fixture
def fake_reader():
    """Read-only chain client double; get_public_key returns a fixed key."""
    reader = MagicMock()
    reader.get_public_key = AsyncMock(return_value="0x04deadbeef")
    reader.get_block_timestamp = AsyncMock(return_value=1_700_000_000)
    return reader


@pytest.fixture
def handlers(store, fake_reader):
    """ProjectionHandlers wired to the temp store and fake reader."""
    with patch("core.projection_handlers.setup_module_logger") as mock_logger:
        mock_logger.return_value = MagicMock()
        from core.projection_handlers import ProjectionHandlers

        return ProjectionHandlers(store, fake_reader)


# ---------------------------------------------------------------------------
# Event factory
# ---------------------------------------------------------------------------


@pytest.fixture
def make_event():
    """
    Build a ChainEvent.

    Usage:
        event = make_event(EventKind.ROLE_REVOKED, user=DOCTOR)
        event = make_event(EventKind.ACCESS_GRANTED, block_timestamp=1700000000, ...)
    """

    def _make(kind: EventKind, tx_hash: str = SAMPLE_TX_HASH, block_timestamp=..., **args):
        fetcher = None
        if block_timestamp is not ...:
            fetcher = AsyncMock(return_value=block_timestamp)
        return ChainEvent(
            kind=kind,
            args=args,
            tx_hash=tx_hash,
            block_number=100,
            log_index=0,
            fetch_block_timestamp=fetcher,
        )

    return _make
