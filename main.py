"""
MedicalRecords Chain Indexer - Main Entrypoint.

Single-process asyncio runner that keeps an off-chain projection of the
MedicalRecords contract in sync with its events:
    1. ConnectionManager  - live WebSocket log subscription, reconnect loop
    2. EventDispatcher    - bounded queue drained by projection workers

Handlers read current chain state over a separate HTTP connection
(ContractReader) that is never torn down by subscription reconnects.
ProcessSupervisor turns any unhandled failure into exit code 1 and
SIGINT/SIGTERM into a graceful exit with code 0.

Usage:
    python main.py
"""

from __future__ import annotations

import asyncio
import sys

from dotenv import load_dotenv

from indexer_logging.logger_manager import create_module_log_directories, setup_module_logger
from config.loader import get_config
from config.validate import ConfigValidationError, validate_all_configs

# ---------------------------------------------------------------------------
# Module logger
# ---------------------------------------------------------------------------
create_module_log_directories()
_logger = setup_module_logger("main", "main.log", module_folder="Main_Logs", console=True)


# ---------------------------------------------------------------------------
# Startup banner
# ---------------------------------------------------------------------------


def _truncate(url: str) -> str:
    return f"{url[:25]}...{url[-6:]}" if len(url) > 31 else url


def _log_banner(
    chain_id: int,
    http_url: str,
    ws_url: str,
    contract_address: str,
    store_path: str,
    worker_count: int,
) -> None:
    """Log a concise startup summary."""
    _logger.info("=" * 60)
    _logger.info("MedicalRecords indexer starting")
    _logger.info("=" * 60)
    _logger.info("  chain_id        : %d", chain_id)
    _logger.info("  rpc (read)      : %s", _truncate(http_url))
    _logger.info("  rpc (subscribe) : %s", _truncate(ws_url))
    _logger.info("  contract        : %s", contract_address)
    _logger.info("  store           : %s", store_path)
    _logger.info("  workers         : %d", worker_count)
    _logger.info("=" * 60)


# ---------------------------------------------------------------------------
# Main async entry
# ---------------------------------------------------------------------------


async def _run() -> int:
    """Wire all components and run until shutdown. Returns the exit code."""
    # ------------------------------------------------------------------
    # 1. Load environment and validate configuration
    # ------------------------------------------------------------------
    load_dotenv()

    try:
        validate_all_configs()
    except ConfigValidationError as exc:
        _logger.critical("Config validation failed:\n%s", exc)
        return 1

    cfg = get_config()
    chain_id = cfg.get_chain_id()
    http_url = cfg.get_http_url()
    ws_url = cfg.get_ws_url()
    contract_address = cfg.get_contract_address()
    store_path = cfg.get_store_path()
    dispatch_cfg = cfg.get_dispatch_settings()

    _log_banner(
        chain_id, http_url, ws_url, contract_address, store_path, dispatch_cfg["worker_count"]
    )

    # ------------------------------------------------------------------
    # 2. Read-only chain client (HTTP, lives for the whole process)
    # ------------------------------------------------------------------
    from web3 import AsyncWeb3
    from web3.providers import AsyncHTTPProvider

    from chain.contract_reader import ContractReader
    from chain.events import ContractEventDecoder
    from shared.constants import CONTRACT_ABI_NAME

    w3 = AsyncWeb3(AsyncHTTPProvider(http_url))
    reader = ContractReader(w3, contract_address, cfg.get_abi(CONTRACT_ABI_NAME))
    if not await reader.is_connected():
        # Reads fail per event until the endpoint recovers; not fatal.
        _logger.warning("Read endpoint %s not reachable at startup", _truncate(http_url))

    decoder = ContractEventDecoder(reader.contract, reader.get_block_timestamp)

    # ------------------------------------------------------------------
    # 3. Projection store, handlers, dispatcher, subscription
    # ------------------------------------------------------------------
    from core.dispatcher import EventDispatcher
    from core.projection_handlers import ProjectionHandlers
    from core.projection_store import ProjectionStore
    from core.supervisor import ProcessSupervisor
    from data.chain_event_stream import ConnectionManager, Web3EventSource

    store = ProjectionStore(store_path)
    handlers = ProjectionHandlers(store, reader)
    dispatcher = EventDispatcher(
        handlers,
        queue_size=dispatch_cfg["queue_size"],
        worker_count=dispatch_cfg["worker_count"],
    )
    connection_manager = ConnectionManager(
        lambda: Web3EventSource(ws_url, contract_address, decoder),
        dispatcher.submit,
        reconnect_delay=cfg.get_reconnect_delay(),
    )

    # ------------------------------------------------------------------
    # 4. Supervise and wait
    # ------------------------------------------------------------------
    supervisor = ProcessSupervisor()
    supervisor.install(asyncio.get_running_loop())

    supervisor.watch(
        asyncio.create_task(dispatcher.run(), name="event_dispatcher"), dispatcher.stop
    )
    supervisor.watch(
        asyncio.create_task(connection_manager.run(), name="connection_manager"),
        connection_manager.stop,
    )
    _logger.info("All tasks launched: event_dispatcher, connection_manager")

    try:
        return await supervisor.wait()
    finally:
        store.close()


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    """Synchronous entry point."""
    try:
        exit_code = asyncio.run(_run())
    except KeyboardInterrupt:
        _logger.info("Interrupted by user")
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
