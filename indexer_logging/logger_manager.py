"""
Centralized logging for the medical records chain indexer.

Provides standardized logging with JSON and human-readable formatters and
per-module log files under logs/<Module_Folder>/. The file format is chosen
by ``logging.format`` in config/app.json ("human" or "json"), overridable with
the LOG_FORMAT environment variable.

Usage:
    from indexer_logging.logger_manager import setup_module_logger, create_module_log_directories

    create_module_log_directories()
    logger = setup_module_logger('projection_handlers', 'projection_handlers.log', module_folder='Projection_Logs')
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

# Resolve project root
_PROJECT_ROOT = Path(__file__).parent.parent

# Load logging config
try:
    from config.loader import get_config

    _app_config = get_config().get_app_config()
except ImportError:
    _app_config = {}

_LOGGING_CONFIG = _app_config.get("logging", {})
_LOG_DIR = str(_PROJECT_ROOT / _LOGGING_CONFIG.get("log_dir", "logs"))
_MODULE_FOLDERS = _LOGGING_CONFIG.get(
    "module_folders",
    {
        "main": "Main_Logs",
        "event_stream": "Event_Stream_Logs",
        "contract_reader": "Contract_Reader_Logs",
        "projection_handlers": "Projection_Logs",
        "event_dispatcher": "Dispatcher_Logs",
        "projection_store": "Store_Logs",
        "supervisor": "Supervisor_Logs",
    },
)


def json_logging_enabled() -> bool:
    """True when LOG_FORMAT (or logging.format in app.json) selects JSON output."""
    fmt = os.environ.get("LOG_FORMAT") or _LOGGING_CONFIG.get("format", "human")
    return str(fmt).strip().lower() == "json"


# ============================================================================
# FORMATTERS
# ============================================================================


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter with chain-event context support."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        # Include extra fields if present
        for key in (
            "tx_hash",
            "event_name",
            "block_number",
            "subscription_state",
            "collection",
            "error",
        ):
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Pretty-printed log formatter for console and human-readable files."""

    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self.FORMAT, datefmt=self.DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        tx_hash = getattr(record, "tx_hash", None)
        if tx_hash:
            line = f"{line} [tx={tx_hash}]"
        return line


# ============================================================================
# LOGGER FACTORY
# ============================================================================

_logger_cache: dict[str, logging.Logger] = {}


def create_module_log_directories() -> dict[str, str]:
    """
    Create organized log directory structure.

    Returns dict mapping folder key to absolute path.
    """
    created = {}
    os.makedirs(_LOG_DIR, exist_ok=True)
    for key, folder_name in _MODULE_FOLDERS.items():
        folder_path = os.path.join(_LOG_DIR, folder_name)
        os.makedirs(folder_path, exist_ok=True)
        created[key] = folder_path
    return created


def setup_module_logger(
    name: str,
    log_file: str,
    level: int = logging.INFO,
    module_folder: str | None = None,
    use_json_formatter: bool | None = None,
    console: bool = False,
) -> logging.Logger:
    """
    Create a module-specific logger with a file handler and optional console handler.

    Args:
        name: Logger name (should be unique per module/component).
        log_file: Log filename (placed inside module_folder if specified).
        level: Logging level (default INFO).
        module_folder: Subfolder within logs/ directory (e.g., 'Event_Stream_Logs').
        use_json_formatter: Use structured JSON format. None defers to
            json_logging_enabled().
        console: Also emit to stderr (used by the process entrypoint).

    Returns:
        Configured logging.Logger instance.
    """
    # Return cached logger if already created
    cache_key = f"{name}:{module_folder}:{log_file}"
    if cache_key in _logger_cache:
        return _logger_cache[cache_key]

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        _logger_cache[cache_key] = logger
        return logger

    # Determine log file path
    if module_folder:
        log_path = os.path.join(_LOG_DIR, module_folder, log_file)
    else:
        log_path = os.path.join(_LOG_DIR, log_file)
    os.makedirs(os.path.dirname(log_path), exist_ok=True)

    # Select formatter
    formatter: logging.Formatter
    if use_json_formatter is None:
        use_json_formatter = json_logging_enabled()
    if use_json_formatter:
        formatter = JSONFormatter()
    else:
        formatter = HumanReadableFormatter()

    # File handler
    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(level)
        stream_handler.setFormatter(HumanReadableFormatter())
        logger.addHandler(stream_handler)

    # Prevent propagation to root logger
    logger.propagate = False

    _logger_cache[cache_key] = logger
    return logger
