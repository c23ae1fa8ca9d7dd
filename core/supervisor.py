"""
Process supervisor - process-wide crash policy for the indexer.

Any failure that escapes a per-event failure boundary is fatal: it is logged
at CRITICAL and the process shuts down with exit code 1 so that an external
process manager can restart it into a known-good state. SIGINT/SIGTERM log a
graceful shutdown line and exit with code 0.

Shutdown never drains: supervised tasks are cancelled and whatever they had
in flight is abandoned.

Usage:
    supervisor = ProcessSupervisor()
    supervisor.install(asyncio.get_running_loop())
    supervisor.watch(asyncio.create_task(dispatcher.run(), name="event_dispatcher"), dispatcher.stop)
    exit_code = await supervisor.wait()
"""

from __future__ import annotations

import asyncio
import signal
from typing import Any, Callable

from indexer_logging.logger_manager import setup_module_logger

EXIT_OK = 0
EXIT_FATAL = 1


class ProcessSupervisor:
    """Owns the shutdown event, the exit code and the supervised tasks."""

    def __init__(self) -> None:
        self._shutdown_event = asyncio.Event()
        self._exit_code = EXIT_OK
        self._tasks: list[asyncio.Task[Any]] = []
        self._stop_callbacks: list[Callable[[], None]] = []
        self._logger = setup_module_logger(
            "supervisor", "supervisor.log", module_folder="Supervisor_Logs", console=True
        )

    @property
    def exit_code(self) -> int:
        return self._exit_code

    @property
    def shutting_down(self) -> bool:
        return self._shutdown_event.is_set()

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------

    def install(self, loop: asyncio.AbstractEventLoop) -> None:
        """Register SIGINT/SIGTERM handlers and the loop-level exception handler."""
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
            except NotImplementedError:
                self._logger.warning("Signal handlers unsupported on this platform (%s)", sig.name)
        loop.set_exception_handler(self._handle_loop_exception)

    def watch(self, task: asyncio.Task[Any], stop: Callable[[], None] | None = None) -> None:
        """
        Supervise a long-running task. Its failure, or its returning at all
        before shutdown, is fatal. ``stop`` is called on shutdown before the
        task is cancelled.
        """
        self._tasks.append(task)
        if stop is not None:
            self._stop_callbacks.append(stop)
        task.add_done_callback(self._task_done_callback)

    # ------------------------------------------------------------------
    # Shutdown paths
    # ------------------------------------------------------------------

    def request_shutdown(self, sig: signal.Signals | None = None) -> None:
        """Graceful path (signals)."""
        if self._shutdown_event.is_set():
            return
        name = sig.name if sig is not None else "shutdown request"
        self._logger.info("Received %s - shutting down indexer gracefully", name)
        self._shutdown_event.set()

    def fail(self, reason: str, exc: BaseException | None = None) -> None:
        """Fatal path: log CRITICAL, set exit code 1, begin shutdown."""
        self._logger.critical("Fatal error, terminating indexer: %s", reason, exc_info=exc)
        self._exit_code = EXIT_FATAL
        self._shutdown_event.set()

    def _handle_loop_exception(
        self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
    ) -> None:
        exc = context.get("exception")
        message = context.get("message", "unhandled exception in event loop")
        self.fail(f"{message}: {exc}" if exc is not None else message, exc)

    def _task_done_callback(self, task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            if not self.shutting_down:
                self.fail(f"Task {task.get_name()} was cancelled unexpectedly")
            return

        exc = task.exception()
        if exc is not None:
            self.fail(f"Task {task.get_name()} failed with unhandled exception: {exc}", exc)
        elif not self.shutting_down:
            self.fail(f"Task {task.get_name()} exited unexpectedly")

    # ------------------------------------------------------------------
    # Main wait
    # ------------------------------------------------------------------

    async def wait(self) -> int:
        """Block until shutdown, then cancel supervised tasks. Returns the exit code."""
        try:
            await self._shutdown_event.wait()
        finally:
            self._logger.info("Shutting down - cancelling tasks")
            # Flag set before cancelling so done callbacks see an expected shutdown.
            self._shutdown_event.set()

            for stop in self._stop_callbacks:
                stop()
            for task in self._tasks:
                if not task.done():
                    task.cancel()

            results = await asyncio.gather(*self._tasks, return_exceptions=True)
            for task, result in zip(self._tasks, results):
                if isinstance(result, Exception):
                    self._logger.error("Task %s exited with error: %s", task.get_name(), result)

            self._logger.info("Shutdown complete (exit code %d)", self._exit_code)
        return self._exit_code
