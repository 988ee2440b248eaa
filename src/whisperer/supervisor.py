"""Server process lifecycle management for the llama.cpp server."""

import asyncio
import logging
import signal
from collections.abc import Callable
from dataclasses import dataclass, field
from types import TracebackType

from whisperer.config import ServerConfig
from whisperer.errors import SpawnFailure

logger = logging.getLogger(__name__)

__all__ = ["ServerExit", "ServerProcess", "build_server_command"]


def build_server_command(config: ServerConfig) -> list[str]:
    """Build the server command line.

    Pure function - easily tested without launching a server.
    """
    return [
        config.binary_path,
        "-m",
        config.model_path,
        "--ctx_size",
        str(config.context_size),
        "--port",
        str(config.port),
    ]


@dataclass(frozen=True)
class ServerExit:
    """How the server process ended.

    Attributes:
        returncode: Exit status, negative for a signal, None if it never spawned
        aborted: True when abort() was called before the process ended
    """

    returncode: int | None
    aborted: bool

    @property
    def expected(self) -> bool:
        """An exit after abort, or a clean exit, is not a server failure."""
        return self.aborted or self.returncode == 0


#: Callback type for exit notifications.
ExitCallback = Callable[[ServerExit], None]


@dataclass
class ServerProcess:
    """Owns the server subprocess from spawn to exit.

    Non-frozen dataclass that manages state. A process is spawned at most
    once per instance. The ``cancelled`` event is the cancellation token:
    it is set by abort() and tells callers to stop polling, while abort()
    itself asks the OS to terminate the child.

    Can be used as an async context manager.
    """

    config: ServerConfig
    _process: asyncio.subprocess.Process | None = field(default=None, init=False)
    _started: bool = field(default=False, init=False)
    _cancelled: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    _exited: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    _exit: ServerExit | None = field(default=None, init=False)
    _callbacks: list[ExitCallback] = field(default_factory=list, init=False)
    _watcher: asyncio.Task[None] | None = field(default=None, init=False)

    @property
    def is_running(self) -> bool:
        """Check if the server process is currently running."""
        return (
            self._process is not None
            and self._exit is None
            and self._process.returncode is None
        )

    @property
    def cancelled(self) -> asyncio.Event:
        """Event set once abort() has been called."""
        return self._cancelled

    @property
    def exit(self) -> ServerExit | None:
        """The recorded exit, or None while the process hasn't ended."""
        return self._exit

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    def on_exit(self, callback: ExitCallback) -> None:
        """Register a callback run exactly once when the process ends.

        Callbacks registered after the exit run immediately.
        """
        if self._exit is not None:
            self._notify(callback, self._exit)
        else:
            self._callbacks.append(callback)

    async def start(self) -> "ServerProcess":
        """Spawn the server subprocess.

        Returns as soon as the process exists; the server may still be
        loading its model, so the first request has to retry.

        Raises:
            RuntimeError: If this instance has already spawned a process
            SpawnFailure: If the binary can't be executed
        """
        if self._started:
            raise RuntimeError("Server has already been started")
        self._started = True

        cmd = build_server_command(self.config)
        logger.info(f"Starting server: {' '.join(cmd)}")

        # stdout/stderr are inherited so server output reaches the terminal as it arrives
        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.error(f"Failed to spawn {self.config.binary_path}: {exc}")
            self._record_exit(None)
            raise SpawnFailure(
                self.config.binary_path, exc.strerror or str(exc)
            ) from exc

        logger.info(f"Server started with pid {self._process.pid}")
        self._watcher = asyncio.create_task(self._watch())

        # Interrupted while spawning
        if self._cancelled.is_set():
            self._send_signal(signal.SIGTERM)
        return self

    def abort(self) -> None:
        """Set the cancellation token and ask the OS to terminate the server.

        Synchronous so it can run from a signal handler. Idempotent - safe
        before start, after exit, and any number of times.
        """
        if not self._cancelled.is_set():
            logger.info("Aborting server")
            self._cancelled.set()
        self._send_signal(signal.SIGTERM)

    async def wait(self) -> ServerExit:
        """Wait for the process to end and return how it ended."""
        await self._exited.wait()
        assert self._exit is not None
        return self._exit

    async def stop(self, timeout: float = 10.0) -> None:
        """Abort the server (SIGTERM) and wait, then kill it (SIGKILL).

        Args:
            timeout: Maximum seconds to wait for graceful shutdown

        This method is idempotent - safe to call multiple times.
        """
        self.abort()
        if self._watcher is None:
            return

        try:
            await asyncio.wait_for(self._exited.wait(), timeout)
        except TimeoutError:
            logger.warning(f"Server did not exit within {timeout}s, killing it")
            self._send_signal(signal.SIGKILL)
            await self._exited.wait()

        await self._watcher

    async def _watch(self) -> None:
        assert self._process is not None
        returncode = await self._process.wait()
        self._record_exit(returncode)

    def _send_signal(self, sig: signal.Signals) -> None:
        if not self.is_running:
            return
        assert self._process is not None
        try:
            self._process.send_signal(sig)
        except ProcessLookupError:
            # Exited between the check and the signal; the watcher records it
            logger.debug(f"Server already gone when sending {sig.name}")

    def _record_exit(self, returncode: int | None) -> None:
        if self._exit is not None:
            return
        self._exit = ServerExit(returncode=returncode, aborted=self._cancelled.is_set())
        self._exited.set()

        if self._exit.expected:
            logger.info(f"Server exited with code {returncode}")
        else:
            logger.error(f"Server exited unexpectedly with code {returncode}")

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._notify(callback, self._exit)

    @staticmethod
    def _notify(callback: ExitCallback, server_exit: ServerExit) -> None:
        try:
            callback(server_exit)
        except Exception as exc:
            logger.warning(f"on_exit callback error: {exc}")

    async def __aenter__(self) -> "ServerProcess":
        """Async context manager entry - start the server."""
        return await self.start()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Async context manager exit - stop the server."""
        await self.stop()
