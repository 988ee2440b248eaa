"""One whisperer invocation: server, history, completion, teardown."""

import asyncio
import logging
import signal
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import httpx
import typer

from whisperer.client import CompletionClient
from whisperer.config import (
    DEFAULT_LINES,
    DEFAULT_RETRY,
    DEFAULT_SAMPLING,
    DEFAULT_TIMEOUTS,
    RetryConfig,
    SamplingConfig,
    ServerConfig,
    Timeouts,
)
from whisperer.history import join_instruction, read_tail
from whisperer.protocol import CompletionRequest
from whisperer.supervisor import ServerExit, ServerProcess

logger = logging.getLogger(__name__)

__all__ = ["Session", "write_stdout", "INTERRUPTED_EXIT_CODE"]

#: Exit status after SIGINT, as a shell reports it.
INTERRUPTED_EXIT_CODE = 130


def write_stdout(text: str) -> None:
    """Write text to stdout immediately, without a newline."""
    sys.stdout.write(text)
    sys.stdout.flush()


@dataclass
class Session:
    """Runs one completion against a freshly started server.

    Args:
        server_config: How to launch the server
        history_path: Terminal history file to tail
        lines: Number of history lines sent as the instruction
        sampling: Sampling parameters for the completion
        retry: Backoff while the server is loading
        timeouts: HTTP timeouts
        emit: Receives the echoed prompt and each generated fragment
        transport: Optional httpx transport (tests use httpx.MockTransport)
        handle_signals: Bind SIGINT to interrupt() while running
    """

    server_config: ServerConfig
    history_path: Path
    lines: int = DEFAULT_LINES
    sampling: SamplingConfig = DEFAULT_SAMPLING
    retry: RetryConfig = DEFAULT_RETRY
    timeouts: Timeouts = DEFAULT_TIMEOUTS
    emit: Callable[[str], None] = write_stdout
    transport: httpx.AsyncBaseTransport | None = None
    handle_signals: bool = True
    server: ServerProcess = field(init=False)
    client: CompletionClient | None = field(default=None, init=False)
    interrupted: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        self.server = ServerProcess(config=self.server_config)

    def interrupt(self) -> None:
        """Abort the in-flight completion and kill the server. Idempotent."""
        if not self.interrupted:
            self.interrupted = True
            logger.info("Interrupted")
            typer.echo("Killing server and listener", err=True)
        self.server.abort()

    async def run(self) -> int:
        """Run the invocation and return the process exit code.

        Returns:
            0 when the completion finished, 130 when interrupted

        Raises:
            SpawnFailure: If the server binary can't be launched
            TransportFailure: If talking to the server fails
            ProtocolError: If the server answers with something unexpected
            OSError: If the history file can't be read
        """
        self.server.on_exit(self._report_exit)
        loop = asyncio.get_running_loop()
        if self.handle_signals:
            self._install_signal_handler(loop)

        try:
            # Both finish before either error is raised; a spawn error wins
            results = await asyncio.gather(
                self.server.start(),
                read_tail(self.history_path, self.lines),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result
            tail = results[1]

            if self.server.cancelled.is_set():
                return INTERRUPTED_EXIT_CODE

            request = CompletionRequest.for_instruction(
                join_instruction(tail), self.sampling
            )
            self.emit(request.prompt)

            async with httpx.AsyncClient(
                base_url=self.server_config.base_url,
                transport=self.transport,
            ) as http:
                self.client = CompletionClient(
                    http=http,
                    retry=self.retry,
                    timeouts=self.timeouts,
                    server_alive=lambda: self.server.is_running,
                )
                completed = await self._stream(self.client, request)
        finally:
            if self.handle_signals:
                loop.remove_signal_handler(signal.SIGINT)
            await self.server.stop()

        return 0 if completed else INTERRUPTED_EXIT_CODE

    async def _stream(self, client: CompletionClient, request: CompletionRequest) -> bool:
        """Stream the completion unless the cancellation token fires first.

        Returns:
            True if the completion finished, False if it was abandoned
        """
        stream_task = asyncio.create_task(client.stream(request, self.emit))
        cancel_task = asyncio.create_task(self.server.cancelled.wait())
        try:
            await asyncio.wait(
                {stream_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            stream_task.cancel()
            raise
        finally:
            cancel_task.cancel()

        if stream_task.done():
            stream_task.result()
            return True

        logger.info("Abandoning in-flight poll")
        stream_task.cancel()
        await asyncio.wait({stream_task})
        await client.abandon()
        return False

    def _install_signal_handler(self, loop: asyncio.AbstractEventLoop) -> None:
        try:
            loop.add_signal_handler(signal.SIGINT, self.interrupt)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            logger.debug("SIGINT handler not supported on this platform")
            self.handle_signals = False

    def _report_exit(self, server_exit: ServerExit) -> None:
        # returncode None means spawn failed; SpawnFailure reports that
        if server_exit.expected or server_exit.returncode is None:
            return
        typer.secho(
            f"Server exited unexpectedly with code {server_exit.returncode}",
            err=True,
            fg=typer.colors.RED,
        )
