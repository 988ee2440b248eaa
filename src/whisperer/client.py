"""Streaming completion client for the llama.cpp server.

One completion per client: POST /completion registers the job, then
GET /next-token is polled one fragment at a time until the server says
it is done or a stop word shows up in the text.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx
from pydantic import ValidationError

from whisperer.config import DEFAULT_RETRY, DEFAULT_TIMEOUTS, RetryConfig, Timeouts
from whisperer.errors import ProtocolError, TransportFailure, WhispererError
from whisperer.protocol import STOP_WORDS, CompletionRequest, TokenEvent

logger = logging.getLogger(__name__)

__all__ = ["CompletionClient", "StreamState", "COMPLETION_PATH", "NEXT_TOKEN_PATH"]

COMPLETION_PATH = "/completion"
NEXT_TOKEN_PATH = "/next-token"

#: Receives each fragment as soon as it is accepted.
Emit = Callable[[str], None]
Sleep = Callable[[float], Awaitable[None]]


class StreamState(Enum):
    """States of a single completion.

    IDLE -> REQUESTING -> STREAMING -> STOPPING -> DONE, and any state
    may move to FAILED on a transport or protocol error.
    """

    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    STOPPING = "stopping"
    DONE = "done"
    FAILED = "failed"


_TERMINAL = (StreamState.DONE, StreamState.FAILED)


@dataclass
class CompletionClient:
    """Runs the request/poll protocol against the server.

    Args:
        http: Client whose base_url points at the server
        stop_words: Substrings that end the stream early
        retry: Backoff used while the server is not accepting connections yet
        timeouts: Per-call timeouts
        sleep: Awaitable sleep used between retries (replaceable in tests)
        server_alive: Returns False once the server process has exited;
            connection retries stop at that point
    """

    http: httpx.AsyncClient
    stop_words: tuple[str, ...] = STOP_WORDS
    retry: RetryConfig = DEFAULT_RETRY
    timeouts: Timeouts = DEFAULT_TIMEOUTS
    sleep: Sleep = asyncio.sleep
    server_alive: Callable[[], bool] = lambda: True
    state: StreamState = field(default=StreamState.IDLE, init=False)
    polls: int = field(default=0, init=False)
    stop_requests: int = field(default=0, init=False)

    def matches_stop_word(self, fragment: str) -> bool:
        """True if the raw fragment contains any stop word (case-sensitive)."""
        return any(word in fragment for word in self.stop_words)

    async def submit(self, request: CompletionRequest) -> None:
        """Register the completion job with the server.

        Connection failures are retried with exponential backoff, since the
        server may still be loading the model when the first request goes out.

        Raises:
            RuntimeError: If a completion was already submitted
            TransportFailure: If the server stays unreachable, exits, or the call fails
            ProtocolError: If the server rejects the request
        """
        if self.state is not StreamState.IDLE:
            raise RuntimeError("A completion has already been submitted")
        self._enter(StreamState.REQUESTING)

        attempt = 0
        delay = self.retry.initial_delay
        while True:
            try:
                await self._send(
                    "POST",
                    COMPLETION_PATH,
                    timeout=self.timeouts.submit,
                    json=request.model_dump(),
                )
                break
            except httpx.ConnectError as exc:
                attempt += 1
                logger.info(f"Server not reachable yet (attempt {attempt}): {exc}")
                if not self.server_alive():
                    self._enter(StreamState.FAILED)
                    raise TransportFailure(
                        self._url(COMPLETION_PATH),
                        f"server exited before accepting connections: {exc}",
                    ) from exc
                if self.retry.max_retries > 0 and attempt >= self.retry.max_retries:
                    self._enter(StreamState.FAILED)
                    raise TransportFailure(
                        self._url(COMPLETION_PATH),
                        f"server unreachable after {attempt} attempts: {exc}",
                    ) from exc

                actual_delay = min(delay, self.retry.max_delay)
                if self.retry.jitter:
                    actual_delay *= 0.5 + random.random() * 0.5  # 50%-100% of delay
                await self.sleep(actual_delay)
                delay = min(delay * self.retry.backoff_factor, self.retry.max_delay)
            except WhispererError:
                self._enter(StreamState.FAILED)
                raise

        self._enter(StreamState.STREAMING)

    async def poll_next(self) -> TokenEvent:
        """Fetch the next generated fragment.

        Raises:
            TransportFailure: If the call fails
            ProtocolError: If the body is not a next-token object
        """
        self.polls += 1
        response = await self._request("GET", NEXT_TOKEN_PATH, timeout=self.timeouts.poll)
        try:
            return TokenEvent.model_validate_json(response.content)
        except ValidationError as exc:
            raise ProtocolError(
                f"Unexpected next-token response: {response.text[:200]!r}"
            ) from exc

    async def request_stop(self) -> None:
        """Tell the server to stop generating. The response is ignored."""
        self.stop_requests += 1
        await self._request(
            "GET",
            NEXT_TOKEN_PATH,
            timeout=self.timeouts.stop,
            params={"stop": "true"},
            check_status=False,
        )

    async def stream(self, request: CompletionRequest, emit: Emit) -> str:
        """Submit the request and emit fragments until the completion ends.

        A fragment containing a stop word triggers request_stop() and is
        still emitted before the loop halts. A final fragment halts the loop
        without a stop request. No poll is issued after either.

        Returns:
            Everything that was emitted, concatenated
        """
        emitted: list[str] = []
        await self.submit(request)
        try:
            while self.state is StreamState.STREAMING:
                event = await self.poll_next()
                if self.matches_stop_word(event.content):
                    logger.debug(f"Stop word in fragment {event.content!r}")
                    self._enter(StreamState.STOPPING)
                    await self.request_stop()
                elif event.is_final:
                    self._enter(StreamState.STOPPING)
                emit(event.content)
                emitted.append(event.content)
        except WhispererError:
            self._enter(StreamState.FAILED)
            raise

        self._enter(StreamState.DONE)
        logger.info(f"Completion finished after {self.polls} polls")
        return "".join(emitted)

    async def abandon(self) -> None:
        """Stop generation after the poll loop was cancelled from outside.

        Best effort: a failing stop request is logged, not raised.
        """
        if self.state is StreamState.IDLE or self.state in _TERMINAL:
            return
        self._enter(StreamState.STOPPING)
        try:
            await self.request_stop()
        except WhispererError as exc:
            logger.warning(f"Stop request failed: {exc}")
        self._enter(StreamState.DONE)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        timeout: float | None,
        check_status: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            return await self._send(
                method, path, timeout=timeout, check_status=check_status, **kwargs
            )
        except httpx.ConnectError as exc:
            raise TransportFailure(self._url(path), str(exc) or "connection failed") from exc

    async def _send(
        self,
        method: str,
        path: str,
        *,
        timeout: float | None,
        check_status: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request; ConnectError is left to the caller to handle."""
        try:
            response = await self.http.request(
                method,
                path,
                timeout=httpx.Timeout(timeout, connect=self.timeouts.connect),
                **kwargs,
            )
        except httpx.ConnectError:
            raise
        except httpx.RequestError as exc:
            raise TransportFailure(
                self._url(path), str(exc) or type(exc).__name__
            ) from exc

        if check_status and response.is_error:
            raise ProtocolError(
                f"{method} {path} returned HTTP {response.status_code}"
            )
        return response

    def _url(self, path: str) -> str:
        return str(self.http.base_url.join(path))

    def _enter(self, state: StreamState) -> None:
        logger.debug(f"Stream state: {self.state.value} -> {state.value}")
        self.state = state
