"""Error types for the whisperer.

Everything raised on purpose derives from WhispererError so the CLI can
report it as a one-line diagnostic.
"""

from __future__ import annotations

__all__ = ["WhispererError", "SpawnFailure", "TransportFailure", "ProtocolError"]


class WhispererError(RuntimeError):
    """Base class for failures that end an invocation."""


class SpawnFailure(WhispererError):
    """Raised when the server binary cannot be launched.

    Covers a missing binary and missing execute permission.
    """

    def __init__(self, binary_path: str, reason: str) -> None:
        super().__init__(f"Could not start server {binary_path!r}: {reason}")
        self.binary_path = binary_path


class TransportFailure(WhispererError):
    """Raised when an HTTP call to the server fails (refused, reset, timeout)."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Request to {url} failed: {reason}")
        self.url = url


class ProtocolError(WhispererError):
    """Raised when the server answers with an unexpected status or body."""
