"""Whisperer: explain terminal history with a local llama.cpp server.

This package provides:
- Process supervision for the llama.cpp server binary
- A streaming client for the server's completion/next-token protocol
- History file sanitizing
- A Typer CLI tying them together
"""

from whisperer.client import CompletionClient, StreamState
from whisperer.config import ServerConfig
from whisperer.errors import ProtocolError, SpawnFailure, TransportFailure, WhispererError
from whisperer.protocol import STOP_WORDS, CompletionRequest, TokenEvent
from whisperer.session import Session
from whisperer.supervisor import ServerExit, ServerProcess

__all__ = [
    # Supervisor
    "ServerConfig",
    "ServerExit",
    "ServerProcess",
    # Streaming client
    "CompletionClient",
    "CompletionRequest",
    "STOP_WORDS",
    "StreamState",
    "TokenEvent",
    # Orchestration
    "Session",
    # Errors
    "ProtocolError",
    "SpawnFailure",
    "TransportFailure",
    "WhispererError",
]
__version__ = "0.1.0"
