"""Testing utilities for the whisperer.

Provides a scripted fake of the llama.cpp server's HTTP API that plugs
into httpx through MockTransport.
"""

from whisperer.testing.fakes import FakeLlamaServer

__all__ = ["FakeLlamaServer"]
