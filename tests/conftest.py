"""Pytest configuration and fixtures."""

from collections.abc import Callable
from pathlib import Path

import pytest

from whisperer.config import ServerConfig
from whisperer.testing import FakeLlamaServer

#: Writes an executable shell script standing in for the server binary.
MakeServerBinary = Callable[..., Path]


@pytest.fixture
def make_server_binary(tmp_path: Path) -> MakeServerBinary:
    """Factory fixture for fake server binaries.

    The default script sleeps until it is terminated, like a real server.
    """

    def _make(body: str = "exec sleep 30", name: str = "server") -> Path:
        path = tmp_path / name
        path.write_text(f"#!/bin/sh\n{body}\n")
        path.chmod(0o755)
        return path

    return _make


@pytest.fixture
def server_config(make_server_binary: MakeServerBinary) -> ServerConfig:
    """ServerConfig pointing at a fake binary that runs until killed."""
    return ServerConfig(
        binary_path=str(make_server_binary()),
        model_path="models/test.bin",
        port=3999,
    )


@pytest.fixture
def history_file(tmp_path: Path) -> Path:
    """A `script` session log with banners and padded lines."""
    path = tmp_path / "history"
    path.write_text(
        "Script started on Mon Jan 1 10:00:00 2024\n"
        "$ ls    -la\n"
        "total 0\n"
        "\n"
        "$ pyhton app.py\n"
        "zsh: command not found: pyhton\n"
        "   \n"
        "$ echo done\n"
    )
    return path


@pytest.fixture
def fake_server() -> FakeLlamaServer:
    """Fake server answering with the typo explanation, ending in a stop word."""
    return FakeLlamaServer(
        fragments=[
            ("The", False),
            (" error", False),
            (" is a", False),
            (" typo. ###", False),
        ]
    )
