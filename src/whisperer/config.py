"""Configuration values for the whisperer and the llama.cpp server it runs.

Everything here is an immutable value built once at startup and passed
explicitly to the supervisor and the completion client.
"""

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_HISTORY_PATH = "~/.llama-whisperer/history"
DEFAULT_SERVER_PATH = "~/llama.cpp/bin/server"
DEFAULT_MODEL_PATH = "~/llama.cpp/models/stable-vicuna-13B.ggmlv3.q8_0.bin"
DEFAULT_SERVER_PORT = 3000
DEFAULT_LINES = 2
DEFAULT_LOG_DIR = "~/.llama-whisperer/logs"


@dataclass(frozen=True)
class ServerConfig:
    """Configuration for launching the llama.cpp server binary.

    The server is always started as a subprocess; nothing is imported from
    llama.cpp itself.
    """

    binary_path: str  # e.g., "~/llama.cpp/bin/server"
    model_path: str  # e.g., "models/stable-vicuna-13B.ggmlv3.q8_0.bin"
    port: int = DEFAULT_SERVER_PORT
    host: str = "127.0.0.1"
    context_size: int = 2048  # --ctx_size

    @property
    def base_url(self) -> str:
        """Return the base URL of the server's HTTP API."""
        return f"http://{self.host}:{self.port}"


@dataclass(frozen=True)
class SamplingConfig:
    """Sampling parameters sent with every completion request."""

    batch_size: int = 512
    top_k: int = 40
    top_p: float = 0.9
    n_keep: int = 0
    n_predict: int = 100
    threads: int = 8


@dataclass(frozen=True)
class RetryConfig:
    """Backoff for the first request while the server is still loading.

    Attributes:
        initial_delay: First retry delay in seconds.
        max_delay: Maximum retry delay in seconds.
        backoff_factor: Multiplier applied to delay after each failure.
        max_retries: Maximum number of attempts (0 = unlimited).
        jitter: If True, sleep a random 50%-100% of the computed delay.
    """

    initial_delay: float = 0.5
    max_delay: float = 5.0
    backoff_factor: float = 2.0
    max_retries: int = 40
    jitter: bool = True


@dataclass(frozen=True)
class Timeouts:
    """Timeout values (seconds) for HTTP calls to the server.

    ``None`` means wait forever. Polls have no timeout: a hung server hangs
    the invocation until it is interrupted.

    Attributes:
        connect: TCP connection establishment timeout.
        submit: Timeout for the POST that registers the completion.
        poll: Timeout for each next-token poll.
        stop: Timeout for the best-effort stop request.
    """

    connect: float | None = 5.0
    submit: float | None = 30.0
    poll: float | None = None
    stop: float | None = 2.0


DEFAULT_SAMPLING = SamplingConfig()
DEFAULT_RETRY = RetryConfig()
DEFAULT_TIMEOUTS = Timeouts()


def _resolve(flag: str | None, env_var: str, default: str) -> str:
    if flag:
        return flag
    return os.getenv(env_var, default)


def resolve_history_path(flag: str | None) -> Path:
    """Resolve history path from CLI flag, env var, or default.

    Priority: CLI flag > WHISPERER_HISTORY_PATH env var > default.
    """
    value = _resolve(flag, "WHISPERER_HISTORY_PATH", DEFAULT_HISTORY_PATH)
    return Path(value).expanduser()


def resolve_server_path(flag: str | None) -> str:
    """Resolve server binary from CLI flag, WHISPERER_SERVER_PATH, or default."""
    value = _resolve(flag, "WHISPERER_SERVER_PATH", DEFAULT_SERVER_PATH)
    return str(Path(value).expanduser())


def resolve_model_path(flag: str | None) -> str:
    """Resolve model file from CLI flag, WHISPERER_MODEL_PATH, or default."""
    value = _resolve(flag, "WHISPERER_MODEL_PATH", DEFAULT_MODEL_PATH)
    return str(Path(value).expanduser())


def resolve_server_port(flag: int | None) -> int:
    """Resolve server port from CLI flag, WHISPERER_SERVER_PORT, or default.

    Raises:
        ValueError: If the env var is not an integer
    """
    if flag is not None:
        return flag
    return int(os.getenv("WHISPERER_SERVER_PORT", str(DEFAULT_SERVER_PORT)))


def resolve_lines(flag: int | None) -> int:
    """Resolve history line count from CLI flag, WHISPERER_LINES, or default."""
    if flag is not None:
        return flag
    return int(os.getenv("WHISPERER_LINES", str(DEFAULT_LINES)))
