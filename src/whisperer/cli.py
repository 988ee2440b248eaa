"""Typer-based CLI for the whisperer.

Critical constraint: stdout carries the prompt, the streamed completion
and the server's own output. All logging goes to files
(~/.llama-whisperer/logs/whisperer.log); diagnostics go to stderr.
"""

import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import typer

from whisperer import __version__
from whisperer.config import (
    DEFAULT_LOG_DIR,
    ServerConfig,
    resolve_history_path,
    resolve_lines,
    resolve_model_path,
    resolve_server_path,
    resolve_server_port,
)
from whisperer.errors import WhispererError
from whisperer.session import Session

app = typer.Typer(
    name="whisperer",
    help="Explain the last lines of your terminal history with a local llama.cpp server",
    add_completion=False,
)

logger = logging.getLogger(__name__)


def setup_logging(log_dir: Path, log_level: str) -> None:
    """Configure file-only logging with RotatingFileHandler.

    Args:
        log_dir: Directory for log files (created if missing)
        log_level: Logging level (info, debug, warning, error, critical)
    """
    log_dir = log_dir.expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level.upper())

    root_logger.handlers.clear()

    file_handler = RotatingFileHandler(
        log_dir / "whisperer.log",
        maxBytes=10 * 1024 * 1024,
        backupCount=3,
    )
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        ),
    )
    root_logger.addHandler(file_handler)

    # stdout carries the completion
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.CRITICAL)
    stderr_handler.setFormatter(
        logging.Formatter("%(levelname)s: %(message)s"),
    )
    root_logger.addHandler(stderr_handler)


def build_session(
    history_path: str | None,
    server_port: int | None,
    server_path: str | None,
    model_path: str | None,
    lines: int | None,
) -> Session:
    """Resolve options (flag > env var > default) into a Session.

    Raises:
        typer.BadParameter: If an environment variable holds a bad number
    """
    try:
        port = resolve_server_port(server_port)
        line_count = resolve_lines(lines)
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid number in environment: {exc}") from exc

    server_config = ServerConfig(
        binary_path=resolve_server_path(server_path),
        model_path=resolve_model_path(model_path),
        port=port,
    )
    return Session(
        server_config=server_config,
        history_path=resolve_history_path(history_path),
        lines=line_count,
    )


@app.command()
def main(
    history_path: str | None = typer.Option(
        None,
        "--history-path",
        "--historyPath",
        "-h",
        help="Terminal history file (env: WHISPERER_HISTORY_PATH, default: ~/.llama-whisperer/history)",
    ),
    server_port: int | None = typer.Option(
        None,
        "--server-port",
        "--serverPort",
        "-p",
        help="Port for the server (env: WHISPERER_SERVER_PORT, default: 3000)",
    ),
    server_path: str | None = typer.Option(
        None,
        "--server-path",
        "--serverPath",
        "-s",
        help="llama.cpp server binary (env: WHISPERER_SERVER_PATH, default: ~/llama.cpp/bin/server)",
    ),
    model_path: str | None = typer.Option(
        None,
        "--model-path",
        "--modelPath",
        "-m",
        help="Model file passed to the server (env: WHISPERER_MODEL_PATH)",
    ),
    lines: int | None = typer.Option(
        None,
        "--lines",
        "-l",
        help="How many history lines to send (env: WHISPERER_LINES, default: 2)",
    ),
    log_dir: Path = typer.Option(
        Path(DEFAULT_LOG_DIR),
        "--log-dir",
        help="Directory for log files",
    ),
    log_level: str = typer.Option(
        "info",
        "--log-level",
        help="Logging level (debug, info, warning, error, critical)",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit",
    ),
) -> None:
    """Send the tail of the terminal history to a local model and stream its analysis.

    Starts the llama.cpp server, streams the answer to stdout and stops the
    server again. Ctrl+C kills the server and exits.
    """
    if version:
        typer.echo(f"whisperer {__version__}", err=True)
        raise typer.Exit(0)

    setup_logging(log_dir, log_level)

    session = build_session(history_path, server_port, server_path, model_path, lines)
    logger.info(f"Server: {session.server_config.binary_path}")
    logger.info(f"Model: {session.server_config.model_path}")
    logger.info(f"History: {session.history_path} (last {session.lines} lines)")

    try:
        exit_code = asyncio.run(session.run())
    except (WhispererError, OSError) as exc:
        logger.exception("Invocation failed")
        typer.secho(f"Error: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(1) from exc

    # Completion text doesn't end with a newline
    typer.echo("")
    raise typer.Exit(exit_code)
