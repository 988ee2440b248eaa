"""Read and sanitize the terminal history file.

The history file is usually a `script` session log, so it carries banner
lines and long runs of padding whitespace.
"""

import asyncio
import re
from collections.abc import Iterable
from pathlib import Path

_WHITESPACE_RUN = re.compile(r"\s\s+")
# Only \n, \r and \r\n end a line; form feeds and other separators stay in it
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


def _is_banner(line: str) -> bool:
    return "Script started on" in line or line.startswith("Script done on")


def sanitize_lines(lines: Iterable[str]) -> list[str]:
    """Collapse whitespace runs, trim, and drop empty and banner lines.

    Running it on its own output returns the same list.
    """
    sanitized = []
    for line in lines:
        cleaned = _WHITESPACE_RUN.sub(" ", line).strip()
        if cleaned and not _is_banner(cleaned):
            sanitized.append(cleaned)
    return sanitized


async def read_history(path: Path) -> list[str]:
    """Read the history file as raw lines without blocking the event loop.

    Undecodable bytes (terminal escape sequences) are replaced.

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    text = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="replace")
    lines = _LINE_BREAK.split(text)
    # A trailing line break doesn't start another line
    if lines[-1] == "":
        lines.pop()
    return lines


async def read_tail(path: Path, count: int) -> list[str]:
    """Return the last ``count`` sanitized lines, in file order."""
    if count <= 0:
        return []
    lines = sanitize_lines(await read_history(path))
    return lines[-count:]


def join_instruction(lines: Iterable[str]) -> str:
    """Join history lines into the instruction text, comma-separated."""
    return ",".join(lines)
