"""Terminal helpers for move previews and summaries - no external dependencies."""

from __future__ import annotations

import os
import sys
from typing import TextIO


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"


def _supports_color(stream: TextIO | None = None) -> bool:
    """Check if terminal supports color output."""
    stream = stream or sys.stdout
    if os.environ.get("NO_COLOR"):
        return False
    if not hasattr(stream, "isatty") or not stream.isatty():
        return False
    if os.environ.get("TERM") == "dumb":
        return False
    return True


def colorize(text: str, color: str, bold: bool = False, stream: TextIO | None = None) -> str:
    """Apply color to text if terminal supports it."""
    if not _supports_color(stream):
        return text
    prefix = (Colors.BOLD if bold else "") + color
    return f"{prefix}{text}{Colors.RESET}"


def print_error(message: str, stream: TextIO | None = None) -> None:
    """Print error message in red."""
    stream = stream or sys.stderr
    print(colorize("Error:", Colors.RED, bold=True, stream=stream) + " " + message, file=stream)


def print_warning(message: str, stream: TextIO | None = None) -> None:
    """Print warning message in yellow."""
    stream = stream or sys.stdout
    print(colorize(message, Colors.YELLOW, bold=True, stream=stream), file=stream)


def print_header(message: str, stream: TextIO | None = None) -> None:
    """Print section header in bold cyan."""
    stream = stream or sys.stdout
    print(colorize(message, Colors.CYAN, bold=True, stream=stream), file=stream)


def format_status(status: str, stream: TextIO | None = None) -> str:
    """Color a per-item outcome word (done / failed / skipped ...)."""
    lower = status.lower()
    if lower in ("done", "pass"):
        return colorize(status, Colors.GREEN, stream=stream)
    if lower.startswith("fail"):
        return colorize(status, Colors.RED, stream=stream)
    if lower.startswith("skip"):
        return colorize(status, Colors.DIM, stream=stream)
    return status


__all__ = [
    "Colors",
    "colorize",
    "format_status",
    "print_error",
    "print_header",
    "print_warning",
]
