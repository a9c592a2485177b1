"""Common utility functions for the project."""

from enum import Enum
from typing import Any

ELLIPSIS = "..."


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    DIM = "\033[2m"


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


def truncate_text(text: str, limit: int) -> str:
    """Cut *text* to *limit* characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[:limit] + ELLIPSIS


def truncate_value(value: Any, limit: int) -> Any:
    """
    Return a copy of *value* with every string truncated to *limit* characters.

    Dicts and lists are walked recursively; other scalars are returned unchanged.
    The input is never modified.
    """
    if isinstance(value, str):
        return truncate_text(value, limit)
    if isinstance(value, dict):
        return {key: truncate_value(item, limit) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [truncate_value(item, limit) for item in value]
    return value
