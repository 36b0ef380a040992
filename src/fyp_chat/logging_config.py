"""loguru sinks for the chat client.

The terminal belongs to the conversation, so by default only warnings reach
stderr and everything else goes to a rotating file. Every record carries
``extra[session]`` so lines from several chat sessions can share one file.
"""

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from loguru import logger

CONSOLE_FORMAT = (
    "<level>{level:<8}</level> | <cyan>{extra[session]}</cyan> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {extra[session]} | {name}:{function}:{line} - {message}"
DEFAULT_LOG_PATH = ".fyp_chat/fyp_chat.log"

_DEFAULT_CONSUMERS: list[dict[str, Any]] = [
    {"type": "console", "level": "WARNING"},
    {"type": "file"},
]


def _add_console(level: str, options: dict[str, Any]) -> str:
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, colorize=options.get("colorize"))
    return f"console (stderr, {level})"


def _add_file(level: str, options: dict[str, Any]) -> str:
    path = Path(options.get("path", DEFAULT_LOG_PATH))
    path.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        str(path),
        level=level,
        format=FILE_FORMAT,
        rotation=options.get("rotation", "10 MB"),
        retention=options.get("retention", 3),
        serialize=bool(options.get("serialize", False)),
        # Audio callbacks and the stdin reader log from their own threads.
        enqueue=True,
    )
    return f"file ({path}, {level})"


_SINKS: dict[str, Callable[[str, dict[str, Any]], str]] = {
    "console": _add_console,
    "file": _add_file,
}


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
    *,
    session_id: str | None = None,
) -> list[str]:
    """Replace all loguru sinks with ``consumers``; returns one description per sink added."""
    logger.remove()
    logger.configure(extra={"session": session_id or "-"})

    descriptions: list[str] = []
    for consumer in consumers if consumers is not None else _DEFAULT_CONSUMERS:
        sink_type = consumer.get("type", "")
        add_sink = _SINKS.get(sink_type)
        if add_sink is None:
            logger.warning(f"Unknown log consumer type: {sink_type!r}")
            continue
        options = {k: v for k, v in consumer.items() if k not in ("type", "level")}
        descriptions.append(add_sink(consumer.get("level", level), options))
    return descriptions
