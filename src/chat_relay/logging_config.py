import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

_CONSOLE_FORMAT = (
    "<level>{level:<8}</level> | <magenta>{extra[session_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {extra[session_id]} | {name}:{function}:{line} - {message}"


@dataclass
class ConsoleSink:
    level: str
    session_only: bool = False

    def add(self) -> None:
        logger.add(sys.stderr, level=self.level, format=_CONSOLE_FORMAT, filter=_filter(self.session_only))

    def __str__(self) -> str:
        return f"console (stderr, {self.level})"


@dataclass
class FileSink:
    level: str
    path: str = "logs/chat_relay.log"
    rotation: str = "10 MB"
    retention: int = 3
    session_only: bool = False

    def add(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self.path,
            level=self.level,
            format=_FILE_FORMAT,
            rotation=self.rotation,
            retention=self.retention,
            filter=_filter(self.session_only),
        )

    def __str__(self) -> str:
        return f"file ({self.path}, {self.level})"


@dataclass
class JsonSink:
    """One serialized record per line, for log shippers."""

    level: str
    path: str | None = None
    session_only: bool = False

    def add(self) -> None:
        if self.path:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(self.path or sys.stdout, level=self.level, serialize=True, filter=_filter(self.session_only))

    def __str__(self) -> str:
        return f"json ({self.path or 'stdout'}, {self.level})"


_SINKS: dict[str, type] = {
    "console": ConsoleSink,
    "file": FileSink,
    "json": JsonSink,
}


def _filter(session_only: bool):
    # session_only keeps records emitted under logger.bind(session_id=...)
    if not session_only:
        return None
    return lambda record: record["extra"].get("session_id", "-") != "-"


def setup_logging(level: str = "INFO", consumers: list[dict[str, Any]] | None = None) -> list[str]:
    """Replace every loguru sink with the configured consumers.

    Each consumer is a dict with a ``type`` (console, file or json), an
    optional ``level`` and sink-specific options. Returns one description per
    sink that was added.
    """
    logger.remove()
    logger.configure(extra={"session_id": "-"})

    added: list[str] = []
    for options in [{"type": "console"}] if consumers is None else consumers:
        options = dict(options)
        kind = options.pop("type", "")
        sink_cls = _SINKS.get(kind)
        if sink_cls is None:
            logger.warning(f"Ignoring log consumer with unknown type {kind!r}")
            continue
        sink = sink_cls(level=options.pop("level", level), **options)
        sink.add()
        added.append(str(sink))
    return added
