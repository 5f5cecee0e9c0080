"""JSON-lines category logs (``chat``, ``voice``) written under ``log_dir``."""

import json
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from athena.core.config import get_settings
from athena.core.trace import get_trace_id

ROOT = "athena"


class JsonFormatter(logging.Formatter):
    """One JSON object per record, tagged with the current trace id."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "category": record.name.removeprefix(f"{ROOT}."),
            "message": record.getMessage(),
            "trace_id": get_trace_id() or None,
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


class SizeAndTimeRotatingFileHandler(TimedRotatingFileHandler):
    """Rolls over at midnight, or earlier once the file would pass ``max_bytes``."""

    def __init__(self, filename: str | Path, *, max_bytes: int = 0, backup_count: int = 0) -> None:
        super().__init__(
            str(filename),
            when="midnight",
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )
        self.max_bytes = max_bytes

    def shouldRollover(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if self.max_bytes > 0 and self._size_with(record) >= self.max_bytes:
            return True
        return super().shouldRollover(record)

    def _size_with(self, record: logging.LogRecord) -> int:
        if self.stream is None:  # pragma: no cover - delayed open
            self.stream = self._open()
        return self.stream.tell() + len(f"{self.format(record)}\n".encode("utf-8"))


_LOGGERS: dict[str, logging.Logger] = {}
_CONSOLE: logging.Handler | None = None


def get_logger(name: str) -> logging.Logger:
    """Category logger ``athena.<name>``, built once per process."""
    logger = _LOGGERS.get(name)
    if logger is None:
        logger = _LOGGERS[name] = _build_logger(name)
    return logger


def _build_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(f"{ROOT}.{name}")
    if logger.handlers:
        return logger
    settings = get_settings()
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = SizeAndTimeRotatingFileHandler(
        log_dir / f"{name}.jsonl",
        max_bytes=settings.log_rotate_mb * 1024 * 1024,
        backup_count=settings.log_retention_days,
    )
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return logger


def enable_console(level: int = logging.INFO) -> None:
    """Mirror every ``athena.*`` record to stderr."""
    global _CONSOLE
    root = logging.getLogger(ROOT)
    if _CONSOLE is None:
        _CONSOLE = logging.StreamHandler()
        _CONSOLE.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(_CONSOLE)
    root.setLevel(level)
