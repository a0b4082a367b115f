# src/tasknudge/logging_setup.py

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FILE_NAME = "tasknudge.log"
LOG_FILE_MAX_BYTES = 2 * 1024 * 1024
LOG_FILE_BACKUPS = 3

# Logger name prefix -> minimum console level. First match wins.
_CONSOLE_THRESHOLDS: tuple[tuple[str, int], ...] = (
    # Per-request lines; the router already reports failures.
    ("tasknudge.connectors", logging.WARNING),
    ("tasknudge.llm", logging.WARNING),
    ("tasknudge", logging.NOTSET),
)

# Chatty even at INFO in the file log.
_HTTP_LOGGERS = ("httpx", "httpcore", "openai")


class _ConsoleNoiseFilter(logging.Filter):
    """
    The console is shared with the slash-command prompt, so keep it short:
    - scheduler, ledger and CLI logs pass (handler level applies)
    - provider / channel adapters only from WARNING
    - everything else (HTTP stack, py.warnings) only from ERROR
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        for prefix, level in _CONSOLE_THRESHOLDS:
            if name == prefix or name.startswith(prefix + "."):
                return record.levelno >= level
        return record.levelno >= logging.ERROR


def _formatter() -> logging.Formatter:
    return logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)-7s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_logging(
    *,
    log_dir: str | Path = ".local/tasknudge",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Install a filtered stderr handler and a size-rotated file handler.

    The scheduler is meant to run for weeks, so the file is capped at
    LOG_FILE_MAX_BYTES with LOG_FILE_BACKUPS old copies. Call once at startup;
    existing root handlers are replaced. Returns the log file path.
    """
    log_file = Path(log_dir) / LOG_FILE_NAME
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(min(console_level, file_level))
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.addFilter(_ConsoleNoiseFilter())

    rotating = RotatingFileHandler(
        log_file,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    rotating.setLevel(file_level)

    for handler in (console, rotating):
        handler.setFormatter(_formatter())
        root.addHandler(handler)

    logging.captureWarnings(True)
    for name in _HTTP_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug("Logging to %s (console=%s)", log_file, logging.getLevelName(console_level))
    return log_file
