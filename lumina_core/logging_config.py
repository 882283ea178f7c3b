"""
Structured logging configuration for the Lumina wallet.

Supports two output formats:
  - **human** – coloured, single-line, readable
  - **json**  – newline-delimited JSON for log aggregators

Every handler also carries a :class:`SecretRedactionFilter`, which blanks
any record whose message contains a run of twelve seed-dictionary words.

Usage:
    from lumina_core.logging_config import setup_logging, shutdown_logging
    setup_logging(level="DEBUG", fmt="json", log_file="lumina.log")
    ...
    shutdown_logging()
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from lumina_core.identity import SEED_WORD_COUNT, is_dictionary_word

REDACTED = "[redacted: message contained a possible seed phrase]"

_WORD_RE = re.compile(r"[A-Za-z]+|[^A-Za-z\s]+")


class SecretRedactionFilter(logging.Filter):
    """Replace messages that contain twelve consecutive dictionary words."""

    def filter(self, record: logging.LogRecord) -> bool:
        if contains_seed_phrase(record.getMessage()):
            record.msg = REDACTED
            record.args = None
        return True


def contains_seed_phrase(text: str) -> bool:
    run = 0
    for token in _WORD_RE.findall(text):
        if token.isalpha() and is_dictionary_word(token.lower()):
            run += 1
            if run >= SEED_WORD_COUNT:
                return True
        else:
            run = 0
    return False


class _JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_obj, default=str)


class _HumanFormatter(logging.Formatter):
    """Coloured, concise single-line format."""

    COLOURS = {
        "DEBUG": "\033[36m",     # cyan
        "INFO": "\033[32m",      # green
        "WARNING": "\033[33m",   # yellow
        "ERROR": "\033[31m",     # red
        "CRITICAL": "\033[1;31m",  # bold red
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.COLOURS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = (
            f"{colour}{ts} [{record.levelname:<7}]{self.RESET} "
            f"{record.name}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
) -> None:
    """
    Configure the root logger for the entire application.

    Parameters
    ----------
    level : str
        One of DEBUG, INFO, WARNING, ERROR, CRITICAL.
    fmt : str
        ``"human"`` for coloured single-line output, ``"json"`` for
        newline-delimited JSON.
    log_file : str, optional
        If provided, logs are *also* written to this file (always in JSON
        format for machine parsing).
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove any existing handlers (avoid duplicates on reload)
    shutdown_logging()

    redact = SecretRedactionFilter()

    # --- Console handler ---
    console = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        console.setFormatter(_JSONFormatter())
    else:
        console.setFormatter(_HumanFormatter())
    console.addFilter(redact)
    root.addHandler(console)

    # --- Optional file handler ---
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path))
        fh.setFormatter(_JSONFormatter())  # always JSON for files
        fh.addFilter(redact)
        root.addHandler(fh)


def shutdown_logging() -> None:
    """Flush and close every root handler."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        try:
            handler.flush()
        finally:
            handler.close()
        root.removeHandler(handler)
