from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from tfprov.outputs import redact

logger = logging.getLogger(__name__)

_DEFAULT_LOG_LEVEL = "INFO"
_LOG_LEVEL_ENV = "TFPROV_LOG_LEVEL"
_RESET = "\x1b[0m"
_LEVEL_COLORS = {
    "DEBUG": "\x1b[36m",
    "INFO": "\x1b[32m",
    "WARNING": "\x1b[33m",
    "ERROR": "\x1b[31m",
    "CRITICAL": "\x1b[1;31m",
}

_active_secrets: ContextVar[set[str] | None] = ContextVar("tfprov_active_secrets", default=None)


@contextmanager
def redaction_scope() -> Iterator[set[str]]:
    """Collect secrets registered in this context and mask them in its log records."""
    secrets: set[str] = set()
    reset_token = _active_secrets.set(secrets)
    try:
        yield secrets
    finally:
        _active_secrets.reset(reset_token)


def register_secret(value: str) -> None:
    secrets = _active_secrets.get()
    if secrets is None:
        logger.debug("Secret registered outside a redaction scope; ignoring")
        return
    if value:
        secrets.add(value)


class _RedactingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        secrets = _active_secrets.get()
        if secrets:
            record.msg = redact(record.getMessage(), secrets)
            record.args = None
        return True


class _ColorFormatter(logging.Formatter):
    def __init__(self, fmt: str, datefmt: str, *, use_color: bool) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        original = record.levelname
        if self._use_color:
            color = _LEVEL_COLORS.get(original, "")
            record.levelname = f"{color}{original}{_RESET}" if color else original
        try:
            return super().format(record)
        finally:
            record.levelname = original


def _should_use_color() -> bool:
    if os.getenv("NO_COLOR"):
        return False
    return sys.stderr.isatty()


def _resolve_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    candidate = (level or os.getenv(_LOG_LEVEL_ENV, _DEFAULT_LOG_LEVEL)).upper()
    resolved = logging.getLevelName(candidate)
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def configure_logging(*, level: str | int | None = None, force: bool = False) -> None:
    root = logging.getLogger()
    resolved_level = _resolve_level(level)
    root.setLevel(resolved_level)

    if root.handlers and not force:
        for handler in root.handlers:
            handler.setLevel(resolved_level)
        return

    handler = logging.StreamHandler()
    handler.setLevel(resolved_level)
    handler.addFilter(_RedactingFilter())
    handler.setFormatter(
        _ColorFormatter(
            fmt="%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            use_color=_should_use_color(),
        )
    )
    root.handlers.clear()
    root.addHandler(handler)
