"""Logging setup: loguru sinks, with the kernel's stdlib loggers forwarded into them."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

from loguru import logger

from scenebim.settings import LoggingSettings

KERNEL_LOGGER = "scenebim"

TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

# loguru-only levels have no stdlib counterpart
_STDLIB_LEVELS = {"TRACE": logging.DEBUG, "SUCCESS": logging.INFO}


class JSONFormatter:
    """One JSON object per record, with bound extras merged in."""

    def __call__(self, record: dict[str, Any]) -> str:
        entry = {
            "time": record["time"].isoformat(),
            "level": record["level"].name,
            "logger": record["name"],
            "location": f"{record['function']}:{record['line']}",
            "message": record["message"],
        }
        exc = record.get("exception")
        if exc is not None and exc.type is not None:
            entry["error"] = f"{exc.type.__name__}: {exc.value}"
        entry.update(record.get("extra") or {})

        # loguru treats the returned string as a format template
        line = json.dumps(entry, ensure_ascii=False, default=str)
        return line.replace("{", "{{").replace("}", "}}") + "\n"


class KernelLogHandler(logging.Handler):
    """Re-emits records of the geometry modules through loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: Any = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        origin = {"name": record.name, "function": record.funcName, "line": record.lineno}
        logger.patch(lambda r: r.update(origin)).opt(exception=record.exc_info).log(level, record.getMessage())


def _attach_kernel_handler(level: str) -> None:
    kernel = logging.getLogger(KERNEL_LOGGER)
    for handler in list(kernel.handlers):
        if isinstance(handler, KernelLogHandler):
            kernel.removeHandler(handler)
    kernel.addHandler(KernelLogHandler())
    kernel.setLevel(_STDLIB_LEVELS.get(level, logging.getLevelName(level)))
    kernel.propagate = False


def setup_logging(config: LoggingSettings | None = None, **overrides: Any) -> LoggingSettings:
    """Configure loguru from ``config``; keyword overrides that are not None win.

    Returns the effective settings. Invalid levels raise a validation error.
    """
    values = (config or LoggingSettings()).model_dump()
    values.update({key: value for key, value in overrides.items() if value is not None})
    effective = LoggingSettings(**values)

    logger.remove()
    formatter: Any = JSONFormatter() if effective.json_format else TEXT_FORMAT
    logger.add(sys.stderr, format=formatter, level=effective.level, colorize=not effective.json_format)

    if effective.log_file:
        log_file = Path(effective.log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=formatter,
            level=effective.level,
            rotation="10 MB",
            retention="7 days",
            compression="zip",
        )

    _attach_kernel_handler(effective.level)
    return effective
