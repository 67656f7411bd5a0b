"""Logging for the ``ledger_pipeline`` package.

Modules log through ``get_logger("ledger_pipeline.<component>")`` and emit
``"<component>:<event> key=value ..."`` messages. Nothing is printed until a
host (the CLI, an app) calls :func:`configure_logging`.

Levels can be set per component, so one chatty part of the pipeline can be
turned up without flooding the rest::

    LEDGER_LOG_LEVEL=WARNING
    LEDGER_LOG_LEVELS=openai_transport=DEBUG,ingest=INFO
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from typing import IO

_PKG_LOGGER_NAME = "ledger_pipeline"
_LEVEL_ENV = "LEDGER_LOG_LEVEL"
_COMPONENT_LEVELS_ENV = "LEDGER_LOG_LEVELS"
_DEFAULT_FORMAT = "%(asctime)s %(levelname)-7s [%(component)s] %(message)s"

_handler: logging.Handler | None = None


def parse_level(value: int | str) -> int:
    """``logging`` level from an int, a numeric string or a level name."""

    if isinstance(value, int):
        return value
    name = value.strip().upper()
    if name.isdigit():
        return int(name)
    numeric = logging.getLevelName(name)
    if isinstance(numeric, int):
        return numeric
    raise ValueError(f"unknown log level: {value!r}")


def parse_component_levels(text: str) -> dict[str, int]:
    """Parse ``"ingest=DEBUG,openai_transport=WARNING"`` into levels by component."""

    levels: dict[str, int] = {}
    for item in text.split(","):
        item = item.strip()
        if not item:
            continue
        component, sep, level = item.partition("=")
        if not sep or not component.strip():
            raise ValueError(f"expected component=LEVEL, got {item!r}")
        levels[component.strip()] = parse_level(level)
    return levels


class _ComponentFilter(logging.Filter):
    """Sets ``record.component`` to the logger name without the package prefix."""

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        prefix = _PKG_LOGGER_NAME + "."
        record.component = name[len(prefix) :] if name.startswith(prefix) else name
        return True


def configure_logging(
    level: int | str | None = None,
    *,
    component_levels: Mapping[str, int | str] | None = None,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> logging.Handler:
    """Attach the package handler on first use; later calls only adjust levels.

    Parameters
    ----------
    level:
        Package level. ``None`` falls back to ``LEDGER_LOG_LEVEL``, then INFO.
    component_levels:
        Levels for individual components (``"ingest"``, ``"openai_transport"``),
        applied on top of ``LEDGER_LOG_LEVELS``.
    fmt, stream:
        Formatter string and output stream of the handler. Only the first
        call's values are used.

    Raises
    ------
    ValueError
        For an unknown level name or a malformed ``LEDGER_LOG_LEVELS`` entry.
    """

    global _handler
    env_level = os.getenv(_LEVEL_ENV)
    if level is not None:
        resolved = parse_level(level)
    elif env_level:
        resolved = parse_level(env_level)
    else:
        resolved = logging.INFO
    per_component = parse_component_levels(os.getenv(_COMPONENT_LEVELS_ENV, ""))
    for component, value in (component_levels or {}).items():
        per_component[component] = parse_level(value)

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    if _handler is None:
        for h in list(logger.handlers):
            if isinstance(h, logging.NullHandler):
                logger.removeHandler(h)
        # The handler passes everything; logger levels do the filtering
        _handler = logging.StreamHandler(stream)
        _handler.addFilter(_ComponentFilter())
        _handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
        logger.addHandler(_handler)
        logger.propagate = False

    logger.setLevel(resolved)
    for component, value in per_component.items():
        logging.getLogger(f"{_PKG_LOGGER_NAME}.{component}").setLevel(value)
    return _handler


def get_logger(name: str) -> logging.Logger:
    """Return a logger by name, silent until :func:`configure_logging` runs."""

    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if _handler is None and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "parse_component_levels", "parse_level"]
