"""
Structured logging configuration using structlog.

Module loggers stay plain ``logging.getLogger(__name__)``; this routes them
through structlog so conversion context (direction, account, plan id) bound
with ``bind_conversion_context`` lands on every line.
"""

import logging
import sys
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, TextIO

import structlog

from .config import settings

# Token amounts are uint256; JSON consumers lose precision above 2**53.
_JSON_SAFE_INT = 2**53


def stringify_chain_values(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Render large integers, decimals and enums so JSON output stays exact."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
        elif isinstance(value, Decimal):
            event_dict[key] = str(value)
        elif isinstance(value, int) and not isinstance(value, bool) and abs(value) >= _JSON_SAFE_INT:
            event_dict[key] = str(value)
    return event_dict


def setup_logging(
    log_level: Optional[str] = None,
    json_logs: Optional[bool] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: Override log level (default: settings.log_level)
        json_logs: Force JSON (True) or console (False) output; by default
            JSON unless running at DEBUG
        stream: Output stream (default: stdout)
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    if json_logs is None:
        json_logs = settings.log_json if settings.log_json is not None else level != logging.DEBUG

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        stringify_chain_values,
    ]

    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Receipt polling would otherwise log every request
    for name in ("httpcore", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_conversion_context(**values: object) -> None:
    """Attach conversion identifiers to every log line emitted in this context."""
    structlog.contextvars.bind_contextvars(**values)


def clear_conversion_context() -> None:
    structlog.contextvars.clear_contextvars()
