"""structlog setup for the pricerules process.

Everything goes to stderr so stdout stays clean for results:

- console lines by default (colored on a TTY),
- JSON lines with ``--log-json``, for shipping to a log collector.

Services log through stdlib ``logging.getLogger(__name__)``; those records
pass through the same structlog chain as native structlog loggers.
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import Processor

PACKAGE_LOGGER = "pricerules"

# Third-party loggers that stay at WARNING even under --verbose.
_NOISY = ("sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool")


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(log_json: bool) -> Processor:
    if log_json:
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(
    *,
    verbose: bool = False,
    log_json: bool = False,
    catalog: str | None = None,
) -> None:
    """Route structlog and stdlib logging to stderr.

    Args:
        verbose: Package loggers at DEBUG (audit lines for every mutation);
            otherwise WARNING.
        log_json: JSON lines instead of console lines.
        catalog: Catalog name bound to every line logged afterwards.
    """
    shared = _shared_processors()
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_json),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.WARNING)

    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG if verbose else logging.WARNING)
    for name in _NOISY:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.contextvars.clear_contextvars()
    if catalog:
        structlog.contextvars.bind_contextvars(catalog=catalog)
