"""
Structured logging for release runs.

- JSON lines when ``RELEASE_LOG_FORMAT=json`` or when running under CI
  (``CI`` is set), so the trigger's run log stays machine-parsable
- Colored console output otherwise
- ``commit`` and ``run_id`` bound per run through ``structlog.contextvars``

Usage::

    from release.logging_config import get_logger
    logger = get_logger(__name__)
    logger.info("object_uploaded", path="index.html", version_id="...")
"""

import logging
import os
import sys
from collections.abc import Mapping

import structlog


def _wants_json(environ: Mapping[str, str]) -> bool:
    fmt = environ.get("RELEASE_LOG_FORMAT", "").strip().lower()
    if fmt:
        return fmt == "json"
    return bool(environ.get("CI"))


def configure_logging(
    level: str = "INFO",
    environ: Mapping[str, str] | None = None,
) -> None:
    """Configure structlog processors and stdlib integration."""
    environ = os.environ if environ is None else environ
    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if _wants_json(environ):
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
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    # stderr keeps stdout free for command output (plans, policies, results).
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    for noisy in ("boto3", "botocore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger for *name*."""
    return structlog.get_logger(name)
