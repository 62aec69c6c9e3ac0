"""
Structured logging configuration using structlog.

Modules log through structlog with key/value events:

    logger = structlog.get_logger(__name__)
    logger.info("Bulk deleted requests", account_id="u1", deleted_count=500)

Output goes through stdlib logging, so records from libraries that use
logging.getLogger directly get the same formatting.
"""

import logging
import sys
from typing import List

import structlog
from structlog.types import Processor


def configure_logging(log_level: str = "INFO", json_format: bool = False) -> None:
    """
    Configure structlog and the root stdlib logger.

    Args:
        log_level: Minimum log level to output.
        json_format: If True, output JSON lines. If False, console output.
    """
    log_level_int = getattr(logging, log_level.upper(), logging.INFO)

    pre_chain: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        renderer: Processor = structlog.processors.JSONRenderer()
        pre_chain.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level_int)

    # aiohttp logs every request at INFO
    logging.getLogger("aiohttp").setLevel(max(log_level_int, logging.WARNING))
