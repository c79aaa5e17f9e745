import logging
import sys

import structlog


def configure_logging(verbose: bool = False, json_output: bool = False) -> None:
    """
    Routes structlog output to stderr.
    stdout is reserved for results (patched HTML, JSON, or the MCP stdio protocol).
    """
    level = logging.DEBUG if verbose else logging.INFO

    processors = [
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
