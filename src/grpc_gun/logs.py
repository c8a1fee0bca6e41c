"""structlog setup shared by the gun and its embedding host."""

import logging

import structlog


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """
    Route structlog through stdlib logging.

    Args:
        level: Root log level name (DEBUG, INFO, ...). Unknown names fall back to INFO.
        json_output: Render JSON lines instead of the console renderer.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
    )
    # Reduce noise from grpc
    logging.getLogger("grpc").setLevel(logging.WARNING)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
