"""structlog setup shared by the engine entry points."""

import logging

import structlog

_configured = False


def configure_logging(level: str = "INFO", *, json_output: bool = False) -> None:
    """Install the engine's processor chain.

    Console rendering by default; ``json_output`` switches to one JSON object
    per line for log shippers. Only the first call takes effect.
    """
    global _configured
    if _configured:
        return
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
    )
    _configured = True
