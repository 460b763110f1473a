"""structlog setup.

Learn: Log lines are events with keyword context, e.g.

    auth.refresh_rejected cause=mismatched principal_id=... request_id=...

request_id comes from the RequestIdMiddleware via contextvars. Any key
that looks like a secret (password, token, secret) is masked before
rendering, so a careless logger.info(..., token=t) can't leak a token.
"""

import logging

import structlog

SENSITIVE_KEYS = ("password", "token", "secret", "authorization", "cookie")
MASK = "***"


def mask_sensitive(_logger, _method, event_dict: dict) -> dict:
    """structlog processor: mask values of secret-looking keys."""
    for key in list(event_dict):
        if key == "event":
            continue
        if any(s in key.lower() for s in SENSITIVE_KEYS):
            event_dict[key] = MASK
    return event_dict


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog (and the stdlib root logger for uvicorn/sqlalchemy)."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=log_level, format="%(message)s")

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            mask_sensitive,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )
