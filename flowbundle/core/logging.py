"""Structured logging via structlog.

Configured once from `create_app()`. Module loggers obtained with
`logging.getLogger(__name__)` go through the stdlib bridge, so ingestion
and rendering logs share the renderer and the request ID of the call that
produced them.

Signed storage URLs carry a bearer-like `token` query parameter. Any URL
that reaches a structlog event has that value masked, and httpx (which
logs every request line at INFO) is held at WARNING.

Renderer selection:
  debug=True : `ConsoleRenderer` with colours for local development.
  debug=False: `JSONRenderer` for machine-parseable logs in production.
"""

from __future__ import annotations

import logging
import re
import sys

import structlog

from flowbundle.core.middleware import get_request_id

_TOKEN_PARAM_RE = re.compile(r"((?:^|[?&])token=)[^&\s\"']+")

# Loggers that would otherwise print signed URLs verbatim.
_NOISY_LOGGERS = ("httpx", "httpcore", "hpack")


def mask_signed_tokens(text: str) -> str:
    """Replace the value of every `token=` query parameter in *text*."""
    return _TOKEN_PARAM_RE.sub(r"\1***", text)


def _inject_request_id(
    logger: logging.Logger,
    method: str,
    event_dict: dict,
) -> dict:
    """Structlog processor: add the current request ID when one is bound."""
    request_id = get_request_id()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def _mask_url_tokens(
    logger: logging.Logger,
    method: str,
    event_dict: dict,
) -> dict:
    """Structlog processor: mask signed-URL tokens in string values."""
    for key, value in event_dict.items():
        if isinstance(value, str) and "token=" in value:
            event_dict[key] = mask_signed_tokens(value)
    return event_dict


def configure_structlog(debug: bool = True) -> None:
    """Configure structlog for the application lifetime.

    Safe to call more than once; the last call wins.
    """
    level = logging.DEBUG if debug else logging.INFO
    shared_processors: list = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _inject_request_id,
        _mask_url_tokens,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer = (
        structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        stream=sys.stdout,
        level=level,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
