"""Sentry SDK integration for the flowbundle API.

Events are captured with `send_default_pii=False` and pass through
`_scrub_secrets` before leaving the process:

  - values under keys that name a credential (service key, secret,
    password, token, dsn, cookie) or a signed URL are replaced outright;
  - any other string that embeds a signed URL keeps its shape but loses
    the `token=` value, including the request URL and query string.

Nothing is initialised when SENTRY_DSN is empty (local dev, CI).
"""

from __future__ import annotations

import logging
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from flowbundle.core.logging import mask_signed_tokens

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

_SENSITIVE_KEYS = frozenset(
    {
        "service_key", "secret", "password", "token", "dsn",
        "signed_url", "cookie", "authorization",
    }
)


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(sensitive in lowered for sensitive in _SENSITIVE_KEYS)


def _scrub_value(value: Any) -> Any:
    if isinstance(value, dict):
        _scrub_dict(value)
    elif isinstance(value, list):
        return [_scrub_value(item) for item in value]
    elif isinstance(value, str) and "token=" in value:
        return mask_signed_tokens(value)
    return value


def _scrub_dict(d: dict[str, Any]) -> None:
    """Redact sensitive values of *d* in place, descending into containers."""
    for key in list(d.keys()):
        if _is_sensitive(str(key)):
            d[key] = REDACTED
        else:
            d[key] = _scrub_value(d[key])


def _scrub_secrets(event: dict[str, Any], hint: Any) -> dict[str, Any]:
    """Sentry before_send hook."""
    _scrub_dict(event.get("extra", {}))

    request = event.get("request", {})
    data = request.get("data")
    if isinstance(data, dict):
        _scrub_dict(data)
    headers = request.get("headers")
    if isinstance(headers, dict):
        _scrub_dict(headers)
    for field in ("url", "query_string"):
        if isinstance(request.get(field), str):
            request[field] = mask_signed_tokens(request[field])
    return event


def init_sentry(dsn: str, environment: str = "development") -> None:
    """Initialise the Sentry SDK; a blank *dsn* disables it."""
    if not dsn or not dsn.strip():
        logger.debug("Sentry DSN not configured: skipping initialisation")
        return

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,
        before_send=_scrub_secrets,
    )
    logger.info("Sentry initialised (environment=%s)", environment)
