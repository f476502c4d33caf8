"""ASGI middleware for the flowbundle API.

Registered in `create_app()` (outermost first):
  1. CORSMiddleware    : handled by FastAPI directly (not here)
  2. SlowAPIMiddleware : rate limiting (not here)
  3. SecurityHeadersMiddleware: security and caching headers
  4. RequestIdMiddleware: X-Request-ID in, X-Request-ID out, bound to a ContextVar
"""

import re
import uuid
from contextvars import ContextVar
from typing import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Client IDs end up in every log line of the request.
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def get_request_id() -> str:
    """Return the current request's ID, or an empty string outside a request."""
    return _request_id_var.get()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request ID for the lifetime of the request.

    A well-formed client-supplied ID is reused so a publish can be traced
    from the front end through every per-entry ingestion log line; anything
    else is replaced with a fresh UUID. The ID is always echoed back.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        supplied = request.headers.get("X-Request-ID", "")
        request_id = supplied if _VALID_REQUEST_ID.match(supplied) else str(uuid.uuid4())

        token = _request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            _request_id_var.reset(token)

        response.headers["X-Request-ID"] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach security-related headers to every outgoing response.

      X-Content-Type-Options: nosniff
          Rendered bundles and proxied assets are served with their stored
          MIME type; browsers must not sniff them into something else.

      X-Frame-Options: SAMEORIGIN
          Rendered flows are embedded by the same-origin front end in an
          iframe; cross-origin framing stays blocked.

      Referrer-Policy: strict-origin-when-cross-origin
          Signed URLs carry tokens in their query string; only the origin
          leaks to third parties referenced from a bundle.

      Cache-Control: no-store (HTML only, unless the route set its own)
          Rendered pages embed signed URLs that expire; a cached page would
          outlive its asset links.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["X-XSS-Protection"] = "0"
        content_type = response.headers.get("content-type", "")
        if content_type.startswith("text/html") and "cache-control" not in response.headers:
            response.headers["Cache-Control"] = "no-store"
        return response
