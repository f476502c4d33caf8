"""SlowAPI rate limiter singleton.

Publishing a flow or a new version uploads every member of an archive to
storage, so those routes are throttled per authenticated user rather than
per IP (users behind the same proxy must not share a budget).

Route handlers that use `@limiter.limit(...)` must accept a `Request`
parameter. `get_current_user` stores the caller on `request.state.user_id`
while dependencies resolve, which happens before the limit is checked.
"""

from slowapi import Limiter


def _user_id_key(request) -> str:
    """Key function: rate-limit per authenticated user ID, falling back to IP."""
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return str(user_id)
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=_user_id_key, default_limits=[])
