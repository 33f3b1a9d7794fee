"""Rate limiting configuration using slowapi.

The leave preview runs the whole computation pipeline without persisting,
so it is throttled per member. Anonymous traffic is keyed by client IP.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address


def member_or_ip(request: Request) -> str:
    # get_current_user stores the id on request.state before the limit is checked
    user_id = getattr(request.state, "user_id", None)
    if user_id is not None:
        return f"user:{user_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=member_or_ip, default_limits=["60/minute"])
