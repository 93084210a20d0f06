from slowapi import Limiter
from starlette.requests import Request


def get_real_client_ip(request: Request) -> str:
    """Client IP for rate limiting, trusting the first X-Forwarded-For hop.

    The faucet runs behind a reverse proxy that appends the caller's address.
    Falls back to request.client.host for direct connections.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


# Every round of a challenge is a separate /verify call, so limits are per IP
# rather than per address.
limiter = Limiter(key_func=get_real_client_ip)
