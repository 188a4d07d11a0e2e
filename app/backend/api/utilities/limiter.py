# app/backend/api/utilities/limiter.py

from fastapi import Request

from slowapi import Limiter
from slowapi.util import get_remote_address

from ...config.config import settings

# Checked in order; the kiosk usually sits behind a reverse proxy.
_CLIENT_IP_HEADERS = ("cf-connecting-ip", "x-real-ip", "x-forwarded-for")


def get_limiter_key(request: Request) -> str:
    """
    Rate limit key: the client address reported by the proxy, or the direct
    peer address when no proxy header is present.
    """
    for header_name in _CLIENT_IP_HEADERS:
        header = request.headers.get(header_name)
        if header:
            # X-Forwarded-For may be "client, proxy1, proxy2"
            return header.split(",")[0].strip()
    return get_remote_address(request)


# memory:// unless RATE_LIMITER_REDIS_URL points at a Redis instance.
limiter = Limiter(key_func=get_limiter_key, storage_uri=settings.RATE_LIMITER_REDIS_URL)
