from slowapi import Limiter
from starlette.requests import Request


def client_address(request: Request) -> str:
    """Rate-limit key for a request.

    Behind the reverse proxy the browser's address is the first entry of
    X-Forwarded-For; direct connections use the socket peer.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


limiter = Limiter(key_func=client_address)
