"""Security headers middleware for the JSON API."""

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# Responses carry tokens; nothing may be cached or framed
_API_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to every response.

    HSTS is only sent when the request arrived over HTTPS, directly or
    through a proxy setting X-Forwarded-Proto.
    """

    def __init__(self, app, hsts_max_age: int = 31536000):
        super().__init__(app)
        self.hsts_max_age = hsts_max_age

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        for name, value in _API_HEADERS.items():
            response.headers.setdefault(name, value)

        if request.headers.get("x-forwarded-proto") == "https" or request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = (
                f"max-age={self.hsts_max_age}; includeSubDomains"
            )

        return response
