from starlette.middleware.base import BaseHTTPMiddleware

from examprep.core.metrics import http_requests_total


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count HTTP responses by method and status."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        http_requests_total.inc(labels={
            "method": request.method.upper(),
            "status": str(getattr(response, "status_code", None) or 0),
        })
        return response
