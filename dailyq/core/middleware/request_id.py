import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from dailyq.core.logging import LOGGER_NAME, latency_bucket_ms, request_id_ctx_var, user_id_ctx_var


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Correlate every log line of a request.

    Reuses an incoming ``x-request-id`` or mints one, binds it and the
    ``X-User-Id`` caller to logging context, and echoes the id back.
    """

    def __init__(self, app, header_name: str = "x-request-id", user_header: str = "x-user-id"):
        super().__init__(app)
        self.header_name = header_name
        self.user_header = user_header

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        user_id = (request.headers.get(self.user_header) or "").strip() or None
        request.state.request_id = rid

        rid_token = request_id_ctx_var.set(rid)
        user_token = user_id_ctx_var.set(user_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            user_id_ctx_var.reset(user_token)
            request_id_ctx_var.reset(rid_token)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers[self.header_name] = rid
        logging.getLogger(LOGGER_NAME).info(
            "request.complete",
            extra={
                "request_id": rid,
                "user_id": user_id,
                "path": request.url.path,
                "method": request.method,
                "status": response.status_code,
                "latency_bucket": latency_bucket_ms(elapsed_ms),
            },
        )
        return response
