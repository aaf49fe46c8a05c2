"""
Request correlation for the competition API.

Every response carries x-request-id. A caller-supplied id is echoed only when
it is a short token of safe characters; anything else is replaced so log
lines cannot be forged through the header. Completion is logged once per
request, at WARNING for server errors.
"""
import logging
import re
import time
from typing import Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from writeclub.core.logging import request_id_ctx_var, latency_bucket_ms

logger = logging.getLogger("writeclub")

MAX_REQUEST_ID_LENGTH = 64
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]+$")


def accepted_request_id(candidate: Optional[str]) -> Optional[str]:
    if not candidate:
        return None
    candidate = candidate.strip()
    if len(candidate) > MAX_REQUEST_ID_LENGTH or not _REQUEST_ID_RE.match(candidate):
        return None
    return candidate


class RequestIdMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        incoming = request.headers.get(self.header_name)
        rid = accepted_request_id(incoming) or str(uuid4())
        if incoming and rid != incoming.strip():
            logger.debug("request.id_replaced", extra={"request_id": rid})
        request.state.request_id = rid

        token = request_id_ctx_var.set(rid)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers[self.header_name] = rid
        status = response.status_code
        logger.log(
            logging.WARNING if status >= 500 else logging.INFO,
            "request.complete",
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "latency_bucket": latency_bucket_ms(elapsed_ms),
                "scheduler_call": request.url.path.startswith("/v1/cron/"),
            },
        )
        return response
