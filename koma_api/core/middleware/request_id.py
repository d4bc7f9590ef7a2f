import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from koma_api.core.logging import LOGGER_NAME, bind_request_id, latency_bucket_ms, reset_request_id

REQUEST_ID_HEADER = "x-request-id"
_MAX_INCOMING_LENGTH = 128


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Give every request an id: the caller's x-request-id when it looks sane,
    otherwise a fresh uuid4. The id is echoed on the response.
    """

    async def dispatch(self, request, call_next):
        incoming = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
        rid = incoming if 0 < len(incoming) <= _MAX_INCOMING_LENGTH else str(uuid4())
        request.state.request_id = rid

        token = bind_request_id(rid)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = rid
            logging.getLogger(LOGGER_NAME).info(
                "request.complete",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "status": response.status_code,
                    "latency_bucket": latency_bucket_ms((time.perf_counter() - started) * 1000),
                },
            )
            return response
        finally:
            reset_request_id(token)
