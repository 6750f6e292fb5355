"""Gateway middleware: request correlation, access logging and body size limits.

``RequestIdMiddleware`` assigns every request an id (reusing a sane
client-provided ``X-Request-ID``), exposes it through the ``REQUEST_ID_CTX``
ContextVar for log filters and outgoing HTTP calls, echoes it on the
response and writes one access log line per request.

``ApiSizeLimitMiddleware`` rejects oversized ``/api/`` bodies before they
are parsed.
"""

import contextvars
import logging
import re
import time
import uuid

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")

# ids we accept from clients; anything else is replaced
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

access_logger = logging.getLogger("gateway.access")


class RequestIdMiddleware(MiddlewareMixin):
    """Django middleware that sets and returns a per-request identifier.

    Attributes:
        HEADER (str): The incoming header, in ``request.META`` casing.
        RESPONSE_HEADER (str): The header returned on responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        """Attach ``request.request_id`` and set ``REQUEST_ID_CTX``.

        A client-provided id is reused only if it matches a conservative
        pattern, so log lines cannot be forged through the header.
        """
        rid = request.META.get(self.HEADER, "")
        if not _REQUEST_ID_RE.match(rid):
            rid = str(uuid.uuid4())
        request.request_id = rid
        request._started_at = time.monotonic()
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid

        started = getattr(request, "_started_at", None)
        if started is not None:
            access_logger.info(
                "request finished",
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": round((time.monotonic() - started) * 1000, 1),
                },
            )
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    """Answer 413 for ``/api/`` requests whose body exceeds ``API_MAX_BYTES``."""

    def process_request(self, request):
        if not request.path.startswith("/api/"):
            return None
        limit = getattr(settings, "API_MAX_BYTES", 1024 * 1024)
        clen = request.META.get("CONTENT_LENGTH")
        if clen and clen.isdigit() and int(clen) > limit:
            return JsonResponse(
                {"detail": "PAYLOAD_TOO_LARGE", "message": f"Request body exceeds {limit} bytes."},
                status=413,
            )
        return None
