"""Logging filters enriching records with request context."""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach ``request_id`` to every record.

    The value comes from ``REQUEST_ID_CTX``, so log lines emitted deep inside
    the order services (stock ledger, IPN handler) still correlate with the
    request that triggered them. Outside a request the placeholder ``-`` is
    used, which keeps ``%(request_id)s`` formatters safe.
    """

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
