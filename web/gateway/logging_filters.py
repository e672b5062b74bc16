"""Logging filters for enriching log records with request and order context.

This module provides a logging filter that injects the current request id
and the order being processed into log records, using the ContextVars set by
the gateway middleware and by the order pipeline. Adding the filter to the
logging configuration gives per-request and per-order correlation in logs
without modifying individual log statements.
"""

from logging import Filter, LogRecord

from .context import ORDER_ID_CTX, REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach ``request_id`` and ``order_id`` attributes to log records.

    Values come from ``REQUEST_ID_CTX`` and ``ORDER_ID_CTX``. A hyphen ("-")
    is used when nothing is bound so formatters can reliably reference
    ``%(request_id)s`` and ``%(order_id)s``. An ``order_id`` passed explicitly
    through ``extra=`` is left untouched.
    """

    def filter(self, record: LogRecord) -> bool:
        """Populate the context attributes and allow the record to be logged.

        Args:
            record: The log record to enrich.

        Returns:
            bool: Always True to indicate the record should be processed.
        """
        record.request_id = REQUEST_ID_CTX.get()
        if not hasattr(record, "order_id"):
            record.order_id = ORDER_ID_CTX.get()
        return True
