"""Context variables shared by the request middleware and the pipeline.

``REQUEST_ID_CTX`` is set once per HTTP request by ``RequestIdMiddleware``.
``ORDER_ID_CTX`` is bound by the order pipeline while it works on a given
order, so log lines emitted from the client-confirm path, the webhook path and
the expiry job can be correlated per order.
"""

import contextvars
from contextlib import contextmanager

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
ORDER_ID_CTX = contextvars.ContextVar("order_id", default="-")


@contextmanager
def bind_order(order_id):
    """Bind ``order_id`` to ``ORDER_ID_CTX`` for the duration of the block."""
    token = ORDER_ID_CTX.set(str(order_id))
    try:
        yield
    finally:
        ORDER_ID_CTX.reset(token)
