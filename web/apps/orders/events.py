"""Order state-change notifications for fulfillment.

Every state change written by the repository also appends a row to the
``order_events`` outbox inside the same transaction. Consumers either poll
the outbox (``GET /api/orders/events/``) or connect to the
``order_state_changed`` signal, which is sent once the transaction commits.
"""

from django.db import transaction
from django.dispatch import Signal

from .models import OrderEventModel

# kwargs: order_id, status, payment_status
order_state_changed = Signal()


def record_event(order_id, status: str, payment_status: str) -> OrderEventModel:
    """Append an outbox row and schedule the signal for after commit.

    Must be called inside the transaction that performed the state change.
    """
    event = OrderEventModel.objects.create(order_id=order_id, status=status, payment_status=payment_status)
    transaction.on_commit(
        lambda: order_state_changed.send(
            sender=OrderEventModel,
            order_id=order_id,
            status=status,
            payment_status=payment_status,
        )
    )
    return event


def events_after(seq: int, limit: int = 100) -> list[dict]:
    rows = OrderEventModel.objects.filter(seq__gt=seq).order_by("seq")[:limit]
    return [
        {
            "seq": e.seq,
            "order_id": str(e.order_id),
            "status": e.status,
            "payment_status": e.payment_status,
            "created_at": e.created_at.isoformat(),
        }
        for e in rows
    ]
