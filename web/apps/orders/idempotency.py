"""Idempotency utilities for order creation retries.

A client that retries ``POST /api/orders/`` with the same ``Idempotency-Key``
and the same body gets the stored response back instead of creating (and
reserving stock for) a second order. Reusing a key with a different body is
a conflict.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey

IN_PROGRESS = 0


def _hash(payload: dict) -> str:
    """Compute a stable SHA-256 hash for a JSON-serializable payload.

    The payload is serialized with sorted keys and compact separators to
    ensure a deterministic representation before hashing.
    """
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def get_or_create_idempotent(key: str, payload: dict):
    """Get-or-create an idempotency record for the given key and payload.

    Behavior:
        - New key: create a record and return ``(False, rec)``; the caller
          processes the request and calls ``finalize``.
        - Known key, same payload: return ``(True, rec)``. ``rec`` may still
          be in progress (``response_status == 0``) when the first request
          has not finished yet.
        - Known key, different payload: raise ``ValueError("IDEMPOTENCY_CONFLICT")``.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)``.
    """
    h = _hash(payload)

    try:
        # Nested savepoint: if IntegrityError occurs, only this block is rolled back.
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(
                key=key, request_hash=h, response_status=IN_PROGRESS, response_body={}
            )
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise ValueError("IDEMPOTENCY_CONFLICT")
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None):
    """Persist the final response for an idempotent request.

    Subsequent retries return this stored response without re-running side
    effects.
    """
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order"])


def discard(rec: IdempotencyKey):
    """Forget a key whose request failed transiently so it can be retried."""
    IdempotencyKey.objects.filter(key=rec.key, response_status=IN_PROGRESS).delete()
