"""Idempotency utilities for safely handling duplicate checkout requests.

Keys are scoped to the caller (``<user_id>:<Idempotency-Key>``) so two
customers can never replay each other's responses. A record stores the hash
of the request body; the first request creates it and, once processed, the
response is stored so retries short-circuit with the same status and body.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey


def scoped_key(user_id: str, key: str) -> str:
    return f"{user_id}:{key.strip()}"


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
        - First request with a new key: create a record and return (False, rec).
        - Same key and same payload again: lock the row and return (True, rec).
        - Same key with a different payload: raise
          ValueError("IDEMPOTENCY_CONFLICT").

    A nested savepoint wraps the create so an IntegrityError only rolls back
    that block; the existing-record path takes a row lock
    (SELECT ... FOR UPDATE).

    Args:
        key: Caller-scoped idempotency key (see ``scoped_key``).
        payload: Request payload used to compute the request hash.

    Returns:
        tuple[bool, IdempotencyKey]: (existing, rec).

    Raises:
        ValueError: If the key exists with a different payload hash.
    """
    h = _hash(payload)

    try:
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=key, request_hash=h, response_status=0, response_body={})
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise ValueError("IDEMPOTENCY_CONFLICT")
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None):
    """Persist the final response for an idempotent request.

    Args:
        rec: The idempotency record to update.
        status_code: HTTP status code to store for the response.
        body: JSON-serializable response body to persist.
        order_id: Optional id of the order created by the request.
    """
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order_id"])
