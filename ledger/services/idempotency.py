"""Idempotency key resolution for checkout attempts.

A client that retries with the same key lands on the same order; a client
that sends none gets a fresh key per request, so its retries are only
deduplicated on the provider side within that single request.
"""

import uuid

MAX_KEY_LENGTH = 255  # orders.idempotency_key column width


def resolve_idempotency_key(supplied=None):
    """Return the key governing this checkout attempt.

    A supplied key passes through unchanged. None or "" yields a random
    UUID4 (os.urandom backed), unique for all practical purposes.
    """
    if supplied:
        return supplied
    return str(uuid.uuid4())
