from __future__ import annotations

import uuid


def _short_uuid() -> str:
    return uuid.uuid4().hex[:16]


def request_id() -> str:
    """Generates an identifier for one generation attempt.

    The orchestrator compares it on completion, so a result that arrives after
    the session moved on to another request is discarded instead of applied.

    Returns:
        String like ``gen_3f9c0a1b2d4e5f60``
    """
    return f"gen_{_short_uuid()}"


def blob_id() -> str:
    """Generates a 16-char hex identifier for an in-memory media blob."""
    return _short_uuid()
