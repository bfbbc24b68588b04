"""Webhook body canonicalization and HMAC signing.

Receivers verify ``X-Aero-Signature`` by computing HMAC-SHA256 over the raw
request body with their copy of the secret, so the body must be sent exactly
as it was signed: build it once with :func:`build_payload`, sign that string,
and transmit the same bytes.
"""
from __future__ import annotations

import hmac
import json
import re
from datetime import datetime, timezone
from hashlib import sha256
from typing import Any, Mapping
from uuid import UUID

TEST_MESSAGE = "Webhook test delivery"

# Decoded JSON may carry unpaired surrogates ("\ud83d"); they have no UTF-8 form.
_LONE_SURROGATE = re.compile("[\ud800-\udfff]")


def _escape_surrogate(match: re.Match[str]) -> str:
    return f"\\u{ord(match.group()):04x}"


def sign(secret: str, payload: str) -> str:
    """Lowercase hex HMAC-SHA256 of ``payload``; an empty secret is a valid key."""
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), sha256).hexdigest()


def build_payload(event: str, data: Mapping[str, Any], sent_at: str) -> str:
    """Serialize ``{"event", "data", "sentAt"}`` compactly, in that key order.

    Non-ASCII text is kept as is. Unpaired surrogates are written as ``\\uXXXX``
    escapes so the body is always valid UTF-8.
    """
    body = json.dumps(
        {"event": event, "data": data, "sentAt": sent_at},
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return _LONE_SURROGATE.sub(_escape_surrogate, body)


def build_test_data(subscription_id: UUID | str) -> dict[str, str]:
    return {"message": TEST_MESSAGE, "webhookId": str(subscription_id)}


def utc_timestamp(moment: datetime | None = None) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. ``2026-01-02T03:04:05.678Z``."""
    moment = (moment or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def verify(secret: str, payload: str, signature: str) -> bool:
    """Constant-time check of a received signature (receiver side helper)."""
    return hmac.compare_digest(sign(secret, payload), signature.strip().lower())
