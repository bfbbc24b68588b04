"""Single-attempt HTTP delivery of a signed webhook."""
from __future__ import annotations

import asyncio
import time
from typing import Any, Mapping

import aiohttp
import structlog
from aiohttp import ClientSession, ClientTimeout

from webhook_service.domain.webhooks import DeliveryAttempt, DeliveryResult
from webhook_service.otel import get_meter, get_tracer
from webhook_service.services.signing import build_payload, sign

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)
_deliveries_counter = get_meter(__name__).create_counter(
    "webhook.deliveries", description="Webhook delivery attempts by outcome"
)

FALLBACK_ERROR = "webhook delivery failed"


class DeliveryExecutor:
    """POSTs one webhook body and reports what happened.

    Never retries and never raises for network or HTTP failures: every outcome,
    timeouts included, comes back as a :class:`DeliveryResult`.
    """

    def __init__(
        self,
        session: ClientSession,
        *,
        timeout_seconds: float,
        signature_header: str = "X-Aero-Signature",
        event_header: str = "X-Aero-Event",
    ):
        self._session = session
        self._timeout_seconds = timeout_seconds
        self._signature_header = signature_header
        self._event_header = event_header

    async def deliver(
        self,
        url: str,
        secret: str,
        event: str,
        data: Mapping[str, Any],
        sent_at: str,
    ) -> DeliveryAttempt:
        payload = build_payload(event, data, sent_at)
        headers = {
            "Content-Type": "application/json",
            self._signature_header: sign(secret, payload),
            self._event_header: event,
        }
        with tracer.start_as_current_span("webhook.deliver") as span:
            span.set_attribute("webhook.event", event)
            result = await self._post(url, payload.encode("utf-8"), headers)
            span.set_attribute("webhook.success", result.ok)
            if result.status is not None:
                span.set_attribute("http.status_code", result.status)
        _deliveries_counter.add(1, {"event": event, "success": result.ok})
        return DeliveryAttempt(sent_at=sent_at, payload=payload, result=result)

    async def _post(self, url: str, body: bytes, headers: dict[str, str]) -> DeliveryResult:
        started = time.perf_counter()

        def elapsed_ms() -> int:
            return int(round((time.perf_counter() - started) * 1000))

        try:
            async with self._session.post(
                url,
                data=body,
                headers=headers,
                timeout=ClientTimeout(total=self._timeout_seconds),
                allow_redirects=False,
            ) as resp:
                status = resp.status
                reason = resp.reason or ""
        except asyncio.TimeoutError:
            return DeliveryResult(
                ok=False,
                duration_ms=elapsed_ms(),
                error=f"request timed out after {int(self._timeout_seconds * 1000)} ms",
            )
        except (aiohttp.ClientError, ValueError, OSError) as exc:
            # ValueError covers malformed URLs rejected by yarl before connecting
            return DeliveryResult(ok=False, duration_ms=elapsed_ms(), error=str(exc) or FALLBACK_ERROR)

        duration_ms = elapsed_ms()
        if 200 <= status < 300:
            return DeliveryResult(ok=True, status=status, status_text=reason, duration_ms=duration_ms)
        return DeliveryResult(
            ok=False,
            status=status,
            status_text=reason,
            duration_ms=duration_ms,
            error=f"HTTP {status} {reason}".strip(),
        )
