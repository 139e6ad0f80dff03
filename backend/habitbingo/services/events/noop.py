"""No-op event provider (logs only)."""
from __future__ import annotations

import logging
from typing import Any, Dict

from habitbingo.services.events.base import DeliveryResult, EventSink

logger = logging.getLogger(__name__)


class NoopEventSink(EventSink):
    def publish(
        self,
        *,
        event_type: str,
        payload: Dict[str, Any],
        request_id: str | None,
    ) -> DeliveryResult:
        logger.info("Event published (noop) %s keys=%s", event_type, sorted(payload))
        return DeliveryResult(status="noop", reason="event provider is noop")
