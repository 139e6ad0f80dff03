"""Record and publish domain events."""
from __future__ import annotations

import logging
from time import perf_counter
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from habitbingo.core.config import settings
from habitbingo.core.context import get_request_id
from habitbingo.db.models import EventLog
from habitbingo.observability.metrics import log_metric
from habitbingo.observability.tracing import trace
from habitbingo.services.events.base import DeliveryResult, EventSink
from habitbingo.services.events.factory import get_event_sink

logger = logging.getLogger(__name__)


def emit_event(
    db: Session,
    event_type: str,
    payload: Dict[str, Any],
    *,
    sink: Optional[EventSink] = None,
    request_id: str | None = None,
) -> EventLog:
    """Publish an event and add its event_log row to the session (the caller commits)."""
    request_id = request_id or get_request_id()
    if not settings.events_enabled:
        result = DeliveryResult(status="skipped", reason="events disabled")
        log_metric("events.skipped", 1, metadata={"event": event_type})
        return _record(db, event_type, payload, result, request_id)

    sink = sink or get_event_sink()
    start = perf_counter()
    with trace(f"events.{event_type}", metadata={"provider": settings.events_provider}):
        result = sink.publish(event_type=event_type, payload=payload, request_id=request_id)
    log_metric("events.published", 1, metadata={"event": event_type, "provider": settings.events_provider})
    log_metric("events.duration_ms", (perf_counter() - start) * 1000, metadata={"event": event_type})
    return _record(db, event_type, payload, result, request_id)


def _record(
    db: Session,
    event_type: str,
    payload: Dict[str, Any],
    result: DeliveryResult,
    request_id: str | None,
) -> EventLog:
    row = EventLog(
        event_type=event_type,
        payload={**payload, "request_id": request_id or "", "result": result.__dict__},
        delivery_status=result.status,
    )
    db.add(row)
    db.flush()
    logger.debug("Recorded event %s (%s)", event_type, result.status)
    return row
