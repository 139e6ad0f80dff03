"""Event sink factory."""
from __future__ import annotations

from functools import lru_cache

from habitbingo.core.config import settings
from habitbingo.services.events.base import EventSink
from habitbingo.services.events.noop import NoopEventSink


@lru_cache
def get_event_sink() -> EventSink:
    provider = settings.events_provider.lower()
    if provider == "noop":
        return NoopEventSink()
    return NoopEventSink()
