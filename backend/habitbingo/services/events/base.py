"""Event sink interface."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

MAP_READY = "map_ready"
MAP_FAILED = "map_failed"
BOARD_REFRESHED = "board_refreshed"
LINE_COMPLETED = "line_completed"
BOARD_COMPLETED = "board_completed"


@dataclass
class DeliveryResult:
    status: str
    reason: str


class EventSink:
    """Base interface for event providers."""

    def publish(
        self,
        *,
        event_type: str,
        payload: Dict[str, Any],
        request_id: str | None,
    ) -> DeliveryResult:
        raise NotImplementedError
