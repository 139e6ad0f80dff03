from __future__ import annotations

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from habitbingo.core.config import settings
from habitbingo.db.models.event_log import EventLog
from habitbingo.services.events.base import BOARD_COMPLETED, MAP_READY, DeliveryResult, EventSink
from habitbingo.services.events.factory import get_event_sink
from habitbingo.services.events.hooks import emit_event
from habitbingo.services.events.noop import NoopEventSink


class RecordingSink(EventSink):
    def __init__(self):
        self.published = []

    def publish(self, *, event_type, payload, request_id):
        self.published.append((event_type, payload, request_id))
        return DeliveryResult(status="sent", reason="ok")


@pytest.fixture()
def session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    EventLog.__table__.create(bind=engine)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


def test_emit_event_publishes_and_records(session, monkeypatch):
    monkeypatch.setattr(settings, "events_enabled", True)
    sink = RecordingSink()

    emit_event(session, MAP_READY, {"goal": "reading", "version": 2}, sink=sink, request_id="req-1")
    session.commit()

    assert sink.published == [(MAP_READY, {"goal": "reading", "version": 2}, "req-1")]
    row = session.scalars(select(EventLog)).one()
    assert row.event_type == MAP_READY
    assert row.delivery_status == "sent"
    assert row.payload["request_id"] == "req-1"
    assert row.payload["goal"] == "reading"


def test_emit_event_skips_when_disabled(session, monkeypatch):
    monkeypatch.setattr(settings, "events_enabled", False)
    sink = RecordingSink()

    emit_event(session, BOARD_COMPLETED, {"completed_full_boards": 1}, sink=sink)
    session.commit()

    assert sink.published == []
    row = session.scalars(select(EventLog)).one()
    assert row.delivery_status == "skipped"
    assert row.payload["result"]["reason"] == "events disabled"


def test_factory_defaults_to_noop():
    get_event_sink.cache_clear()

    assert isinstance(get_event_sink(), NoopEventSink)
