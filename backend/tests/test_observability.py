"""Tests ensuring observability wiring is safe by default."""
from __future__ import annotations

import importlib

import pytest

from habitbingo.core.context import goal_ctx_var
from habitbingo.observability import tracing


class _DummyTrace:
    def __init__(self, name, metadata=None):
        self.name = name
        self.metadata = dict(metadata or {})
        self.error_info = None
        self.ended = False

    def update(self, metadata=None, error_info=None, **kwargs):
        if metadata:
            self.metadata.update(metadata)
        if error_info:
            self.error_info = error_info

    def end(self):
        self.ended = True


class _DummyOpik:
    def __init__(self):
        self.traces = []

    def trace(self, name, metadata=None, **kwargs):
        trace = _DummyTrace(name, metadata)
        self.traces.append(trace)
        return trace


def test_app_import_succeeds_when_opik_is_disabled(monkeypatch) -> None:
    monkeypatch.setenv("OPIK_ENABLED", "false")
    monkeypatch.delenv("OPIK_API_KEY", raising=False)

    import habitbingo.core.config as core_config
    import habitbingo.observability.client as client_module
    import habitbingo.main as main_module

    importlib.reload(core_config)
    importlib.reload(client_module)
    reloaded_app = importlib.reload(main_module)
    client_module.reset_opik_client()

    assert hasattr(reloaded_app, "app")
    assert client_module.get_opik_client() is None


def test_trace_carries_request_and_goal_context(monkeypatch) -> None:
    dummy = _DummyOpik()
    monkeypatch.setattr(tracing, "get_opik_client", lambda: dummy)
    token = goal_ctx_var.set("reading")
    try:
        with tracing.trace("pipeline.capability_model", metadata={"attempt": 1}, request_id="req-9"):
            pass
    finally:
        goal_ctx_var.reset(token)

    trace = dummy.traces[0]
    assert trace.metadata["request_id"] == "req-9"
    assert trace.metadata["goal"] == "reading"
    assert trace.metadata["attempt"] == 1
    assert "duration_ms" in trace.metadata
    assert trace.ended


def test_trace_records_error_and_reraises(monkeypatch) -> None:
    dummy = _DummyOpik()
    monkeypatch.setattr(tracing, "get_opik_client", lambda: dummy)

    with pytest.raises(ValueError):
        with tracing.trace("oracle.complete"):
            raise ValueError("bad payload")

    assert dummy.traces[0].error_info == {"message": "bad payload", "type": "ValueError"}
    assert dummy.traces[0].ended
