"""Unit tests for structured logging utilities in ``observability``."""

from __future__ import annotations

import logging

import pytest

from lib_network_manifest import bind_trace_id, get_logger
from lib_network_manifest.observability import TRACE_ID, log_error, log_info, make_event, new_trace_id


def test_null_handler_present() -> None:
    """Package logger should always include a NullHandler to avoid surprises."""

    logger = get_logger()
    assert any(isinstance(handler, logging.NullHandler) for handler in logger.handlers)


def test_trace_id_in_log(caplog: pytest.LogCaptureFixture) -> None:
    """Structured logs should include the bound trace identifier and contextual fields."""

    caplog.set_level(logging.INFO, logger="lib_network_manifest")
    bind_trace_id("trace-123")
    log_info("network_merged", phase="merge", targets=2)
    record = caplog.records[-1]
    assert getattr(record, "context") == {"trace_id": "trace-123", "phase": "merge", "targets": 2}
    bind_trace_id(None)


def test_bind_trace_id_clears_context() -> None:
    bind_trace_id("trace-temp")
    bind_trace_id(None)
    assert TRACE_ID.get() is None


def test_new_trace_id_binds_a_fresh_identifier() -> None:
    first = new_trace_id()
    second = new_trace_id()
    assert first != second
    assert TRACE_ID.get() == second
    bind_trace_id(None)


def test_make_event_merges_payload() -> None:
    assert make_event("capture", "web1", {"snapshot": "x"}) == {"phase": "capture", "target": "web1", "snapshot": "x"}
    assert make_event("compile", None) == {"phase": "compile", "target": None}


def test_error_events_use_error_level(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.ERROR, logger="lib_network_manifest")
    log_error("lifecycle_target_failed", **make_event("restore", "web1", {"error": "no snapshot"}))
    record = caplog.records[-1]
    assert record.levelno == logging.ERROR
    assert record.context["target"] == "web1"
