"""Structured logging helpers distilled into tiny orchestration phrases.

Purpose
    Keep every emission of logging data predictable and contextual across the
    compiler phases and the per-target snapshot lifecycle, without forcing
    applications to adopt a specific logging backend.

Contents
    - ``TRACE_ID``: context variable storing the active trace identifier.
    - ``get_logger``: returns the shared package logger (quiet by default).
    - ``bind_trace_id`` / ``new_trace_id``: bind, clear, or mint identifiers.
    - ``log_debug`` / ``log_info`` / ``log_warning`` / ``log_error``: emit
      structured entries via a single private emitter.
    - ``make_event``: convenience builder for structured event payloads.

System Integration
    Used by the composition root, the application services, and the adapters
    so every diagnostic of one compilation or lifecycle run carries the same
    trace metadata.
"""

from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar
from typing import Any, Final, Mapping

TRACE_ID: ContextVar[str | None] = ContextVar("lib_network_manifest_trace_id", default=None)
"""Current trace identifier propagated through logging helpers."""

_LOGGER: Final[logging.Logger] = logging.getLogger("lib_network_manifest")
_LOGGER.addHandler(logging.NullHandler())


def get_logger() -> logging.Logger:
    """Expose the package logger so applications may attach handlers."""

    return _LOGGER


def bind_trace_id(trace_id: str | None) -> None:
    """Bind or clear the active trace identifier.

    Examples
    --------
    >>> bind_trace_id('abc123')
    >>> TRACE_ID.get()
    'abc123'
    >>> bind_trace_id(None)
    >>> TRACE_ID.get() is None
    True
    """

    TRACE_ID.set(trace_id)


def new_trace_id() -> str:
    """Bind and return a fresh identifier for one compilation or lifecycle run."""

    trace_id = uuid.uuid4().hex
    TRACE_ID.set(trace_id)
    return trace_id


def log_debug(message: str, **fields: Any) -> None:
    """Emit a structured debug log entry that includes the trace context."""

    _emit(logging.DEBUG, message, fields)


def log_info(message: str, **fields: Any) -> None:
    """Emit a structured info log entry that includes the trace context."""

    _emit(logging.INFO, message, fields)


def log_warning(message: str, **fields: Any) -> None:
    """Emit a structured warning log entry that includes the trace context."""

    _emit(logging.WARNING, message, fields)


def log_error(message: str, **fields: Any) -> None:
    """Emit a structured error log entry that includes the trace context."""

    _emit(logging.ERROR, message, fields)


def make_event(
    phase: str,
    target: str | None,
    payload: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a structured logging payload for compile and lifecycle events.

    Inputs
        phase: Compiler phase or lifecycle operation being observed.
        target: Target name or address, if the event concerns one target.
        payload: Optional mapping with extra diagnostic detail.

    Examples
    --------
    >>> make_event('evaluate', 'web1', {'fragments': 3})
    {'phase': 'evaluate', 'target': 'web1', 'fragments': 3}
    """

    event = _base_event(phase, target)
    return _merge_payload(event, payload)


def _emit(level: int, message: str, fields: Mapping[str, Any]) -> None:
    """Send a log entry through the shared logger with contextual metadata."""

    _LOGGER.log(level, message, extra={"context": _with_trace(fields)})


def _with_trace(fields: Mapping[str, Any]) -> dict[str, Any]:
    context = {"trace_id": TRACE_ID.get()}
    context.update(fields)
    return context


def _base_event(phase: str, target: str | None) -> dict[str, Any]:
    return {"phase": phase, "target": target}


def _merge_payload(event: dict[str, Any], payload: Mapping[str, Any] | None) -> dict[str, Any]:
    if payload:
        event |= dict(payload)
    return event
