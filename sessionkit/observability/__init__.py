"""Observability helpers."""

from sessionkit.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_operation,
    record_parse_failure,
    record_chain_repair,
    record_orphan_cleanup,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_operation",
    "record_parse_failure",
    "record_chain_repair",
    "record_orphan_cleanup",
]
