"""Logging and optional tracing.

setup_logging / set_job_context / set_scan_context:
    Console + rotating file logging with job and scan ids on every record.

setup_tracing / trace_operation:
    Optional Logfire spans around job execution and agent calls.
"""

from observability.logging import clear_context, set_job_context, set_scan_context, setup_logging
from observability.tracing import TracingContext, setup_tracing, trace_operation, tracing_enabled

__all__ = [
    "clear_context",
    "set_job_context",
    "set_scan_context",
    "setup_logging",
    "setup_tracing",
    "trace_operation",
    "TracingContext",
    "tracing_enabled",
]
