"""Optional Logfire spans around job attempts.

Tracing stays off unless ENABLE_LOGFIRE is set. When it is on, Logfire
also instruments PydanticAI, so the model request made by a classification
or generation job nests under the span of the attempt that made it.

Install the extra to use it:
    pip install media-scanner[tracing]
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

logger = logging.getLogger(__name__)

SERVICE_NAME = "media-scanner"


@dataclass
class TracingContext:
    """Process-wide tracing state."""
    enabled: bool = False
    service_name: str = SERVICE_NAME
    spans_opened: int = 0


_context = TracingContext()


def tracing_enabled() -> bool:
    return _context.enabled


def setup_tracing(config: Any) -> TracingContext:
    """Configure Logfire from the application config.

    A missing package or a rejected configuration is logged and leaves
    tracing off; jobs run the same either way.
    """
    _context.enabled = False
    if not config.enable_logfire:
        logger.debug("Tracing disabled")
        return _context

    try:
        import logfire
    except ImportError:
        logger.warning("Tracing requested but logfire is missing | extra=tracing")
        return _context

    try:
        logfire.configure(
            service_name=_context.service_name,
            token=config.logfire_token or None,
            send_to_logfire="if-token-present",
        )
        logfire.instrument_pydantic_ai()
    except Exception as e:
        logger.error("Tracing setup failed | error=%s", e)
        return _context

    _context.enabled = True
    logger.info("Tracing enabled | service=%s", _context.service_name)
    return _context


@contextmanager
def trace_operation(name: str, attributes: dict[str, Any] | None = None) -> Iterator[dict[str, Any]]:
    """Span named `name`; yields a dict whose entries are set on close.

    Without tracing this is a plain context manager and the yielded dict
    is simply discarded.
    """
    closing: dict[str, Any] = {}
    if not _context.enabled:
        yield closing
        return

    import logfire

    _context.spans_opened += 1
    start = time.monotonic()
    with logfire.span(name, **(attributes or {})) as span:
        try:
            yield closing
        except Exception as e:
            span.set_attribute("error_type", type(e).__name__)
            raise
        finally:
            span.set_attribute("duration_ms", round((time.monotonic() - start) * 1000))
            for key, value in closing.items():
                span.set_attribute(key, value)
