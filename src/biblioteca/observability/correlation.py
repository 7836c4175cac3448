"""Correlation ID propagation for request tracing.

The HTTP middleware binds one ID per request; log records and notification
dispatch read it back from the context variable.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    """Get current correlation ID from context ("" outside a request)."""
    return correlation_id_var.get()


@contextmanager
def bound_correlation_id(cid: str | None = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of the block.

    Args:
        cid: Incoming ID (e.g. from a request header). A new one is
            generated when empty.

    Yields:
        The bound correlation ID.
    """
    value = cid or generate_correlation_id()
    token = correlation_id_var.set(value)
    try:
        yield value
    finally:
        correlation_id_var.reset(token)
