"""
Correlation ID generation and context management.

Provides unique, short IDs that tie together logs, audit events and error
reports for one HTTP request or one background job run.
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


def generate_correlation_id() -> str:
    """Eight hex characters: short enough to quote in a support ticket."""
    return uuid.uuid4().hex[:8]


def get_correlation_id() -> str:
    """Correlation ID of the current context, or "" outside a request or job."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


@contextmanager
def correlation_scope(prefix: str = "") -> Iterator[str]:
    """
    Run a block under a fresh correlation ID and restore the previous one after.

    Background jobs have no incoming request, so each run gets its own ID
    to tie together the log lines and audit events it produces.

    Args:
        prefix: Optional label prepended to the generated ID (e.g. "job").

    Yields:
        The correlation ID active inside the block.
    """
    correlation_id = generate_correlation_id()
    if prefix:
        correlation_id = f"{prefix}-{correlation_id}"
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)
